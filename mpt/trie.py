"""
A Merkle Patricia Trie implementation.

Nodes are immutable and content-addressed: a mutation rebuilds the nodes on
the path from the root to the key and reuses every other subtree by
reference, so earlier roots stay readable from the same node store.
"""
import time
import logging
from typing import Iterator, Optional

from mpt.crypto import generate_hash
from mpt.db import fetch_node, store_nodes
from mpt.errors import NotFound
from mpt.nodes import (
    BLANK,
    BLANK_NODE,
    BLANK_ROOT,
    BlankNode,
    BranchNode,
    ExtensionNode,
    LeafNode,
    Node,
    INLINE_THRESHOLD,
    decode_node,
    encode_node,
)
from mpt.proof import generate_proof
from mpt.utils.encoding import bytes_to_nibbles, nibbles_to_bytes, common_prefix_length

logger = logging.getLogger(__name__)


def _check_bytes(name: str, value):
    if not isinstance(value, bytes):
        raise TypeError(f"{name} must be bytes, got {type(value).__name__}")


class Trie:
    def __init__(self, db, root_hash: Optional[bytes] = None, metrics=None):
        self.db = db
        self.root_hash = root_hash or BLANK_ROOT
        self.metrics = metrics

    def at(self, root_hash: bytes) -> 'Trie':
        """A view of another version of the trie backed by the same store."""
        return Trie(self.db, root_hash=root_hash, metrics=self.metrics)

    def get(self, key: bytes, root_hash: Optional[bytes] = None) -> bytes | None:
        """
        Get a value by key.

        Returns None if the key is absent. Reads the current root unless
        another root_hash is given.
        """
        _check_bytes("key", key)
        started = time.perf_counter()
        node = self._load_root(root_hash or self.root_hash)
        value = self._get(node, bytes_to_nibbles(key))
        self._record('get', started)
        return value

    def _get(self, node: Node, path: tuple[int, ...]) -> bytes | None:
        if isinstance(node, BlankNode):
            return None

        if isinstance(node, LeafNode):
            return node.value if node.path == path else None

        if isinstance(node, ExtensionNode):
            if path[:len(node.path)] == node.path:
                return self._get(self._load(node.child), path[len(node.path):])
            return None

        # Branch node
        if not path:
            return node.value
        return self._get(self._load(node.children[path[0]]), path[1:])

    def put(self, key: bytes, value: bytes) -> bytes:
        """Set a key-value pair, returning the new root hash."""
        _check_bytes("key", key)
        _check_bytes("value", value)
        started = time.perf_counter()
        pending = {}
        root = self._load_root(self.root_hash)
        new_root = self._update(root, bytes_to_nibbles(key), value, pending)
        self._commit(new_root, pending)
        self._record('put', started)
        return self.root_hash

    set = put

    def _update(self, node: Node, path: tuple[int, ...], value: bytes, pending: dict) -> Node:
        if isinstance(node, BlankNode):
            return LeafNode(path, value)

        if isinstance(node, BranchNode):
            if not path:
                return BranchNode(node.children, value)
            child = self._load(node.children[path[0]], pending)
            new_child = self._update(child, path[1:], value, pending)
            return self._replace_child(node, path[0], self._ref(new_child, pending))

        # Leaf or Extension node
        is_leaf = isinstance(node, LeafNode)
        prefix_len = common_prefix_length(node.path, path)
        remaining_path = path[prefix_len:]
        remaining_current = node.path[prefix_len:]

        # Case 1: Exact match
        if not remaining_path and not remaining_current:
            if is_leaf:
                return LeafNode(node.path, value)
            new_child = self._update(self._load(node.child, pending), (), value, pending)
            return self._extend(node.path, new_child, pending)

        # Case 2: Current path is prefix of new path
        if not remaining_current:
            if not is_leaf:
                new_child = self._update(self._load(node.child, pending), remaining_path, value, pending)
                return self._extend(node.path, new_child, pending)
            # Old leaf value moves onto a new branch
            children = list(BranchNode().children)
            children[remaining_path[0]] = self._ref(LeafNode(remaining_path[1:], value), pending)
            branch = BranchNode(tuple(children), node.value)

        # Case 3: Paths diverge, or new path is prefix of current path
        else:
            children = list(BranchNode().children)
            if is_leaf:
                old_child = LeafNode(remaining_current[1:], node.value)
                children[remaining_current[0]] = self._ref(old_child, pending)
            elif len(remaining_current) == 1:
                children[remaining_current[0]] = node.child
            else:
                old_child = ExtensionNode(remaining_current[1:], node.child)
                children[remaining_current[0]] = self._ref(old_child, pending)

            branch_value = None
            if remaining_path:
                new_leaf = LeafNode(remaining_path[1:], value)
                children[remaining_path[0]] = self._ref(new_leaf, pending)
            else:
                branch_value = value
            branch = BranchNode(tuple(children), branch_value)

        if prefix_len:
            # Create extension for common prefix
            return ExtensionNode(path[:prefix_len], self._ref(branch, pending))
        return branch

    def delete(self, key: bytes) -> bytes:
        """
        Delete a key, returning the new root hash.

        Raises NotFound if the key is absent; the root is left unchanged.
        """
        _check_bytes("key", key)
        started = time.perf_counter()
        pending = {}
        root = self._load_root(self.root_hash)
        try:
            new_root = self._delete(root, bytes_to_nibbles(key), pending)
        except NotFound:
            raise NotFound(key) from None
        self._commit(new_root, pending)
        self._record('delete', started)
        return self.root_hash

    def _delete(self, node: Node, path: tuple[int, ...], pending: dict) -> Node:
        if isinstance(node, BlankNode):
            raise NotFound(b'')

        if isinstance(node, LeafNode):
            if node.path == path:
                return BLANK
            raise NotFound(b'')

        if isinstance(node, ExtensionNode):
            if path[:len(node.path)] != node.path:
                raise NotFound(b'')
            child = self._load(node.child, pending)
            new_child = self._delete(child, path[len(node.path):], pending)
            return self._extend(node.path, new_child, pending)

        # Branch node
        if not path:
            if node.value is None:
                raise NotFound(b'')
            return self._normalize_branch(node.children, None, pending)

        child = self._load(node.children[path[0]], pending)
        new_child = self._delete(child, path[1:], pending)
        children = list(node.children)
        children[path[0]] = self._ref(new_child, pending)
        return self._normalize_branch(tuple(children), node.value, pending)

    def _normalize_branch(self, children: tuple[bytes, ...], value: bytes | None, pending: dict) -> Node:
        """Collapse a branch left with fewer than two entries."""
        used = [i for i, ref in enumerate(children) if ref]
        if len(used) > 1 or (used and value is not None):
            return BranchNode(children, value)

        if not used:
            if value is None:
                return BLANK
            return LeafNode((), value)

        index = used[0]
        return self._extend((index,), self._load(children[index], pending), pending)

    def _extend(self, path: tuple[int, ...], child: Node, pending: dict) -> Node:
        """Prefix a path onto a child, merging it into the child where possible."""
        if isinstance(child, BlankNode):
            return BLANK
        if isinstance(child, LeafNode):
            return LeafNode(path + child.path, child.value)
        if isinstance(child, ExtensionNode):
            return ExtensionNode(path + child.path, child.child)
        return ExtensionNode(path, self._ref(child, pending))

    @staticmethod
    def _replace_child(node: BranchNode, index: int, ref: bytes) -> BranchNode:
        children = list(node.children)
        children[index] = ref
        return BranchNode(tuple(children), node.value)

    def _ref(self, node: Node, pending: dict) -> bytes:
        """Child reference for a node, queueing hashed nodes for storage."""
        if isinstance(node, BlankNode):
            return BLANK_NODE
        encoded = encode_node(node)
        if len(encoded) < INLINE_THRESHOLD:
            return encoded
        node_hash = generate_hash(encoded)
        pending[node_hash] = encoded
        return node_hash

    def _load(self, ref: bytes, pending: Optional[dict] = None) -> Node:
        if not ref:
            return BLANK
        if len(ref) < INLINE_THRESHOLD:
            return decode_node(ref)
        encoded = pending.get(ref) if pending else None
        if encoded is None:
            encoded = fetch_node(self.db, ref)
        return decode_node(encoded)

    def _load_root(self, root_hash: bytes) -> Node:
        if root_hash == BLANK_ROOT:
            return BLANK
        return decode_node(fetch_node(self.db, root_hash))

    def _commit(self, root: Node, pending: dict):
        """Store the new nodes and adopt the new root; the root is always hashed."""
        if isinstance(root, BlankNode):
            root_hash = BLANK_ROOT
        else:
            encoded = encode_node(root)
            root_hash = generate_hash(encoded)
            pending[root_hash] = encoded

        store_nodes(self.db, pending)
        if self.metrics:
            self.metrics.record_nodes_written(len(pending))
        logger.debug(f"Root {self.root_hash.hex()[:16]} -> {root_hash.hex()[:16]} ({len(pending)} nodes)")
        self.root_hash = root_hash

    def _record(self, operation: str, started: float):
        if self.metrics:
            self.metrics.record_operation(operation, time.perf_counter() - started)

    def contains(self, key: bytes) -> bool:
        """Check if a key is present."""
        return self.get(key) is not None

    def items(self, root_hash: Optional[bytes] = None) -> Iterator[tuple[bytes, bytes]]:
        """Iterate over (key, value) pairs in key order."""
        node = self._load_root(root_hash or self.root_hash)
        for path, value in self._iter(node, ()):
            yield nibbles_to_bytes(path), value

    def _iter(self, node: Node, prefix: tuple[int, ...]) -> Iterator[tuple[tuple[int, ...], bytes]]:
        if isinstance(node, LeafNode):
            yield prefix + node.path, node.value
        elif isinstance(node, ExtensionNode):
            yield from self._iter(self._load(node.child), prefix + node.path)
        elif isinstance(node, BranchNode):
            if node.value is not None:
                yield prefix, node.value
            for index, ref in enumerate(node.children):
                if ref:
                    yield from self._iter(self._load(ref), prefix + (index,))

    def keys(self) -> Iterator[bytes]:
        for key, _ in self.items():
            yield key

    def to_dict(self) -> dict[bytes, bytes]:
        """All key-value pairs of the current root."""
        return dict(self.items())

    def generate_proof(self, key: bytes, root_hash: Optional[bytes] = None) -> list[bytes]:
        """Proof of the key's value (or absence) under the current root."""
        proof = generate_proof(self.db, root_hash or self.root_hash, key)
        if self.metrics:
            self.metrics.record_proof(len(proof))
        return proof

    def __len__(self):
        return sum(1 for _ in self.items())

    def __iter__(self):
        return self.keys()

    def __contains__(self, key: bytes) -> bool:
        return self.contains(key)

    def __getitem__(self, key: bytes) -> bytes:
        value = self.get(key)
        if value is None:
            raise NotFound(key)
        return value

    def __setitem__(self, key: bytes, value: bytes):
        self.put(key, value)

    def __delitem__(self, key: bytes):
        self.delete(key)
