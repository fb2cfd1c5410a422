"""
Node model for the Merkle Patricia Trie.

A node is one of four immutable variants. Encoding and decoding dispatch on
the variant explicitly; the node classes themselves carry no behaviour.

Canonical encodings (RLP):
    Blank      rlp(b'')
    Leaf       [hex_prefix(path, leaf=True), value]
    Extension  [hex_prefix(path, leaf=False), child_ref]
    Branch     [ref_0, ..., ref_15, value_slot]

The branch value slot is b'' when the branch holds no value and the 1-list
[value] otherwise, so an empty stored value is not confused with "no value".

A child reference is b'' for an empty slot, the child's own encoding when it
is shorter than INLINE_THRESHOLD bytes (embedded in the parent as an RLP
structure), or the 32-byte digest of the encoding.
"""
from dataclasses import dataclass
from typing import Union

from mpt.crypto import generate_hash, DIGEST_SIZE
from mpt.errors import MalformedNode
from mpt.utils.encoding import (
    hex_prefix_encode,
    hex_prefix_decode,
    rlp_encode,
    rlp_decode,
)

INLINE_THRESHOLD = 32
BLANK_NODE = b''
BLANK_NODE_ENCODING = rlp_encode(BLANK_NODE)
BLANK_ROOT = generate_hash(BLANK_NODE_ENCODING)

NODE_TYPE_BLANK = 'blank'
NODE_TYPE_LEAF = 'leaf'
NODE_TYPE_EXTENSION = 'extension'
NODE_TYPE_BRANCH = 'branch'

EMPTY_CHILDREN = (BLANK_NODE,) * 16


@dataclass(frozen=True)
class BlankNode:
    """No entry."""


@dataclass(frozen=True)
class LeafNode:
    path: tuple[int, ...]
    value: bytes


@dataclass(frozen=True)
class ExtensionNode:
    path: tuple[int, ...]
    child: bytes


@dataclass(frozen=True)
class BranchNode:
    children: tuple[bytes, ...] = EMPTY_CHILDREN
    value: bytes | None = None

    def __post_init__(self):
        if len(self.children) != 16:
            raise ValueError(f"Branch node needs 16 children, got {len(self.children)}")


BLANK = BlankNode()

Node = Union[BlankNode, LeafNode, ExtensionNode, BranchNode]


def node_type(node: Node) -> str:
    """Return the variant name of a node."""
    if isinstance(node, BlankNode):
        return NODE_TYPE_BLANK
    if isinstance(node, LeafNode):
        return NODE_TYPE_LEAF
    if isinstance(node, ExtensionNode):
        return NODE_TYPE_EXTENSION
    if isinstance(node, BranchNode):
        return NODE_TYPE_BRANCH
    raise TypeError(f"Not a trie node: {node!r}")


def is_inline_ref(ref: bytes) -> bool:
    """True if a non-empty child reference holds an embedded node."""
    return 0 < len(ref) < INLINE_THRESHOLD


def _ref_to_item(ref: bytes):
    if is_inline_ref(ref):
        return rlp_decode(ref)
    return ref


def _node_to_item(node: Node):
    if isinstance(node, BlankNode):
        return BLANK_NODE
    if isinstance(node, LeafNode):
        return [hex_prefix_encode(node.path, is_leaf=True), node.value]
    if isinstance(node, ExtensionNode):
        return [hex_prefix_encode(node.path, is_leaf=False), _ref_to_item(node.child)]
    if isinstance(node, BranchNode):
        value_slot = BLANK_NODE if node.value is None else [node.value]
        return [_ref_to_item(ref) for ref in node.children] + [value_slot]
    raise TypeError(f"Not a trie node: {node!r}")


def encode_node(node: Node) -> bytes:
    """Canonical byte encoding of a node."""
    return rlp_encode(_node_to_item(node))


def child_ref(node: Node) -> bytes:
    """
    Reference a parent stores for this node.

    Small nodes are embedded verbatim; everything else is referenced by the
    hash of its encoding.
    """
    if isinstance(node, BlankNode):
        return BLANK_NODE
    encoded = encode_node(node)
    if len(encoded) < INLINE_THRESHOLD:
        return encoded
    return generate_hash(encoded)


def _item_to_ref(item, data: bytes, allow_empty: bool) -> bytes:
    if isinstance(item, (list, tuple)):
        ref = rlp_encode(item)
        if len(ref) >= INLINE_THRESHOLD:
            raise MalformedNode("embedded node too large", data)
        return ref
    if not item:
        if allow_empty:
            return BLANK_NODE
        raise MalformedNode("empty child reference", data)
    if len(item) != DIGEST_SIZE:
        raise MalformedNode(f"child digest has {len(item)} bytes", data)
    return item


def _decode_path(item, data: bytes) -> tuple[tuple[int, ...], bool]:
    if not isinstance(item, bytes):
        raise MalformedNode("path is not a byte string", data)
    try:
        return hex_prefix_decode(item)
    except ValueError as e:
        raise MalformedNode(str(e), data) from e


def decode_node(data: bytes) -> Node:
    """
    Decode canonical node bytes.

    Raises MalformedNode if the bytes do not describe one of the four
    variants.
    """
    try:
        item = rlp_decode(data)
    except ValueError as e:
        raise MalformedNode("invalid rlp", data) from e

    if isinstance(item, bytes):
        if item == BLANK_NODE:
            return BLANK
        raise MalformedNode("node is a non-empty byte string", data)

    if len(item) == 2:
        path, is_leaf = _decode_path(item[0], data)
        if is_leaf:
            if not isinstance(item[1], bytes):
                raise MalformedNode("leaf value is not a byte string", data)
            return LeafNode(path, item[1])
        if not path:
            raise MalformedNode("extension with empty path", data)
        return ExtensionNode(path, _item_to_ref(item[1], data, allow_empty=False))

    if len(item) == 17:
        children = tuple(_item_to_ref(slot, data, allow_empty=True) for slot in item[:16])
        value_slot = item[16]
        if isinstance(value_slot, bytes):
            if value_slot:
                raise MalformedNode("bare branch value", data)
            return BranchNode(children, None)
        if len(value_slot) != 1 or not isinstance(value_slot[0], bytes):
            raise MalformedNode("invalid branch value slot", data)
        return BranchNode(children, value_slot[0])

    raise MalformedNode(f"list of {len(item)} items", data)
