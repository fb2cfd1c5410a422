"""
Merkle proofs for trie keys.

A proof is the ordered list of canonical node encodings visited from the
root towards a key. Verification re-derives every hash from the proof alone
and never consults a node store.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

import msgpack

from mpt.crypto import generate_hash
from mpt.db import fetch_node
from mpt.errors import MalformedNode, MalformedProof
from mpt.nodes import (
    BLANK_NODE_ENCODING,
    BLANK_ROOT,
    BlankNode,
    ExtensionNode,
    LeafNode,
    decode_node,
    is_inline_ref,
)
from mpt.utils.encoding import bytes_to_nibbles, rlp_encode, rlp_decode

logger = logging.getLogger(__name__)


class InvalidReason(Enum):
    ROOT_MISMATCH = 'root-mismatch'
    BROKEN_CHAIN = 'broken-chain'
    VALUE_MISMATCH = 'value-mismatch'
    KEY_NOT_PROVED_PRESENT = 'key-not-proved-present'
    MALFORMED_NODE = 'malformed-node'


@dataclass(frozen=True)
class Verified:
    """Successful verification; value is None for a proof of absence."""
    value: Optional[bytes] = None

    def __bool__(self):
        return True


@dataclass(frozen=True)
class Invalid:
    """Failed verification."""
    reason: InvalidReason

    def __bool__(self):
        return False


ProofResult = Union[Verified, Invalid]


def _step(node, path: tuple[int, ...]):
    """
    Advance one node along the path.

    Returns (child_ref, remaining_path) when the walk continues, or
    (None, value) when it ends here, value being None for absence.
    """
    if isinstance(node, BlankNode):
        return None, None

    if isinstance(node, LeafNode):
        return None, node.value if node.path == path else None

    if isinstance(node, ExtensionNode):
        if path[:len(node.path)] == node.path:
            return node.child, path[len(node.path):]
        return None, None

    # Branch node
    if not path:
        return None, node.value
    ref = node.children[path[0]]
    if not ref:
        return None, None
    return ref, path[1:]


def generate_proof(db, root_hash: bytes, key: bytes) -> list[bytes]:
    """
    Collect the encodings of the nodes on the path to a key.

    Works for absent keys too, in which case the list proves absence. The
    empty trie yields the single blank node encoding.
    """
    if not isinstance(key, bytes):
        raise TypeError(f"key must be bytes, got {type(key).__name__}")
    if root_hash == BLANK_ROOT:
        return [BLANK_NODE_ENCODING]

    path = bytes_to_nibbles(key)
    proof = []
    encoded = fetch_node(db, root_hash)
    while True:
        proof.append(encoded)
        ref, path = _step(decode_node(encoded), path)
        if ref is None:
            break
        encoded = ref if is_inline_ref(ref) else fetch_node(db, ref)

    logger.debug(f"Proof for key {key.hex()[:16]} has {len(proof)} nodes")
    return proof


def _ref_matches(ref: bytes, encoded: bytes) -> bool:
    if is_inline_ref(ref):
        return ref == encoded
    return ref == generate_hash(encoded)


def verify_proof(root_hash: bytes, key: bytes, proof: list[bytes],
                 expected_value: Optional[bytes] = None) -> ProofResult:
    """
    Verify a proof against a root hash.

    Returns Verified(value) when the proof shows the key holding value (or
    absent, with value None) under root_hash, and Invalid(reason) otherwise.
    When expected_value is given the key must be present with exactly that
    value.
    """
    for name, arg in (("root_hash", root_hash), ("key", key)):
        if not isinstance(arg, bytes):
            raise TypeError(f"{name} must be bytes, got {type(arg).__name__}")
    if expected_value is not None and not isinstance(expected_value, bytes):
        raise TypeError(f"expected_value must be bytes, got {type(expected_value).__name__}")

    proof = list(proof)
    if not proof or not all(isinstance(p, bytes) for p in proof):
        return Invalid(InvalidReason.BROKEN_CHAIN)
    if generate_hash(proof[0]) != root_hash:
        return Invalid(InvalidReason.ROOT_MISMATCH)

    path = bytes_to_nibbles(key)
    index = 0
    while True:
        try:
            node = decode_node(proof[index])
        except MalformedNode as e:
            logger.warning(f"Proof node {index} does not decode: {e}")
            return Invalid(InvalidReason.MALFORMED_NODE)

        ref, rest = _step(node, path)
        if ref is None:
            value = rest
            break
        path = rest
        index += 1
        if index >= len(proof) or not _ref_matches(ref, proof[index]):
            return Invalid(InvalidReason.BROKEN_CHAIN)

    if index != len(proof) - 1:
        return Invalid(InvalidReason.BROKEN_CHAIN)

    if value is None:
        if expected_value is None:
            return Verified(None)
        return Invalid(InvalidReason.KEY_NOT_PROVED_PRESENT)
    if expected_value is not None and value != expected_value:
        return Invalid(InvalidReason.VALUE_MISMATCH)
    return Verified(value)


def encode_proof(proof: list[bytes]) -> bytes:
    """Serialize a proof as an RLP list of node encodings."""
    return rlp_encode(list(proof))


def decode_proof(data: bytes) -> list[bytes]:
    """Inverse of encode_proof; raises MalformedProof on bad input."""
    try:
        item = rlp_decode(data)
    except ValueError as e:
        raise MalformedProof(str(e)) from e
    if isinstance(item, bytes) or not all(isinstance(p, bytes) for p in item):
        raise MalformedProof("Proof must be a list of byte strings")
    return list(item)


@dataclass
class ProofBundle:
    """A root, a key and its proof, as shipped to a verifier."""
    root_hash: bytes
    key: bytes
    proof: list[bytes] = field(default_factory=list)
    value: Optional[bytes] = None

    @classmethod
    def create(cls, trie, key: bytes) -> 'ProofBundle':
        """Bundle the proof for a key under the trie's current root."""
        return cls(
            root_hash=trie.root_hash,
            key=key,
            proof=trie.generate_proof(key),
            value=trie.get(key),
        )

    def verify(self, expected_value: Optional[bytes] = None) -> ProofResult:
        return verify_proof(self.root_hash, self.key, self.proof, expected_value)

    def to_dict(self) -> dict:
        return {
            "root_hash": self.root_hash.hex(),
            "key": self.key.hex(),
            "proof": [p.hex() for p in self.proof],
            "value": self.value.hex() if self.value is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'ProofBundle':
        """Creates a ProofBundle from a dictionary of hex strings."""
        try:
            return cls(
                root_hash=bytes.fromhex(data["root_hash"]),
                key=bytes.fromhex(data["key"]),
                proof=[bytes.fromhex(p) for p in data["proof"]],
                value=bytes.fromhex(data["value"]) if data.get("value") is not None else None,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedProof(f"Invalid proof bundle: {e}") from e

    def pack(self) -> bytes:
        """Binary form of the bundle; the proof travels in its RLP wire format."""
        return msgpack.packb({
            "root_hash": self.root_hash,
            "key": self.key,
            "proof": encode_proof(self.proof),
            "value": self.value,
        }, use_bin_type=True)

    @classmethod
    def unpack(cls, data: bytes) -> 'ProofBundle':
        try:
            raw = msgpack.unpackb(data, raw=False)
            return cls(
                root_hash=raw["root_hash"],
                key=raw["key"],
                proof=decode_proof(raw["proof"]),
                value=raw.get("value"),
            )
        except (KeyError, TypeError, ValueError, msgpack.UnpackException) as e:
            raise MalformedProof(f"Invalid packed proof bundle: {e}") from e
