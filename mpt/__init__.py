"""
Merkle Patricia Trie with Merkle proofs.
"""
from mpt.db import MemoryDB
from mpt.errors import (
    TrieError,
    MalformedNode,
    MissingNode,
    NotFound,
    StorageUnavailable,
    MalformedProof,
)
from mpt.nodes import BLANK_ROOT
from mpt.proof import (
    Invalid,
    InvalidReason,
    ProofBundle,
    Verified,
    generate_proof,
    verify_proof,
    encode_proof,
    decode_proof,
)
from mpt.trie import Trie
