"""
Hash function used for node digests.
"""
from Crypto.Hash import keccak

DIGEST_SIZE = 32


def generate_hash(data: bytes) -> bytes:
    """Generates a Keccak-256 hash."""
    return keccak.new(digest_bits=256, data=data).digest()
