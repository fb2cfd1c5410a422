"""
Exceptions raised by the trie engine.
"""


class TrieError(Exception):
    """Base class for trie errors."""


class MalformedNode(TrieError):
    """
    Raised when node bytes do not match any of the four node layouts.

    This covers invalid RLP, wrong list arity, a bad hex-prefix flag and
    child references of the wrong size.
    """

    def __init__(self, reason: str, data: bytes = b''):
        self.reason = reason
        self.data = data
        if data:
            super().__init__(f"Malformed node ({reason}): {data.hex()[:64]}")
        else:
            super().__init__(f"Malformed node ({reason})")


class MissingNode(TrieError):
    """Raised when a referenced node digest is not present in the node store."""

    def __init__(self, digest: bytes):
        self.digest = digest
        super().__init__(f"Node {digest.hex()} not found in store")


class NotFound(TrieError, KeyError):
    """Raised by delete (and item access) when the key is absent."""

    def __init__(self, key: bytes):
        self.key = key
        super().__init__(key)

    def __str__(self):
        return f"Key {self.key.hex()} not found"


class StorageUnavailable(TrieError):
    """
    Raised when the node store cannot serve a request.

    Fatal to the operation in progress; retrying is left to the caller.
    """


class MalformedProof(TrieError):
    """Raised when proof wire bytes are not a list of byte strings."""
