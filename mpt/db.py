"""
Content-addressed node store used by the trie.

Any object with ``get(digest) -> bytes | None`` and ``put(digest, bytes)``
can back a trie; ``write_batch()`` is used when available so that a
mutation's new nodes land together.
"""
import logging
import threading
from typing import Optional
from contextlib import contextmanager

from mpt.errors import MissingNode, StorageUnavailable

logger = logging.getLogger(__name__)


class MemoryDB:
    """In-memory node store. Nodes are never removed."""

    def __init__(self, name: str = "memory"):
        self.name = name
        self._data: dict[bytes, bytes] = {}
        self._lock = threading.RLock()
        self._closed = False
        logger.info(f"Node store '{name}' opened")

    def _check_open(self):
        if self._closed:
            raise StorageUnavailable(f"Node store '{self.name}' is closed")

    def get(self, key: bytes) -> Optional[bytes]:
        """
        Get node bytes by digest.

        Returns None if the digest is unknown.
        """
        with self._lock:
            self._check_open()
            return self._data.get(bytes(key))

    def put(self, key: bytes, value: bytes):
        """Store node bytes under their digest. Re-puts are no-ops."""
        with self._lock:
            self._check_open()
            self._data.setdefault(bytes(key), bytes(value))

    def exists(self, key: bytes) -> bool:
        """Check if a digest is stored."""
        return self.get(key) is not None

    @contextmanager
    def write_batch(self):
        """
        Context manager for batch writes.

        Puts are buffered and applied together when the block exits
        cleanly; nothing is written if it raises.

        Example:
            with db.write_batch() as batch:
                batch.put(digest1, node1)
                batch.put(digest2, node2)
        """
        with self._lock:
            self._check_open()
        batch = _Batch()
        try:
            yield batch
        except Exception:
            logger.debug(f"Discarding batch of {len(batch)} nodes")
            raise
        with self._lock:
            self._check_open()
            for key, value in batch.items():
                self._data.setdefault(key, value)

    def close(self):
        """Close the store."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        logger.info(f"Node store '{self.name}' closed")

    def is_closed(self) -> bool:
        """Check if the store is closed."""
        return self._closed

    def get_stats(self) -> dict:
        """Number of nodes and total bytes held."""
        with self._lock:
            return {
                'nodes': len(self._data),
                'bytes': sum(len(v) for v in self._data.values()),
            }

    def __len__(self):
        with self._lock:
            return len(self._data)

    def __contains__(self, key: bytes) -> bool:
        return self.exists(key)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class _Batch:
    def __init__(self):
        self._pending: dict[bytes, bytes] = {}

    def put(self, key: bytes, value: bytes):
        self._pending.setdefault(bytes(key), bytes(value))

    def items(self):
        return self._pending.items()

    def __len__(self):
        return len(self._pending)


def fetch_node(db, digest: bytes) -> bytes:
    """
    Load node bytes from a store.

    Raises MissingNode if the store does not hold the digest and
    StorageUnavailable if the store itself fails.
    """
    try:
        data = db.get(digest)
    except StorageUnavailable:
        raise
    except Exception as e:
        logger.error(f"Error getting node {digest.hex()[:16]}: {e}")
        raise StorageUnavailable(f"Failed to read node {digest.hex()}") from e
    if data is None:
        raise MissingNode(digest)
    return data


def store_nodes(db, nodes: dict[bytes, bytes]):
    """Write a set of (digest, bytes) pairs, as one batch when supported."""
    if not nodes:
        return
    try:
        if hasattr(db, 'write_batch'):
            with db.write_batch() as batch:
                for digest, encoded in nodes.items():
                    batch.put(digest, encoded)
        else:
            for digest, encoded in nodes.items():
                db.put(digest, encoded)
    except StorageUnavailable:
        raise
    except Exception as e:
        logger.error(f"Error writing {len(nodes)} nodes: {e}")
        raise StorageUnavailable(f"Failed to write {len(nodes)} nodes") from e
