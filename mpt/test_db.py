"""
Tests for the node store and storage failure handling.
"""
import threading
import unittest

from mpt.crypto import generate_hash
from mpt.db import MemoryDB, fetch_node, store_nodes
from mpt.errors import MissingNode, StorageUnavailable
from mpt.proof import Verified, verify_proof
from mpt.trie import Trie


class FailingDB(MemoryDB):
    """Store whose reads or writes fail on demand."""

    def __init__(self):
        super().__init__(name="failing")
        self.fail_reads = False
        self.fail_writes = False

    def get(self, key):
        if self.fail_reads:
            raise OSError("disk on fire")
        return super().get(key)

    def put(self, key, value):
        if self.fail_writes:
            raise OSError("disk full")
        super().put(key, value)


class PlainStore:
    """Minimal collaborator without batch support."""

    def __init__(self):
        self.data = {}

    def get(self, key):
        return self.data.get(key)

    def put(self, key, value):
        self.data[key] = value


class TestMemoryDB(unittest.TestCase):
    def setUp(self):
        self.db = MemoryDB()

    def test_put_get(self):
        self.db.put(b'k', b'v')
        self.assertEqual(self.db.get(b'k'), b'v')
        self.assertTrue(self.db.exists(b'k'))
        self.assertIn(b'k', self.db)
        self.assertIsNone(self.db.get(b'missing'))

    def test_put_is_idempotent(self):
        self.db.put(b'k', b'v')
        self.db.put(b'k', b'v')
        self.assertEqual(len(self.db), 1)

    def test_write_batch(self):
        with self.db.write_batch() as batch:
            batch.put(b'a', b'1')
            batch.put(b'b', b'2')
            self.assertIsNone(self.db.get(b'a'))
        self.assertEqual(self.db.get(b'a'), b'1')
        self.assertEqual(self.db.get_stats(), {'nodes': 2, 'bytes': 2})

    def test_write_batch_discarded_on_error(self):
        with self.assertRaises(ValueError):
            with self.db.write_batch() as batch:
                batch.put(b'a', b'1')
                raise ValueError("abort")
        self.assertEqual(len(self.db), 0)

    def test_closed_store(self):
        with MemoryDB() as db:
            db.put(b'k', b'v')
        self.assertTrue(db.is_closed())
        with self.assertRaises(StorageUnavailable):
            db.get(b'k')
        with self.assertRaises(StorageUnavailable):
            db.put(b'k', b'v')


class TestFetchAndStore(unittest.TestCase):
    def test_fetch_missing(self):
        with self.assertRaises(MissingNode):
            fetch_node(MemoryDB(), generate_hash(b'x'))

    def test_fetch_wraps_backend_errors(self):
        db = FailingDB()
        db.fail_reads = True
        with self.assertRaises(StorageUnavailable) as ctx:
            fetch_node(db, generate_hash(b'x'))
        self.assertIsInstance(ctx.exception.__cause__, OSError)

    def test_store_without_batch_support(self):
        store = PlainStore()
        store_nodes(store, {b'a': b'1', b'b': b'2'})
        self.assertEqual(store.data, {b'a': b'1', b'b': b'2'})

    def test_plain_store_backs_a_trie(self):
        trie = Trie(PlainStore())
        trie.put(b'key', b'value' * 10)
        trie.put(b'kez', b'other' * 10)
        self.assertEqual(trie.get(b'key'), b'value' * 10)


class TestTrieAtomicity(unittest.TestCase):
    def setUp(self):
        self.db = FailingDB()
        self.trie = Trie(self.db)
        for i in range(20):
            self.trie.put(generate_hash(bytes([i])), b'value %d' % i)
        self.root = self.trie.root_hash
        self.nodes = len(self.db)

    def test_failed_read_aborts_put(self):
        self.db.fail_reads = True
        with self.assertRaises(StorageUnavailable):
            self.trie.put(generate_hash(b'new'), b'value')
        self.assertEqual(self.trie.root_hash, self.root)
        self.assertEqual(len(self.db), self.nodes)

    def test_failed_read_aborts_delete(self):
        self.db.fail_reads = True
        with self.assertRaises(StorageUnavailable):
            self.trie.delete(generate_hash(bytes([3])))
        self.assertEqual(self.trie.root_hash, self.root)

    def test_failed_write_keeps_root(self):
        class BrokenBatchDB(MemoryDB):
            def write_batch(self):
                raise OSError("batch failed")

        db = BrokenBatchDB()
        trie = Trie(db)
        with self.assertRaises(StorageUnavailable):
            trie.put(b'key', b'value')
        self.assertEqual(len(db), 0)
        self.assertIsNone(trie.get(b'key'))


class TestConcurrentAccess(unittest.TestCase):
    def setUp(self):
        self.db = MemoryDB(name="shared")
        trie = Trie(self.db)
        self.entries = {generate_hash(bytes([i])): b'value %d' % i for i in range(64)}
        for key, value in self.entries.items():
            trie.put(key, value)
        self.root = trie.root_hash
        self.proofs = {key: trie.generate_proof(key) for key in self.entries}

    def test_readers_on_old_root_while_writer_commits(self):
        errors = []
        reader_view = Trie(self.db, root_hash=self.root)
        writer_view = Trie(self.db, root_hash=self.root)

        def read():
            try:
                for _ in range(20):
                    for key, value in self.entries.items():
                        self.assertEqual(reader_view.get(key), value)
                        proof = reader_view.generate_proof(key)
                        self.assertEqual(proof, self.proofs[key])
                        self.assertEqual(verify_proof(self.root, key, proof, value), Verified(value))
            except Exception as e:
                errors.append(e)

        def write():
            try:
                for i in range(200):
                    writer_view.put(generate_hash(b'new %d' % i), b'fresh %d' % i)
                for key in list(self.entries)[:16]:
                    writer_view.put(key, b'overwritten')
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=read) for _ in range(4)]
        threads.append(threading.Thread(target=write))
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        self.assertEqual(reader_view.root_hash, self.root)
        self.assertEqual(reader_view.to_dict(), self.entries)
        for key, proof in self.proofs.items():
            self.assertEqual(reader_view.generate_proof(key), proof)
        self.assertNotEqual(writer_view.root_hash, self.root)
        self.assertEqual(len(writer_view), 64 + 200)
        self.assertEqual(writer_view.get(generate_hash(b'new 199')), b'fresh 199')

    def test_close_waits_for_held_lock(self):
        closer = threading.Thread(target=self.db.close)
        with self.db._lock:
            closer.start()
            closer.join(timeout=0.2)
            self.assertTrue(closer.is_alive())
            self.assertFalse(self.db.is_closed())
            self.db.put(b'k', b'v')
        closer.join()
        self.assertTrue(self.db.is_closed())
        with self.assertRaises(StorageUnavailable):
            self.db.get(b'k')

    def test_batch_not_applied_after_close(self):
        with self.assertRaises(StorageUnavailable):
            with self.db.write_batch() as batch:
                batch.put(b'late', b'node')
                closer = threading.Thread(target=self.db.close)
                closer.start()
                closer.join()
        self.assertNotIn(b'late', self.db._data)


if __name__ == '__main__':
    unittest.main()
