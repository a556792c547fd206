"""BlobCache: LRU eviction and thread safety."""
import threading
import unittest

from bookvault.services.blob_cache import BlobCache


class TestBlobCache(unittest.TestCase):
    def test_miss_then_hit(self):
        cache = BlobCache(max_entries=2)
        self.assertIsNone(cache.get("a"))
        cache.put("a", b"1")
        self.assertEqual(cache.get("a"), b"1")
        self.assertIn("a", cache)
        self.assertEqual(len(cache), 1)

    def test_evicts_least_recently_used(self):
        cache = BlobCache(max_entries=2)
        cache.put("a", b"1")
        cache.put("b", b"2")
        cache.get("a")  # b is now the oldest
        cache.put("c", b"3")
        self.assertNotIn("b", cache)
        self.assertIn("a", cache)
        self.assertIn("c", cache)
        self.assertEqual(len(cache), 2)

    def test_put_same_key_replaces(self):
        cache = BlobCache(max_entries=2)
        cache.put("a", b"1")
        cache.put("a", b"2")
        self.assertEqual(len(cache), 1)
        self.assertEqual(cache.get("a"), b"2")

    def test_clear(self):
        cache = BlobCache(max_entries=2)
        cache.put("a", b"1")
        cache.clear()
        self.assertEqual(len(cache), 0)
        self.assertIsNone(cache.get("a"))

    def test_capacity_must_be_positive(self):
        with self.assertRaises(ValueError):
            BlobCache(max_entries=0)

    def test_concurrent_puts_respect_capacity(self):
        cache = BlobCache(max_entries=10)

        def worker(n):
            for i in range(200):
                key = f"{n}-{i}"
                cache.put(key, b"x")
                cache.get(key)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(len(cache), 10)
