"""
In-memory LRU cache of encrypted blobs keyed by blob id.

Blobs are content-addressed, so an entry can never go stale; losing one only
costs a re-fetch from storage. Plaintext is never stored here. One instance
per process (owned by ServiceContainer); clear() is called on shutdown.
"""
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass

from bookvault.utils.metrics import (
    blob_cache_entries,
    blob_cache_evictions_total,
    blob_cache_requests_total,
)


@dataclass(frozen=True)
class CacheEntry:
    blob_id: str
    payload: bytes
    inserted_at: float


class BlobCache:
    def __init__(self, max_entries: int = 100) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, blob_id: str) -> bytes | None:
        with self._lock:
            entry = self._entries.get(blob_id)
            if entry is None:
                blob_cache_requests_total.labels(result="miss").inc()
                return None
            self._entries.move_to_end(blob_id)
        blob_cache_requests_total.labels(result="hit").inc()
        return entry.payload

    def put(self, blob_id: str, payload: bytes) -> None:
        entry = CacheEntry(blob_id=blob_id, payload=bytes(payload), inserted_at=time.time())
        evicted = 0
        with self._lock:
            self._entries[blob_id] = entry
            self._entries.move_to_end(blob_id)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
                evicted += 1
            size = len(self._entries)
        if evicted:
            blob_cache_evictions_total.inc(evicted)
        blob_cache_entries.set(size)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        blob_cache_entries.set(0)

    def __contains__(self, blob_id: str) -> bool:
        with self._lock:
            return blob_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
