"""Thread-safe in-memory result cache with per-entry TTL."""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from models import QuerySpec, RecordType, SortMode

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 1024


@dataclass(frozen=True, slots=True)
class CacheEntry:
    key: str
    value: Any
    created_at: float
    ttl: float

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


def cache_key(spec: QuerySpec, record_type: RecordType | str, record_id: str | None = None) -> str:
    """Stable key for a page of results, or for one record within it.

    The credential is deliberately not part of the key.
    """
    canonical = {
        "keyword": spec.keyword.strip(),
        "page": spec.page,
        "sort": SortMode(spec.sort).value,
        "page_size": spec.page_size,
        "filters": {str(k): v for k, v in sorted(spec.filters.items())},
        "record_type": RecordType(record_type).value,
    }
    if record_id is not None:
        canonical["record_id"] = record_id
    encoded = json.dumps(canonical, sort_keys=True, ensure_ascii=False, default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


class ResultCache:
    """Expiry is checked lazily on read; ``max_entries`` bounds memory.

    Writes and reads go through one lock. Two pipelines racing on the same key
    may both miss and both write; the values are equivalent, last write wins.
    """

    def __init__(
        self,
        max_entries: int | None = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self.max_entries = max_entries

    def get(self, key: str) -> CacheEntry | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return None
            return entry

    def put(self, key: str, value: Any, ttl: float) -> CacheEntry:
        entry = CacheEntry(key=key, value=value, created_at=self._clock(), ttl=ttl)
        with self._lock:
            # Re-insert so insertion order tracks recency of writes.
            self._entries.pop(key, None)
            self._entries[key] = entry
            self._evict_locked()
        return entry

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def purge_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            LOGGER.debug("Purged %s expired cache entries", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def _evict_locked(self) -> None:
        if self.max_entries is None or len(self._entries) <= self.max_entries:
            return
        now = self._clock()
        for key in [key for key, entry in self._entries.items() if entry.is_expired(now)]:
            del self._entries[key]
        while len(self._entries) > self.max_entries:
            oldest_key = next(iter(self._entries))
            del self._entries[oldest_key]
