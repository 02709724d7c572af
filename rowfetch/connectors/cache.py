"""Small in-memory TTL cache for fetched rows.

Process-local and bounded. Entries expire after a per-entry time-to-live; when
the cache is full, expired entries are purged first and, if that frees nothing,
the entry with the oldest insertion time is evicted. This is not an LRU: reads
never refresh an entry.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


def _now_ms() -> float:
    return time.time() * 1000.0


@dataclass
class CacheEntry:
    value: Any
    when_added: float
    expires_at: float


class TTLCache:
    """Bounded key/value store with per-entry expiration.

    Keys are opaque strings (in practice, fully built request URLs).
    """

    def __init__(self, max_entries: int, clock: Optional[Callable[[], float]] = None):
        """Initialize the cache.

        Args:
            max_entries: Maximum number of entries held at one time. Values
                below 1 are clamped to 1.
            clock: Zero-arg callable returning the current time in
                milliseconds. Defaults to the wall clock.
        """
        self.max_entries = max(1, int(max_entries))
        self._clock = clock or _now_ms
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value for key, or None if absent or expired.

        An expired entry is deleted as a side effect.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() < entry.expires_at:
                return entry.value
            del self._entries[key]
            return None

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        """Store value under key for ttl_seconds.

        Overwriting an existing key refreshes it in place and never evicts.
        """
        with self._lock:
            now = self._clock()
            expires_at = now + ttl_seconds * 1000.0
            entry = self._entries.get(key)
            if entry is not None:
                entry.value = value
                entry.when_added = now
                entry.expires_at = expires_at
                return

            if len(self._entries) >= self.max_entries:
                self._purge_expired(now)
                if len(self._entries) >= self.max_entries:
                    oldest = min(self._entries, key=lambda k: self._entries[k].when_added)
                    del self._entries[oldest]
                    logger.debug("Evicted oldest cache entry %s", oldest)

            self._entries[key] = CacheEntry(value=value, when_added=now, expires_at=expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clean(self) -> int:
        """Delete all expired entries. Returns the number removed."""
        with self._lock:
            return self._purge_expired(self._clock())

    def clear(self) -> None:
        with self._lock:
            self._entries = {}

    def _purge_expired(self, now: float) -> int:
        # caller holds the lock
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for k in expired:
            del self._entries[k]
        if expired:
            logger.debug("Purged %d expired cache entries", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        # presence only; does not check or purge expiry
        with self._lock:
            return key in self._entries
