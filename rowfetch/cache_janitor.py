"""Background janitor that periodically purges expired cache entries.

The cache only drops expired entries lazily (on read, or when it is full).
For long-lived processes holding many short-lived keys this thread keeps the
table from carrying dead entries between those events. It wakes every
`interval` seconds; `build_fetcher(..., janitor=True)` passes
ROWFETCH_JANITOR_INTERVAL.
"""
from __future__ import annotations

import logging
import threading

from rowfetch.connectors.cache import TTLCache

logger = logging.getLogger(__name__)


class CacheJanitor:
    def __init__(self, cache: TTLCache, interval: float = 30):
        self.cache = cache
        self.interval = float(interval)
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

    def run_once(self) -> int:
        removed = self.cache.clean()
        if removed:
            logger.debug("Janitor removed %d expired entries", removed)
        return removed

    def start(self) -> None:
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="rowfetch-janitor", daemon=True)
        self._thread.start()

    def _loop(self):
        # wait interval or until stopped
        while not self._stop.wait(self.interval):
            try:
                self.run_once()
            except Exception:
                logger.exception("Cache janitor pass failed")

    def stop(self) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=1.0)
            self._thread = None


_global_janitor: CacheJanitor | None = None


def start_janitor(cache: TTLCache, interval: float = 30) -> CacheJanitor:
    global _global_janitor
    if _global_janitor is None:
        _global_janitor = CacheJanitor(cache, interval=interval)
        _global_janitor.start()
    return _global_janitor


def stop_janitor() -> None:
    global _global_janitor
    if _global_janitor is not None:
        _global_janitor.stop()
        _global_janitor = None
