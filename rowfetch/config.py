"""Environment-driven configuration for the row fetcher.

Values are read from ``ROWFETCH_*`` environment variables. Entry points call
``load_dotenv()`` first so a local ``.env`` file works too.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from rowfetch.cache_janitor import start_janitor
from rowfetch.connectors.cache import TTLCache
from rowfetch.connectors.row_fetcher import RowFetcher
from rowfetch.connectors.transport import HttpTransport
from rowfetch.urls import KeyHook, RequestKeyBuilder


def _env_number(name: str, default: str, cast=float):
    raw = os.getenv(name, default)
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    base_url: str = "http://localhost/"
    cache_enabled: bool = True
    cache_max_entries: int = 100
    cache_ttl_seconds: float = 60.0
    http_timeout: float = 10.0
    max_retries: int = 2
    janitor_interval: float = 30.0
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            base_url=os.getenv("ROWFETCH_BASE_URL", cls.base_url),
            cache_enabled=_env_flag("ROWFETCH_CACHE_ENABLED", "true"),
            cache_max_entries=_env_number("ROWFETCH_CACHE_MAX_ENTRIES", "100", int),
            cache_ttl_seconds=_env_number("ROWFETCH_CACHE_TTL_SECONDS", "60"),
            http_timeout=_env_number("ROWFETCH_HTTP_TIMEOUT", "10.0"),
            max_retries=_env_number("ROWFETCH_MAX_RETRIES", "2", int),
            janitor_interval=_env_number("ROWFETCH_JANITOR_INTERVAL", "30"),
            log_level=os.getenv("ROWFETCH_LOG_LEVEL", cls.log_level).upper(),
        )


def build_fetcher(
    settings: Optional[Settings] = None,
    cache: Optional[TTLCache] = None,
    hook: Optional[KeyHook] = None,
    janitor: bool = False,
) -> RowFetcher:
    """Wire a RowFetcher from settings.

    A cache passed in is used as-is (so several fetchers can share one);
    otherwise a new one is created when caching is enabled. With janitor=True
    the process-wide janitor is started on that cache, waking every
    settings.janitor_interval seconds.
    """
    settings = settings or Settings.from_env()
    if cache is None and settings.cache_enabled:
        cache = TTLCache(settings.cache_max_entries)
    if janitor and cache is not None:
        start_janitor(cache, interval=settings.janitor_interval)
    return RowFetcher(
        cache=cache,
        ttl_seconds=settings.cache_ttl_seconds,
        key_builder=RequestKeyBuilder(settings.base_url, hook=hook),
        transport=HttpTransport(timeout=settings.http_timeout, max_retries=settings.max_retries),
    )
