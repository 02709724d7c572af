"""Cache-aside row fetcher.

Fetches JSON rows from server-side commands, consulting an optional TTLCache
before each request and populating it with the result.

Every read operation supports two calling conventions, chosen by its first
argument:

- If the first argument is callable, the call is non-blocking. The callable is
  invoked exactly once with ``(rows_or_row, status, handle)`` and the remaining
  arguments shift down. A cache hit or an invalid id delivers inline, before
  the call returns; a miss delivers when the transport completes.
- Otherwise the call blocks until the result is known and returns it. Blocking
  calls hold up the calling thread (and its event loop, if any) for the whole
  round trip, so prefer the callback form where possible.

Example usage:
    fetcher = RowFetcher(TTLCache(100), 60, key_builder=RequestKeyBuilder(url))
    user = fetcher.fetch_row_by_id("getUser", "userId", 42)
    fetcher.fetch_rows_by_id(on_rows, "getOrders", "userId", 42, {"status": "open"})
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

from rowfetch.connectors.cache import TTLCache
from rowfetch.connectors.transport import HttpTransport
from rowfetch.urls import Params, RequestKeyBuilder

logger = logging.getLogger(__name__)

Rows = List[Any]
Deliver = Callable[[Optional[Rows], Optional[str], Any], None]
Callback = Callable[[Any, Optional[str], Any], None]


@dataclass
class RequestDescriptor:
    """Logical identity of a fetch before it is turned into a request key."""

    command: str
    id_param_name: str
    id: Any
    optional_parameters: Params = None


def _split_callback(args: Sequence[Any]) -> Tuple[Optional[Callback], Sequence[Any]]:
    if args and callable(args[0]):
        return args[0], args[1:]
    return None, args


def _request_key_arg(args: Sequence[Any], op: str) -> Tuple[Optional[Callback], str]:
    callback, rest = _split_callback(args)
    if len(rest) != 1:
        raise TypeError(
            f"{op}() takes ([callback,] request_key), got {len(rest)} argument(s) after the callback"
        )
    return callback, rest[0]


def _decode_rows(payload: str) -> Rows:
    """Decode a response body into rows. Raises ValueError on invalid JSON."""
    if not payload:
        return []
    data = json.loads(payload)
    return data if isinstance(data, list) else []


def _first_row(rows: Optional[Rows]) -> Optional[Any]:
    return rows[0] if rows else None


def _is_positive_id(id: Any) -> bool:
    try:
        return float(id) > 0
    except (TypeError, ValueError):
        return False


def _is_nonempty_id(id: Any) -> bool:
    return id != ""


class RowFetcher:
    """Fetches (and optionally caches) rows using server-side requests."""

    def __init__(
        self,
        cache: Optional[TTLCache] = None,
        ttl_seconds: float = 60,
        key_builder: Optional[RequestKeyBuilder] = None,
        transport: Optional[HttpTransport] = None,
    ):
        """Initialize the fetcher.

        Args:
            cache: Cache to consult and populate, or None for no caching. May be
                shared between fetchers.
            ttl_seconds: Lifetime of entries this fetcher stores in the cache
            key_builder: Builds request keys for the by-id operations
            transport: HTTP transport; a default HttpTransport if omitted
        """
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.key_builder = key_builder
        self.transport = transport or HttpTransport()

    def build_request_key(
        self, command: str, id_param_name: str, id: Any, optional_parameters: Params = None
    ) -> str:
        if self.key_builder is None:
            raise ValueError("A RequestKeyBuilder is required to build request keys")
        return self.key_builder.build(command, id_param_name, id, optional_parameters)

    # Core fetch, shared by both calling conventions.

    def _fetch(self, request_key: str, deliver: Deliver, blocking: bool) -> None:
        if self.cache is not None:
            rows = self.cache.get(request_key)
            if rows is not None:
                logger.debug("Cache hit for %s", request_key)
                deliver(rows, None, None)
                return

        cache = self.cache

        def on_success(payload: str, status: Optional[str], handle: Any) -> None:
            try:
                rows = _decode_rows(payload)
            except (ValueError, RecursionError):
                logger.warning("Discarding malformed JSON from %s", request_key)
                deliver([], "parsererror", handle)
                return
            if cache is not None:
                cache.set(request_key, rows, self.ttl_seconds)
            deliver(rows, status, handle)

        def on_failure(status: Optional[str], handle: Any, error: Optional[BaseException]) -> None:
            deliver([], status, handle)

        self.transport.request(request_key, on_success, on_failure, blocking=blocking)

    def _dispatch(
        self,
        callback: Optional[Callback],
        request_key: str,
        shape: Callable[[Optional[Rows]], Any],
    ) -> Any:
        if callback is not None:
            self._fetch(
                request_key,
                lambda rows, status, handle: callback(shape(rows), status, handle),
                blocking=False,
            )
            return None

        result: List[Any] = []
        self._fetch(request_key, lambda rows, status, handle: result.append(rows), blocking=True)
        return shape(result[0])

    def _dispatch_by_id(
        self,
        args: Sequence[Any],
        valid: Callable[[Any], bool],
        shape: Callable[[Optional[Rows]], Any],
    ) -> Any:
        callback, rest = _split_callback(args)
        desc = RequestDescriptor(*rest)
        if not valid(desc.id):
            # an invalid id names no row: no cache lookup, no request
            if callback is not None:
                callback(None, None, None)
                return None
            return shape([])
        request_key = self.build_request_key(
            desc.command, desc.id_param_name, desc.id, desc.optional_parameters
        )
        return self._dispatch(callback, request_key, shape)

    # Public read operations. Each accepts an optional leading callback.

    def fetch_rows(self, *args: Any) -> Optional[Rows]:
        """Fetch the rows for a request key: ``fetch_rows([callback,] request_key)``.

        Blocking form returns the rows, or an empty list if none were found or
        the request failed.
        """
        callback, request_key = _request_key_arg(args, "fetch_rows")
        return self._dispatch(callback, request_key, list)

    def fetch_first_row(self, *args: Any) -> Optional[Any]:
        """Fetch the first row for a request key, or None."""
        callback, request_key = _request_key_arg(args, "fetch_first_row")
        return self._dispatch(callback, request_key, _first_row)

    def fetch_rows_by_id(self, *args: Any) -> Optional[Rows]:
        """``fetch_rows_by_id([callback,] command, id_param_name, id[, optional_parameters])``

        The id is numeric and must be positive; otherwise nothing is fetched.
        """
        return self._dispatch_by_id(args, _is_positive_id, list)

    def fetch_rows_by_id_string(self, *args: Any) -> Optional[Rows]:
        """Like fetch_rows_by_id() with a string id that must be non-empty."""
        return self._dispatch_by_id(args, _is_nonempty_id, list)

    def fetch_row_by_id(self, *args: Any) -> Optional[Any]:
        return self._dispatch_by_id(args, _is_positive_id, _first_row)

    def fetch_row_by_id_string(self, *args: Any) -> Optional[Any]:
        return self._dispatch_by_id(args, _is_nonempty_id, _first_row)
