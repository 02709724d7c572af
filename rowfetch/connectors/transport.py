"""HTTP transport used by the row fetcher.

Issues a GET for a request key and reports the outcome through one of two
callbacks:

- ``on_success(payload, status, handle)`` with the raw response body,
- ``on_failure(status, handle, error)`` for network errors, timeouts and
  non-2xx responses.

``status`` is a short string in the jQuery ``textStatus`` vocabulary
("success", "error", "timeout"); ``handle`` is the ``httpx.Response`` when one
was received, else None.

In blocking mode the callbacks run before ``request`` returns. In
non-blocking mode ``request`` returns immediately: inside a running asyncio
loop the GET runs as a task on that loop, otherwise on a worker thread, and
the callback fires there on completion.
"""
from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional, Set

import httpx

logger = logging.getLogger(__name__)

SuccessCallback = Callable[[str, Optional[str], Optional[httpx.Response]], None]
FailureCallback = Callable[[Optional[str], Optional[httpx.Response], Optional[BaseException]], None]


@dataclass
class TransportOutcome:
    ok: bool
    status: str
    payload: str = ""
    handle: Optional[httpx.Response] = None
    error: Optional[BaseException] = None

    def deliver(self, on_success: SuccessCallback, on_failure: FailureCallback) -> None:
        if self.ok:
            on_success(self.payload, self.status, self.handle)
        else:
            on_failure(self.status, self.handle, self.error)


def _failure_status(exc: BaseException) -> str:
    return "timeout" if isinstance(exc, httpx.TimeoutException) else "error"


def _log_delivery_error(fut: "Future[None] | asyncio.Task[None]") -> None:
    if fut.cancelled():
        return
    exc = fut.exception()
    if exc is not None:
        logger.error("Row delivery failed", exc_info=exc)


class HttpTransport:
    """GET-only HTTP transport with retries on network errors and HTTP 429."""

    def __init__(
        self,
        timeout: float = 10.0,
        max_retries: int = 2,
        backoff: float = 0.5,
        max_workers: int = 4,
    ):
        """Initialize the transport.

        Args:
            timeout: HTTP request timeout in seconds
            max_retries: Maximum number of retry attempts
            backoff: Base delay in seconds between retries (multiplied by the
                attempt number)
            max_workers: Worker threads for non-blocking requests made outside
                an asyncio loop
        """
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff = backoff
        self.max_workers = max_workers
        self._client: Optional[httpx.Client] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._tasks: Set["asyncio.Task[None]"] = set()

    def _client_instance(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout, follow_redirects=True)
        return self._client

    def _executor_instance(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="rowfetch"
            )
        return self._executor

    def request(
        self,
        url: str,
        on_success: SuccessCallback,
        on_failure: FailureCallback,
        blocking: bool = False,
    ) -> None:
        if blocking:
            self.get(url).deliver(on_success, on_failure)
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            task = loop.create_task(self._get_and_deliver_async(url, on_success, on_failure))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            task.add_done_callback(_log_delivery_error)
        else:
            fut = self._executor_instance().submit(
                lambda: self.get(url).deliver(on_success, on_failure)
            )
            fut.add_done_callback(_log_delivery_error)

    def _retry_delay(self, resp: Optional[httpx.Response], attempt: int) -> float:
        if resp is not None:
            try:
                retry_after = int(resp.headers.get("Retry-After") or 0)
            except (TypeError, ValueError):
                retry_after = 0
            if retry_after:
                return retry_after
        return self.backoff * (attempt + 1)

    def _classify(self, url: str, resp: httpx.Response) -> TransportOutcome:
        if 200 <= resp.status_code < 300:
            return TransportOutcome(ok=True, status="success", payload=resp.text, handle=resp)
        logger.warning("GET %s failed with HTTP %s", url, resp.status_code)
        return TransportOutcome(ok=False, status="error", handle=resp)

    def _unusable_url(self, url: str, exc: Exception) -> TransportOutcome:
        # malformed or oversized request keys; retrying cannot help
        logger.warning("GET %.200s rejected: %s", url, exc)
        return TransportOutcome(ok=False, status="error", error=exc)

    def get(self, url: str) -> TransportOutcome:
        """Perform a blocking GET and return its outcome. Never raises for HTTP errors."""
        last_exc: Optional[httpx.HTTPError] = None
        for attempt in range(self.max_retries + 1):
            try:
                resp = self._client_instance().get(url)
            except (httpx.InvalidURL, ValueError) as exc:
                return self._unusable_url(url, exc)
            except httpx.HTTPError as exc:
                last_exc = exc
                if attempt < self.max_retries:
                    time.sleep(self._retry_delay(None, attempt))
                    continue
                break

            # Handle rate limiting
            if resp.status_code == 429 and attempt < self.max_retries:
                time.sleep(self._retry_delay(resp, attempt))
                continue
            return self._classify(url, resp)

        logger.warning("GET %s failed: %s", url, last_exc)
        return TransportOutcome(ok=False, status=_failure_status(last_exc), error=last_exc)

    async def get_async(self, url: str) -> TransportOutcome:
        """Async counterpart of get()."""
        last_exc: Optional[httpx.HTTPError] = None
        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            for attempt in range(self.max_retries + 1):
                try:
                    resp = await client.get(url)
                except (httpx.InvalidURL, ValueError) as exc:
                    return self._unusable_url(url, exc)
                except httpx.HTTPError as exc:
                    last_exc = exc
                    if attempt < self.max_retries:
                        await asyncio.sleep(self._retry_delay(None, attempt))
                        continue
                    break

                if resp.status_code == 429 and attempt < self.max_retries:
                    await asyncio.sleep(self._retry_delay(resp, attempt))
                    continue
                return self._classify(url, resp)

        logger.warning("GET %s failed: %s", url, last_exc)
        return TransportOutcome(ok=False, status=_failure_status(last_exc), error=last_exc)

    async def _get_and_deliver_async(
        self, url: str, on_success: SuccessCallback, on_failure: FailureCallback
    ) -> None:
        outcome = await self.get_async(url)
        outcome.deliver(on_success, on_failure)

    def close(self):
        """Close the HTTP client and stop worker threads."""
        if self._client:
            self._client.close()
            self._client = None
        if self._executor:
            self._executor.shutdown(wait=False)
            self._executor = None

    def __del__(self):
        self.close()
