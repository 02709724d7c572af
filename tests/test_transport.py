import asyncio
import threading

import httpx
import pytest

from rowfetch.connectors import transport as transport_mod
from rowfetch.connectors.transport import HttpTransport


class FakeResp:
    def __init__(self, status_code=200, text="", headers=None):
        self.status_code = status_code
        self.text = text
        self.headers = headers or {}


def _fake_client_class(responses, calls):
    """Build a fake httpx.Client that replays `responses` (FakeResp or exception)."""

    class FakeClient:
        def __init__(self, *args, **kwargs):
            pass

        def get(self, url, *args, **kwargs):
            calls.append(url)
            item = responses.pop(0)
            if isinstance(item, Exception):
                raise item
            return item

        def close(self):
            pass

    return FakeClient


@pytest.fixture
def no_sleep(monkeypatch):
    sleeps = []
    monkeypatch.setattr(transport_mod.time, "sleep", lambda s: sleeps.append(s))
    return sleeps


def _collect():
    got = {}

    def on_success(payload, status, handle):
        got["success"] = (payload, status, handle)

    def on_failure(status, handle, error):
        got["failure"] = (status, handle, error)

    return got, on_success, on_failure


def test_blocking_success_delivers_before_return(monkeypatch, no_sleep):
    calls = []
    resp = FakeResp(200, '[{"id": 1}]')
    monkeypatch.setattr(httpx, "Client", _fake_client_class([resp], calls))

    t = HttpTransport()
    got, ok, fail = _collect()
    t.request("http://h/app?command=x", ok, fail, blocking=True)

    assert got == {"success": ('[{"id": 1}]', "success", resp)}
    assert calls == ["http://h/app?command=x"]


def test_non_2xx_is_failure_without_retry(monkeypatch, no_sleep):
    calls = []
    resp = FakeResp(500, "oops")
    monkeypatch.setattr(httpx, "Client", _fake_client_class([resp], calls))

    got, ok, fail = _collect()
    HttpTransport(max_retries=2).request("http://h/", ok, fail, blocking=True)

    assert got == {"failure": ("error", resp, None)}
    assert len(calls) == 1
    assert no_sleep == []


def test_rate_limit_retries_with_retry_after(monkeypatch, no_sleep):
    calls = []
    responses = [FakeResp(429, headers={"Retry-After": "3"}), FakeResp(200, "[]")]
    monkeypatch.setattr(httpx, "Client", _fake_client_class(responses, calls))

    outcome = HttpTransport(max_retries=2).get("http://h/")
    assert outcome.ok is True
    assert outcome.payload == "[]"
    assert no_sleep == [3]
    assert len(calls) == 2


def test_rate_limit_exhausted_is_failure(monkeypatch, no_sleep):
    calls = []
    responses = [FakeResp(429), FakeResp(429)]
    monkeypatch.setattr(httpx, "Client", _fake_client_class(responses, calls))

    outcome = HttpTransport(max_retries=1).get("http://h/")
    assert outcome.ok is False
    assert outcome.status == "error"
    assert outcome.handle.status_code == 429


def test_network_errors_retry_then_fail(monkeypatch, no_sleep):
    calls = []
    responses = [httpx.ConnectError("down"), httpx.ConnectError("still down")]
    monkeypatch.setattr(httpx, "Client", _fake_client_class(responses, calls))

    got, ok, fail = _collect()
    HttpTransport(max_retries=1, backoff=0.5).request("http://h/", ok, fail, blocking=True)

    status, handle, error = got["failure"]
    assert status == "error"
    assert handle is None
    assert isinstance(error, httpx.ConnectError)
    assert no_sleep == [0.5]


def test_timeout_reports_timeout_status(monkeypatch, no_sleep):
    calls = []
    monkeypatch.setattr(httpx, "Client", _fake_client_class([httpx.ReadTimeout("slow")], calls))

    outcome = HttpTransport(max_retries=0).get("http://h/")
    assert outcome.ok is False
    assert outcome.status == "timeout"


def test_non_blocking_without_loop_uses_worker_thread(monkeypatch):
    calls = []
    monkeypatch.setattr(httpx, "Client", _fake_client_class([FakeResp(200, "[1]")], calls))

    done = threading.Event()
    got = {}

    def ok(payload, status, handle):
        got["payload"] = payload
        got["thread"] = threading.current_thread().name
        done.set()

    t = HttpTransport()
    t.request("http://h/", ok, lambda *a: done.set(), blocking=False)
    assert done.wait(5)
    assert got["payload"] == "[1]"
    assert got["thread"].startswith("rowfetch")
    t.close()


def test_non_blocking_inside_loop_uses_async_client(monkeypatch):
    calls = []

    class FakeAsyncClient:
        def __init__(self, *args, **kwargs):
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, *exc):
            return False

        async def get(self, url, *args, **kwargs):
            calls.append(url)
            return FakeResp(200, '[{"id": 2}]')

    monkeypatch.setattr(httpx, "AsyncClient", FakeAsyncClient)

    async def _inner():
        fut = asyncio.get_running_loop().create_future()
        t = HttpTransport()
        t.request(
            "http://h/async",
            lambda payload, status, handle: fut.set_result((payload, status)),
            lambda status, handle, error: fut.set_result((None, status)),
            blocking=False,
        )
        # nothing delivered until the loop runs the task
        assert not fut.done()
        return await asyncio.wait_for(fut, 5)

    assert asyncio.run(_inner()) == ('[{"id": 2}]', "success")
    assert calls == ["http://h/async"]


def test_close_resets_client(monkeypatch):
    monkeypatch.setattr(httpx, "Client", _fake_client_class([], []))
    t = HttpTransport()
    assert t._client_instance() is t._client_instance()
    t.close()
    assert t._client is None


@pytest.mark.parametrize("error", [httpx.InvalidURL("Invalid port: 'abc'"), UnicodeError("label empty")])
def test_unusable_url_is_failure_without_retry(monkeypatch, no_sleep, error):
    calls = []
    monkeypatch.setattr(httpx, "Client", _fake_client_class([error], calls))

    got, ok, fail = _collect()
    HttpTransport(max_retries=2).request("http://h:abc/app", ok, fail, blocking=True)

    assert got == {"failure": ("error", None, error)}
    assert len(calls) == 1
    assert no_sleep == []


def test_unusable_url_async_delivers_failure(monkeypatch):
    class FakeAsyncClient:
        def __init__(self, *args, **kwargs):
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, *exc):
            return False

        async def get(self, url, *args, **kwargs):
            raise httpx.InvalidURL("URL too long")

    monkeypatch.setattr(httpx, "AsyncClient", FakeAsyncClient)

    async def _inner():
        fut = asyncio.get_running_loop().create_future()
        HttpTransport().request(
            "http://h/" + "a" * 70000,
            lambda payload, status, handle: fut.set_result(("success", status)),
            lambda status, handle, error: fut.set_result(("failure", status)),
            blocking=False,
        )
        return await asyncio.wait_for(fut, 5)

    assert asyncio.run(_inner()) == ("failure", "error")
