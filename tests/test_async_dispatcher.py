import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from turnstile import (
    ApiError,
    AsyncCancelToken,
    AsyncDispatcher,
    AsyncStaticTokenProvider,
    AuthenticationError,
    ClientConfig,
    OperationCancelled,
    RateLimitError,
    Request,
    RetryConfig,
)


def _dispatcher(sender, max_retry=2, min_wait_ms=100, token_provider=None, **cfg):
    config = ClientConfig(retry=RetryConfig(max_retry=max_retry, min_wait_ms=min_wait_ms), **cfg)
    return AsyncDispatcher(config, sender, token_provider)


def _record_sleeps(monkeypatch, dispatcher):
    sleeps = []

    async def _sleep(seconds, cancel, op):
        sleeps.append(seconds)

    monkeypatch.setattr(dispatcher, "_sleep", _sleep)
    return sleeps


@pytest.mark.asyncio
async def test_async_retries_with_floor_then_succeeds(monkeypatch):
    sender = AsyncMock()
    sender.send.side_effect = [
        RateLimitError(reset_in_ms=50),
        RateLimitError(reset_in_ms=50),
        {"ok": True},
    ]
    d = _dispatcher(sender, max_retry=2, min_wait_ms=100)
    sleeps = _record_sleeps(monkeypatch, d)
    assert await d.send(Request("GET", "/x"), "x") == {"ok": True}
    assert sender.send.await_count == 3  # noqa: PLR2004
    assert sleeps == [0.1, 0.1]


@pytest.mark.asyncio
async def test_async_exhaustion_reraises_same_error(monkeypatch):
    err = RateLimitError(reset_in_ms=500)
    sender = AsyncMock()
    sender.send.side_effect = err
    d = _dispatcher(sender, max_retry=1, min_wait_ms=50)
    sleeps = _record_sleeps(monkeypatch, d)
    with pytest.raises(RateLimitError) as exc_info:
        await d.send(Request("GET", "/x"), "x")
    assert exc_info.value is err
    assert sender.send.await_count == 2  # noqa: PLR2004
    assert sleeps == [0.5]


@pytest.mark.asyncio
async def test_async_token_failure_wraps_and_skips_transport():
    provider = AsyncMock()
    provider.get_access_token.side_effect = httpx.ConnectError("no route")
    sender = AsyncMock()
    d = _dispatcher(sender, token_provider=provider)
    with pytest.raises(AuthenticationError) as exc_info:
        await d.send(Request("GET", "/x"), "fetch_x")
    assert exc_info.value.operation == "fetch_x"
    assert isinstance(exc_info.value.cause, httpx.ConnectError)
    sender.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_async_generic_error_single_attempt():
    sender = AsyncMock()
    sender.send.side_effect = ApiError("nope", status_code=404)
    d = _dispatcher(sender, max_retry=5)
    with pytest.raises(ApiError):
        await d.send(Request("GET", "/x"), "x")
    assert sender.send.await_count == 1


@pytest.mark.asyncio
async def test_async_header_injection_and_void():
    sender = AsyncMock()
    sender.send.return_value = None
    d = _dispatcher(
        sender,
        token_provider=AsyncStaticTokenProvider("T"),
        default_headers={"Accept": "application/json"},
    )
    assert await d.send_void(Request("DELETE", "/x/1"), "delete_x") is None
    args, _ = sender.send.call_args
    headers = args[1]
    assert headers["authorization"] == "Bearer T"
    assert headers["Accept"] == "application/json"
    assert args[2] == "delete_x"


@pytest.mark.asyncio
async def test_async_cancel_during_backoff():
    token = AsyncCancelToken()
    sender = AsyncMock()
    sender.send.side_effect = RateLimitError(reset_in_ms=None)
    d = _dispatcher(sender, max_retry=3, min_wait_ms=30_000)
    asyncio.get_running_loop().call_later(0.05, token.cancel)
    with pytest.raises(OperationCancelled):
        await asyncio.wait_for(d.send(Request("GET", "/x"), "x", cancel=token), timeout=5)
    assert sender.send.await_count == 1


@pytest.mark.asyncio
async def test_async_cancel_during_transport():
    token = AsyncCancelToken()
    started = asyncio.Event()
    finished = []

    class SlowSender:
        async def send(self, request, headers, operation, cancel=None):
            started.set()
            await asyncio.sleep(30)
            finished.append(True)

    d = _dispatcher(SlowSender())
    task = asyncio.ensure_future(d.send(Request("GET", "/x"), "x", cancel=token))
    await started.wait()
    token.cancel()
    with pytest.raises(OperationCancelled):
        await asyncio.wait_for(task, timeout=5)
    assert finished == []


@pytest.mark.asyncio
async def test_async_cancel_during_token_acquisition():
    token = AsyncCancelToken()

    class SlowProvider:
        async def get_access_token(self, cancel=None):
            await asyncio.sleep(30)
            return "late"

    sender = AsyncMock()
    d = _dispatcher(sender, token_provider=SlowProvider())
    asyncio.get_running_loop().call_later(0.05, token.cancel)
    with pytest.raises(OperationCancelled):
        await asyncio.wait_for(d.send(Request("GET", "/x"), "x", cancel=token), timeout=5)
    sender.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_async_from_config_with_httpx_mock_transport():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        seen["url"] = str(request.url)
        return httpx.Response(200, json={"id": 3})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        cfg = ClientConfig(
            base_url="https://api.example.com",
            credentials_method="static_token",
            token="S",
        )
        d = AsyncDispatcher.from_config(cfg, client=client)
        assert await d.send(Request("GET", "items/3"), "get_item") == {"id": 3}
    assert seen == {"auth": "Bearer S", "url": "https://api.example.com/items/3"}


@pytest.mark.asyncio
async def test_async_aclose_leaves_caller_supplied_sender_alone():
    sender = AsyncMock()
    await AsyncDispatcher(ClientConfig(), sender).aclose()
    sender.aclose.assert_not_awaited()


@pytest.mark.asyncio
async def test_async_aclose_releases_owned_sender():
    d = AsyncDispatcher.from_config(ClientConfig(base_url="https://x"))
    await d.aclose()
    assert d.sender.client.is_closed
