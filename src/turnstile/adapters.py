import asyncio
import contextlib
import json
import logging
from collections.abc import Mapping
from typing import Any, Union

from .errors import ApiError, AuthenticationError, RateLimitError
from .retry import parse_reset_ms
from .types import Request

_logger = logging.getLogger("turnstile")


# ---------- Common helpers ----------


def _join_url(base_url: str, path: str) -> str:
    if not base_url or path.startswith(("http://", "https://")):
        return path
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


def _decode_body(text: str, content_type: str) -> Any:
    if not text:
        return None
    if "json" in (content_type or "").lower():
        try:
            return json.loads(text)
        except ValueError:
            return text
    return text


def _classify(
    status: int, headers: Mapping[str, str], body: Any, operation: str
) -> Union[Exception, None]:
    """Map an HTTP status to the error the dispatcher expects, or None on success."""
    if status == 429:  # noqa: PLR2004, http status code can be constant
        return RateLimitError(
            f"{operation}: rate limited",
            reset_in_ms=parse_reset_ms(headers),
            operation=operation,
        )
    if status in (401, 403):
        return AuthenticationError(
            operation,
            ApiError("credential rejected", status_code=status, body=body, operation=operation),
        )
    if status >= 400:  # noqa: PLR2004, http status code can be constant
        return ApiError("HTTP error", status_code=status, body=body, operation=operation)
    return None


def _finish(status: int, headers: Mapping[str, str], text: str, operation: str):
    body = _decode_body(text, headers.get("content-type", ""))
    _logger.debug(f"{operation}: HTTP {status}")
    err = _classify(status, headers, body, operation)
    if err is not None:
        raise err
    return body


# ---------- requests (sync) ----------
class RequestsSender:
    """Performs exactly one call per ``send`` on a requests.Session."""

    def __init__(self, base_url: str = "", session=None, timeout_s: float = 30.0):
        self.base_url = base_url
        self.timeout_s = timeout_s
        if session is None:
            import requests  # noqa: PLC0415

            session = requests.Session()
            self._own_session = True
        else:
            self._own_session = False
        self.session = session

    def close(self):
        if self._own_session:
            with contextlib.suppress(Exception):
                self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def send(self, request: Request, headers: Mapping[str, str], operation: str, cancel=None):
        import requests  # noqa: PLC0415

        url = _join_url(self.base_url, request.path)
        try:
            resp = self.session.request(
                request.method,
                url,
                headers=dict(headers),
                params=request.params,
                json=request.json,
                data=request.data,
                timeout=self.timeout_s,
            )
        except requests.RequestException as e:
            raise ApiError(f"request failed: {e}", operation=operation) from e
        return _finish(resp.status_code, resp.headers, resp.text, operation)


# ---------- httpx (async) ----------
class HttpxSender:
    """Performs exactly one call per ``send`` on an httpx.AsyncClient."""

    def __init__(self, base_url: str = "", client=None, timeout_s: float = 30.0):
        self.base_url = base_url
        self.timeout_s = timeout_s
        if client is None:
            import httpx  # noqa: PLC0415

            client = httpx.AsyncClient(timeout=timeout_s)
            self._own_client = True
        else:
            self._own_client = False
        self.client = client

    async def aclose(self):
        if self._own_client:
            with contextlib.suppress(Exception):
                await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
        return False

    async def send(self, request: Request, headers: Mapping[str, str], operation: str, cancel=None):
        import httpx  # noqa: PLC0415

        url = _join_url(self.base_url, request.path)
        try:
            resp = await self.client.request(
                request.method,
                url,
                headers=dict(headers),
                params=request.params,
                json=request.json,
                data=request.data,
            )
        except httpx.HTTPError as e:
            raise ApiError(f"request failed: {e}", operation=operation) from e
        return _finish(resp.status_code, resp.headers, resp.text, operation)


# ---------- aiohttp (async) ----------
class AiohttpSender:
    """Performs exactly one call per ``send`` on an aiohttp.ClientSession.

    The session is created lazily on first use when none is supplied, since
    aiohttp sessions must be built inside a running event loop.
    """

    def __init__(self, base_url: str = "", session=None, timeout_s: float = 30.0):
        self.base_url = base_url
        self.timeout_s = timeout_s
        self.session = session
        self._own_session = session is None

    async def _session(self):
        if self.session is None:
            import aiohttp  # noqa: PLC0415

            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_s)
            )
        return self.session

    async def aclose(self):
        if self._own_session and self.session is not None:
            with contextlib.suppress(Exception):
                await self.session.close()
            self.session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
        return False

    async def send(self, request: Request, headers: Mapping[str, str], operation: str, cancel=None):
        import aiohttp  # noqa: PLC0415

        session = await self._session()
        url = _join_url(self.base_url, request.path)
        try:
            async with session.request(
                request.method,
                url,
                headers=dict(headers),
                params=request.params,
                json=request.json,
                data=request.data,
            ) as resp:
                text = await resp.text(errors="replace")
                status, resp_headers = resp.status, resp.headers
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ApiError(f"request failed: {e}", operation=operation) from e
        return _finish(status, resp_headers, text, operation)
