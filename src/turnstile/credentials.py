import asyncio
import logging
import threading
import time
from typing import Union

from .errors import TokenError
from .types import ClientConfig

# Refresh cached tokens this many seconds before the server-stated expiry
DEFAULT_EXPIRY_SKEW_S = 30.0
# Lifetime assumed when the token endpoint omits expires_in
DEFAULT_TOKEN_LIFETIME_S = 300.0


class StaticTokenProvider:
    def __init__(self, token: Union[str, None]):
        self._token = token

    def get_access_token(self, cancel=None) -> Union[str, None]:
        return self._token


class AsyncStaticTokenProvider:
    def __init__(self, token: Union[str, None]):
        self._token = token

    async def get_access_token(self, cancel=None) -> Union[str, None]:
        return self._token


class _ClientCredentialsBase:
    def __init__(
        self,
        token_url: str,
        client_id: str,
        client_secret: str,
        scope: Union[str, None] = None,
        expiry_skew_s: float = DEFAULT_EXPIRY_SKEW_S,
        timeout_s: float = 30.0,
    ):
        self.token_url = token_url
        self.client_id = client_id
        self._client_secret = client_secret
        self.scope = scope
        self.expiry_skew_s = expiry_skew_s
        self.timeout_s = timeout_s
        self._token: Union[str, None] = None
        self._expires_at = 0.0
        self._logger = logging.getLogger("turnstile")

    def _now(self) -> float:
        return time.monotonic()

    def _form(self) -> dict[str, str]:
        form = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self._client_secret,
        }
        if self.scope:
            form["scope"] = self.scope
        return form

    def _cached(self) -> Union[str, None]:
        if self._token and self._now() < self._expires_at:
            return self._token
        return None

    def _store(self, status_code: int, payload) -> str:
        if status_code >= 400:  # noqa: PLR2004, http status code can be constant
            raise TokenError(
                f"token endpoint returned HTTP {status_code}", status_code=status_code
            )
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise TokenError("token response has no access_token", status_code=status_code)
        try:
            lifetime = float(payload.get("expires_in", DEFAULT_TOKEN_LIFETIME_S))
        except (TypeError, ValueError):
            lifetime = DEFAULT_TOKEN_LIFETIME_S
        self._token = payload["access_token"]
        self._expires_at = self._now() + max(0.0, lifetime - self.expiry_skew_s)
        self._logger.debug(
            f"token acquired client_id={self.client_id} lifetime={lifetime:.0f}s"
        )
        return self._token

    def invalidate(self):
        """Drop the cached token so the next call performs a fresh exchange."""
        self._token = None
        self._expires_at = 0.0


class ClientCredentialsProvider(_ClientCredentialsBase):
    """OAuth2 client-credentials exchange over requests, cached until near expiry.

    A lock serialises refreshes so concurrent callers share a single exchange.
    """

    def __init__(self, token_url: str, client_id: str, client_secret: str, session=None, **kwargs):
        super().__init__(token_url, client_id, client_secret, **kwargs)
        self._session = session
        self._lock = threading.Lock()

    def get_access_token(self, cancel=None) -> str:
        import requests  # noqa: PLC0415

        with self._lock:
            token = self._cached()
            if token is not None:
                return token
            sess = self._session or requests.Session()
            try:
                resp = sess.post(self.token_url, data=self._form(), timeout=self.timeout_s)
            except requests.RequestException as e:
                raise TokenError(f"token request failed: {e}") from e
            finally:
                if self._session is None:
                    sess.close()
            try:
                payload = resp.json()
            except ValueError:
                payload = None
            return self._store(resp.status_code, payload)


class AsyncClientCredentialsProvider(_ClientCredentialsBase):
    """httpx-based twin of ``ClientCredentialsProvider``."""

    def __init__(self, token_url: str, client_id: str, client_secret: str, client=None, **kwargs):
        super().__init__(token_url, client_id, client_secret, **kwargs)
        self._client = client
        self._lock = asyncio.Lock()

    async def get_access_token(self, cancel=None) -> str:
        import httpx  # noqa: PLC0415

        async with self._lock:
            token = self._cached()
            if token is not None:
                return token
            client = self._client or httpx.AsyncClient(timeout=self.timeout_s)
            try:
                resp = await client.post(self.token_url, data=self._form())
            except httpx.HTTPError as e:
                raise TokenError(f"token request failed: {e}") from e
            finally:
                if self._client is None:
                    await client.aclose()
            try:
                payload = resp.json()
            except ValueError:
                payload = None
            return self._store(resp.status_code, payload)


def token_provider_from_config(config: ClientConfig, session=None):
    if config.credentials_method == "static_token":
        return StaticTokenProvider(config.token)
    if config.credentials_method == "client_credentials":
        return ClientCredentialsProvider(
            config.token_url,
            config.client_id,
            config.client_secret,
            scope=config.scope,
            session=session,
            timeout_s=config.timeout_s,
        )
    return None


def async_token_provider_from_config(config: ClientConfig, client=None):
    if config.credentials_method == "static_token":
        return AsyncStaticTokenProvider(config.token)
    if config.credentials_method == "client_credentials":
        return AsyncClientCredentialsProvider(
            config.token_url,
            config.client_id,
            config.client_secret,
            scope=config.scope,
            client=client,
            timeout_s=config.timeout_s,
        )
    return None
