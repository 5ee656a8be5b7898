import asyncio
import contextlib
import logging
import time
from typing import Union

from requests.structures import CaseInsensitiveDict

from .errors import AuthenticationError, OperationCancelled
from .retry import aretry_rate_limited, retry_rate_limited
from .types import ClientConfig, Request

# ---------- Base (header construction shared by sync and async) ----------


class _DispatcherBase:
    def __init__(
        self,
        config: ClientConfig,
        sender,
        token_provider=None,
        log_level: Union[int, None] = None,
    ):
        """Initialize a dispatcher.

        Args:
            config (ClientConfig): retry policy, default headers and auth header settings
            sender: transport sender performing exactly one HTTP call per ``send``
            token_provider: optional provider whose ``get_access_token`` returns a bearer token
            log_level (int | None): level for the "turnstile" logger
        """
        self.config = config
        self.sender = sender
        self.token_provider = token_provider
        # Collaborators built by from_config; caller-supplied ones are never closed
        self._owned: tuple = ()
        self._logger = logging.getLogger("turnstile")
        if log_level is not None:
            self._logger.setLevel(log_level)

    def _build_headers(self, request: Request, token: Union[str, None]) -> CaseInsensitiveDict:
        headers = CaseInsensitiveDict(self.config.default_headers)
        headers.update(request.headers or {})
        if token:
            ac = self.config.auth
            headers[ac.header] = f"{ac.scheme} {token}".strip()
        return headers


# ---------- Sync dispatcher (requests) ----------


class Dispatcher(_DispatcherBase):
    """Attach credentials, send, and retry rate-limited calls with reset-aware backoff.

    A ``CancelToken`` is checked before token acquisition and before every attempt,
    and interrupts the backoff sleep. A token fetch or send that is already blocking
    cannot be interrupted; the token is handed to the provider and sender so they
    may check it themselves. Use ``AsyncDispatcher`` when all three waits must be
    abortable.
    """

    def send(self, request: Request, operation: str, cancel=None):
        token = self._acquire_token(operation, cancel)
        headers = self._build_headers(request, token)

        def _attempt():
            self._logger.debug(f"req start {request.method} {request.path} op={operation}")
            return self.sender.send(request, headers, operation, cancel)

        return retry_rate_limited(
            _attempt,
            self.config.retry,
            sleep=lambda seconds: self._sleep(seconds, cancel, operation),
            operation=operation,
            cancel=cancel,
            logger=self._logger,
        )

    def send_void(self, request: Request, operation: str, cancel=None) -> None:
        self.send(request, operation, cancel)

    def _acquire_token(self, operation: str, cancel) -> Union[str, None]:
        if self.token_provider is None:
            return None
        if cancel is not None:
            cancel.raise_if_cancelled(operation)
        try:
            return self.token_provider.get_access_token(cancel)
        except OperationCancelled:
            raise
        except Exception as e:
            self._logger.warning(f"{operation}: token acquisition failed: {e}")
            raise AuthenticationError(operation, e) from e

    def _sleep(self, seconds: float, cancel, operation: str):
        if cancel is None:
            time.sleep(seconds)
        elif cancel.wait(seconds):
            raise OperationCancelled(operation)

    def close(self):
        for part in self._owned:
            closer = getattr(part, "close", None)
            if closer is not None:
                with contextlib.suppress(Exception):
                    closer()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    @classmethod
    def from_config(cls, config: ClientConfig, session=None, **kwargs):
        """Build a dispatcher with a RequestsSender and the provider named by the config."""
        from .adapters import RequestsSender  # noqa: PLC0415
        from .credentials import token_provider_from_config  # noqa: PLC0415

        sender = RequestsSender(config.base_url, session=session, timeout_s=config.timeout_s)
        provider = token_provider_from_config(config)
        dispatcher = cls(config, sender, provider, **kwargs)
        dispatcher._owned = (sender, provider)
        return dispatcher

    @classmethod
    def from_env(cls, prefix: str = "TURNSTILE_", env_path: Union[str, None] = None, **kwargs):
        from .env import load_config_from_env  # noqa: PLC0415

        return cls.from_config(load_config_from_env(prefix=prefix, env_path=env_path), **kwargs)


# ---------- Async dispatcher (httpx/aiohttp) ----------


class AsyncDispatcher(_DispatcherBase):
    """Async twin of ``Dispatcher``; token, send and backoff all honour the cancel token."""

    async def send(self, request: Request, operation: str, cancel=None):
        token = await self._acquire_token(operation, cancel)
        headers = self._build_headers(request, token)

        async def _attempt():
            self._logger.debug(f"req start {request.method} {request.path} op={operation}")
            pending = self.sender.send(request, headers, operation, cancel)
            if cancel is None:
                return await pending
            return await cancel.guard(pending, operation)

        return await aretry_rate_limited(
            _attempt,
            self.config.retry,
            sleep=lambda seconds: self._sleep(seconds, cancel, operation),
            operation=operation,
            cancel=cancel,
            logger=self._logger,
        )

    async def send_void(self, request: Request, operation: str, cancel=None) -> None:
        await self.send(request, operation, cancel)

    async def _acquire_token(self, operation: str, cancel) -> Union[str, None]:
        if self.token_provider is None:
            return None
        try:
            pending = self.token_provider.get_access_token(cancel)
            if cancel is None:
                return await pending
            return await cancel.guard(pending, operation)
        except OperationCancelled:
            raise
        except Exception as e:
            self._logger.warning(f"{operation}: token acquisition failed: {e}")
            raise AuthenticationError(operation, e) from e

    async def _sleep(self, seconds: float, cancel, operation: str):
        if cancel is None:
            await asyncio.sleep(seconds)
        else:
            await cancel.sleep(seconds, operation)

    async def aclose(self):
        for part in self._owned:
            closer = getattr(part, "aclose", None)
            if closer is not None:
                with contextlib.suppress(Exception):
                    await closer()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
        return False

    @classmethod
    def from_config(cls, config: ClientConfig, client=None, **kwargs):
        """Build an async dispatcher with an HttpxSender and the configured provider."""
        from .adapters import HttpxSender  # noqa: PLC0415
        from .credentials import async_token_provider_from_config  # noqa: PLC0415

        sender = HttpxSender(config.base_url, client=client, timeout_s=config.timeout_s)
        provider = async_token_provider_from_config(config, client=client)
        dispatcher = cls(config, sender, provider, **kwargs)
        dispatcher._owned = (sender, provider)
        return dispatcher

    @classmethod
    def from_env(cls, prefix: str = "TURNSTILE_", env_path: Union[str, None] = None, **kwargs):
        from .env import load_config_from_env  # noqa: PLC0415

        return cls.from_config(load_config_from_env(prefix=prefix, env_path=env_path), **kwargs)
