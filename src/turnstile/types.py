from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Literal, Protocol, Union

CredentialsMethod = Literal["none", "static_token", "client_credentials"]
CREDENTIALS_METHODS = ("none", "static_token", "client_credentials")


@dataclass(frozen=True)
class RetryConfig:
    # Retries after the first attempt; total attempts = max_retry + 1
    max_retry: int = 3
    # Floor for every backoff wait, used when the server gives no usable reset hint
    min_wait_ms: int = 1000

    def __post_init__(self):
        for name in ("max_retry", "min_wait_ms"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ValueError(f"{name} must be a non-negative integer, got {value!r}")


@dataclass(frozen=True)
class AuthConfig:
    header: str = "Authorization"
    scheme: str = "Bearer"


@dataclass(frozen=True)
class ClientConfig:
    base_url: str = ""
    default_headers: Mapping[str, str] = field(default_factory=dict)
    credentials_method: CredentialsMethod = "none"
    token: Union[str, None] = None
    client_id: Union[str, None] = None
    client_secret: Union[str, None] = None
    token_url: Union[str, None] = None
    scope: Union[str, None] = None
    timeout_s: float = 30.0
    retry: RetryConfig = field(default_factory=RetryConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)

    def __post_init__(self):
        if self.credentials_method not in CREDENTIALS_METHODS:
            raise ValueError(
                f"credentials_method must be one of {CREDENTIALS_METHODS}, "
                f"got {self.credentials_method!r}"
            )
        if self.credentials_method == "static_token" and not self.token:
            raise ValueError("credentials_method='static_token' requires a token")
        if self.credentials_method == "client_credentials":
            missing = [
                name
                for name in ("client_id", "client_secret", "token_url")
                if not getattr(self, name)
            ]
            if missing:
                raise ValueError(
                    f"credentials_method='client_credentials' requires {', '.join(missing)}"
                )
        # Read-only view so concurrent calls can share it without copying
        object.__setattr__(
            self, "default_headers", MappingProxyType(dict(self.default_headers))
        )


@dataclass(frozen=True)
class Request:
    """Caller-built description of one outbound call.

    The dispatcher reads it and passes it through; it only ever adds headers to
    the per-call header set, never to ``headers`` here.
    """

    method: str
    path: str
    params: Union[Mapping[str, Any], None] = None
    json: Any = None
    data: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)


class TokenProvider(Protocol):
    def get_access_token(self, cancel=None) -> Union[str, None]: ...


class AsyncTokenProvider(Protocol):
    async def get_access_token(self, cancel=None) -> Union[str, None]: ...


class Sender(Protocol):
    def send(self, request: Request, headers: Mapping[str, str], operation: str, cancel=None): ...


class AsyncSender(Protocol):
    async def send(
        self, request: Request, headers: Mapping[str, str], operation: str, cancel=None
    ): ...
