from .adapters import AiohttpSender, HttpxSender, RequestsSender
from .cancel import AsyncCancelToken, CancelToken
from .credentials import (
    AsyncClientCredentialsProvider,
    AsyncStaticTokenProvider,
    ClientCredentialsProvider,
    StaticTokenProvider,
    async_token_provider_from_config,
    token_provider_from_config,
)
from .dispatcher import AsyncDispatcher, Dispatcher
from .env import load_config_from_env
from .errors import (
    ApiError,
    AuthenticationError,
    OperationCancelled,
    RateLimitError,
    TokenError,
    TurnstileError,
    error_kind,
)
from .retry import aretry_rate_limited, compute_wait_ms, parse_reset_ms, retry_rate_limited
from .types import AuthConfig, ClientConfig, Request, RetryConfig

__all__ = [
    "Request",
    "ClientConfig",
    "RetryConfig",
    "AuthConfig",
    "Dispatcher",
    "AsyncDispatcher",
    "CancelToken",
    "AsyncCancelToken",
    "RequestsSender",
    "HttpxSender",
    "AiohttpSender",
    "StaticTokenProvider",
    "AsyncStaticTokenProvider",
    "ClientCredentialsProvider",
    "AsyncClientCredentialsProvider",
    "token_provider_from_config",
    "async_token_provider_from_config",
    "TurnstileError",
    "AuthenticationError",
    "RateLimitError",
    "ApiError",
    "TokenError",
    "OperationCancelled",
    "error_kind",
    "compute_wait_ms",
    "parse_reset_ms",
    "retry_rate_limited",
    "aretry_rate_limited",
    "load_config_from_env",
]
