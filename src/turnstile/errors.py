"""Error taxonomy for dispatched calls.

Every error carries a ``kind`` tag; retry decisions switch on the tag:

- ``authentication``: credential could not be obtained or was rejected, never retried
- ``rate_limit``: server asked us to slow down, retried with reset-aware backoff
- ``api``: any other failure (HTTP error status, network error), never retried
- ``token``: raised by the bundled token providers, wrapped by the dispatcher
- ``cancelled``: the caller's cancel signal fired at a suspension point
"""

from typing import Any, Union


class TurnstileError(Exception):
    kind = "error"


class AuthenticationError(TurnstileError):
    kind = "authentication"

    def __init__(self, operation: str, cause: Union[BaseException, None] = None):
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"authentication failed for {operation}{detail}")


class RateLimitError(TurnstileError):
    kind = "rate_limit"

    def __init__(
        self,
        message: str = "rate limited",
        *,
        reset_in_ms: Union[int, None] = None,
        status_code: int = 429,
        operation: Union[str, None] = None,
    ):
        super().__init__(message)
        self.reset_in_ms = reset_in_ms
        self.status_code = status_code
        self.operation = operation


class ApiError(TurnstileError):
    kind = "api"

    def __init__(
        self,
        message: str,
        *,
        status_code: Union[int, None] = None,
        body: Any = None,
        operation: Union[str, None] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.operation = operation

    def __str__(self) -> str:
        parts = [self.args[0] if self.args else ""]
        if self.operation:
            parts.append(f"operation={self.operation}")
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        return " | ".join(parts)


class TokenError(TurnstileError):
    """Token endpoint refused the exchange or answered with something unusable."""

    kind = "token"

    def __init__(self, message: str, *, status_code: Union[int, None] = None):
        super().__init__(message)
        self.status_code = status_code


class OperationCancelled(TurnstileError):
    kind = "cancelled"

    def __init__(self, operation: Union[str, None] = None):
        self.operation = operation
        super().__init__(f"{operation or 'operation'} cancelled")


def error_kind(exc: BaseException) -> str:
    """Return the taxonomy tag of ``exc``; ``"other"`` for foreign exceptions."""
    if isinstance(exc, TurnstileError):
        return exc.kind
    return "other"
