import email.utils
import logging
import math
import time
from collections.abc import Mapping
from datetime import timezone
from typing import Callable, Union

from .errors import error_kind
from .types import RetryConfig

_logger = logging.getLogger("turnstile")

# Longest reset hint honoured; larger server values are clamped to it
MAX_RESET_MS = 24 * 60 * 60 * 1000

# Header names carrying a delta-seconds reset hint, checked after Retry-After
_RESET_DELTA_HEADERS = ("ratelimit-reset", "x-ratelimit-reset-after")


def _header(headers: Mapping[str, str], name: str) -> Union[str, None]:
    for k, v in headers.items():
        if k.lower() == name:
            return v
    return None


def _seconds_to_ms(seconds: float) -> Union[int, None]:
    if not math.isfinite(seconds):
        return None
    return min(MAX_RESET_MS, max(0, int(math.ceil(seconds * 1000))))


def parse_reset_ms(
    headers: Mapping[str, str], now: Union[float, None] = None
) -> Union[int, None]:
    """Extract a server reset hint (milliseconds) from rate-limit response headers.

    ``Retry-After`` is read first, as delta-seconds or an HTTP-date (RFC 7231);
    then ``RateLimit-Reset`` and ``X-RateLimit-Reset-After`` as delta-seconds.
    Returns None when no header is present or none parses.
    """
    ra = _header(headers, "retry-after")
    if ra is not None:
        ra = ra.strip()
        try:
            ms = _seconds_to_ms(float(ra))
        except ValueError:
            ms = _date_to_ms(ra, now)
        except OverflowError:
            ms = None
        if ms is not None:
            return ms
    for name in _RESET_DELTA_HEADERS:
        value = _header(headers, name)
        if value is None:
            continue
        try:
            ms = _seconds_to_ms(float(value.strip()))
        except (ValueError, OverflowError):
            continue
        if ms is not None:
            return ms
    return None


def _date_to_ms(value: str, now: Union[float, None]) -> Union[int, None]:
    try:
        ts = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if ts is None:
        return None
    if ts.tzinfo is None:
        # "-0000" zone dates parse naive; RFC 7231 dates are always UTC
        ts = ts.replace(tzinfo=timezone.utc)
    now = time.time() if now is None else now
    try:
        # Round up to whole seconds so short delays are not truncated
        return _seconds_to_ms(math.ceil(ts.timestamp() - now))
    except (OverflowError, ValueError):
        return None


def compute_wait_ms(reset_in_ms: Union[int, None], min_wait_ms: int) -> int:
    """Trust the server hint when it meets the floor, otherwise use the floor."""
    if reset_in_ms is None or reset_in_ms < min_wait_ms:
        return min_wait_ms
    # Clamped so sleep/wait never receive an overflowing timeout
    return min(reset_in_ms, max(MAX_RESET_MS, min_wait_ms))


def retry_rate_limited(
    action: Callable[[], object],
    config: RetryConfig,
    *,
    sleep: Callable[[float], None],
    operation: str = "request",
    cancel=None,
    logger: Union[logging.Logger, None] = None,
):
    """Run ``action`` up to ``config.max_retry + 1`` times, backing off on rate limits only.

    ``sleep`` receives the wait in seconds and is expected to honour ``cancel``.
    The last ``RateLimitError`` is re-raised unchanged once retries are exhausted;
    every other error propagates on first occurrence.
    """
    log = logger or _logger
    attempt = 0
    while True:
        attempt += 1
        if cancel is not None:
            cancel.raise_if_cancelled(operation)
        try:
            return action()
        except Exception as err:
            if error_kind(err) != "rate_limit":
                raise
            if attempt > config.max_retry:
                log.warning(f"{operation}: rate limited, giving up after {attempt} attempts")
                raise
            wait_ms = compute_wait_ms(err.reset_in_ms, config.min_wait_ms)
            log.info(
                f"{operation}: rate limited on attempt {attempt}; "
                f"retrying in {wait_ms}ms (hint={err.reset_in_ms})"
            )
        if wait_ms > 0:
            sleep(wait_ms / 1000.0)


async def aretry_rate_limited(
    action,
    config: RetryConfig,
    *,
    sleep,
    operation: str = "request",
    cancel=None,
    logger: Union[logging.Logger, None] = None,
):
    """Async twin of ``retry_rate_limited``; ``action`` and ``sleep`` return awaitables."""
    log = logger or _logger
    attempt = 0
    while True:
        attempt += 1
        if cancel is not None:
            cancel.raise_if_cancelled(operation)
        try:
            return await action()
        except Exception as err:
            if error_kind(err) != "rate_limit":
                raise
            if attempt > config.max_retry:
                log.warning(f"{operation}: rate limited, giving up after {attempt} attempts")
                raise
            wait_ms = compute_wait_ms(err.reset_in_ms, config.min_wait_ms)
            log.info(
                f"{operation}: rate limited on attempt {attempt}; "
                f"retrying in {wait_ms}ms (hint={err.reset_in_ms})"
            )
        if wait_ms > 0:
            await sleep(wait_ms / 1000.0)
