"""Retries for S3 and STS calls whose request can be rebuilt.

A call is retried only when the failure is transient: the connection
dropped or timed out, the server throttled (429), or it answered with
500, 502, 503 or 504. Signature mismatches and other 4xx answers are
final, as are streaming read failures.
"""

import logging
import time
from typing import Any, Callable, Optional, Sequence

import httpx

from rustfs_sdk.errors import ResponseError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

TRANSIENT_TRANSPORT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.ReadTimeout)

DEFAULT_DELAYS = (0.5, 1.0, 2.0)


class RetryExhausted(Exception):
    """Every attempt failed with a transient error."""

    def __init__(self, attempts: int, last_error: Optional[Exception] = None):
        super().__init__(f"Operation failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


def status_of(error: Exception) -> Optional[int]:
    """HTTP status carried by an error, if any."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    if isinstance(error, ResponseError):
        return error.status_code
    return None


def is_retryable_error(error: Exception) -> bool:
    """True for transport failures and throttling or 5xx responses."""
    if isinstance(error, TRANSIENT_TRANSPORT_ERRORS):
        return True
    return status_of(error) in RETRYABLE_STATUS_CODES


def delay_for(attempt: int, delays: Sequence[float]) -> float:
    """Pause after failed attempt number `attempt`; the last delay repeats."""
    if not delays:
        return 0.0
    return delays[min(attempt, len(delays)) - 1]


def retry_with_backoff(
    func: Callable[..., Any],
    max_attempts: int = 3,
    delays: Sequence[float] = DEFAULT_DELAYS,
    args: tuple = (),
    kwargs: Optional[dict] = None,
) -> Any:
    """Call func until it succeeds, fails permanently or runs out of attempts.

    Args:
        func: Callable to run. It must rebuild (and re-sign) its request on
              every call.
        max_attempts: Total number of calls, the first one included.
        delays: Seconds to sleep after each failed attempt.
        args: Positional arguments for func.
        kwargs: Keyword arguments for func.

    Raises:
        RetryExhausted: If the last attempt also failed transiently.

    Example:
        >>> credential = retry_with_backoff(credentials.get, max_attempts=5)
    """
    kwargs = kwargs or {}
    attempt = 0

    while True:
        attempt += 1
        try:
            return func(*args, **kwargs)
        except Exception as e:
            if not is_retryable_error(e):
                raise
            if attempt >= max_attempts:
                raise RetryExhausted(attempt, e) from e

            delay = delay_for(attempt, delays)
            logger.warning(
                "Attempt %d/%d failed (%s), retrying in %.2fs",
                attempt,
                max_attempts,
                e,
                delay,
            )
            time.sleep(delay)
