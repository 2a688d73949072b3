import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from ideagen.errors import (
    InputError,
    MalformedResponseError,
    PermanentGenerationError,
    TransientGenerationError,
)

T = TypeVar("T")

logger = logging.getLogger("ideagen")


class MaxRetryErrorsException(Exception):
    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"All {attempts} retry attempts failed: {last_error}")


_RETRYABLE_MARKERS = (
    "network error",
    "timeout",
    "timed out",
    "connection refused",
    "connection reset",
    "rate limit",
    "too many requests",
    "resource_exhausted",
    "resource has been exhausted",
    "server error",
    "internal server error",
    "bad gateway",
    "service unavailable",
    "gateway timeout",
)

_PERMANENT_TYPES = (
    PermanentGenerationError,
    MalformedResponseError,
    InputError,
    ValueError,
    TypeError,
)


def _is_timeout_error(e: BaseException) -> bool:
    if isinstance(e, (asyncio.TimeoutError, TimeoutError)):
        return True
    msg = repr(e)
    return "TimeoutError" in msg or "timed out" in msg.lower()


def _is_resource_exhausted_error(e: BaseException) -> bool:
    msg = str(e)
    return (
        "429" in msg
        and (
            "RESOURCE_EXHAUSTED" in msg
            or "Resource has been exhausted" in msg
            or "Too Many Requests" in msg
        )
    )


def _status_code(e: BaseException) -> int | None:
    code = getattr(e, "status_code", None)
    if code is None:
        code = getattr(getattr(e, "response", None), "status_code", None)
    return code if isinstance(code, int) else None


def is_retryable_error(e: BaseException) -> bool:
    """
    Network / timeout / 429 / 5xx-class failures are retryable.
    Validation-class failures (the remote explicitly rejected the request) are not.
    """
    if isinstance(e, TransientGenerationError):
        return True
    if isinstance(e, _PERMANENT_TYPES):
        return False
    if isinstance(e, ConnectionError) or _is_timeout_error(e):
        return True
    if _is_resource_exhausted_error(e):
        return True

    code = _status_code(e)
    if code is not None:
        return code == 429 or code >= 500

    msg = str(e).lower()
    return any(marker in msg for marker in _RETRYABLE_MARKERS)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    delay: float = 2.0,
    on_retry: Callable[[int, BaseException], None] | None = None,
    is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run `operation` up to `max_attempts` times with a fixed `delay` between attempts.

    `on_retry(attempt, error)` fires once before each retry, `attempt` being the
    1-based index of the attempt that just failed. Non-retryable errors propagate
    immediately with an `attempts` attribute attached.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    last_exception: BaseException | None = None

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            last_exception = e

            if not is_retryable(e):
                logger.info(f"[RETRY] attempt {attempt} failed with a non-retryable error: {e!r}")
                e.attempts = attempt
                raise

            logger.info(f"[RETRY] attempt {attempt}/{max_attempts} failed: {e!r}")
            if attempt == max_attempts:
                break

            if on_retry:
                on_retry(attempt, e)
            await sleep(delay)

    raise MaxRetryErrorsException(max_attempts, last_exception) from last_exception
