"""
SocialTrust — Retry Executor

Retries transient failures (lock / busy / timeout signals) with exponential
backoff: delay = base_delay * 2 ** (attempt - 1). Non-retryable failures
(constraint violations, malformed input, not-found) stop after the attempt
that raised them.

Failures never cross the retry boundary as exceptions: callers get a
RetryOutcome and decide whether to unwrap() it.
"""
import asyncio
import functools
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

import httpx
import redis.exceptions
import structlog

from socialtrust.errors import CacheUnavailable

logger = structlog.get_logger()

T = TypeVar("T")

# Redis replies that mean "try again later" rather than "you sent garbage"
_TRANSIENT_REPLIES = ("BUSY", "LOADING", "TRYAGAIN", "MASTERDOWN", "CLUSTERDOWN")


def is_retryable_storage_error(exc: BaseException) -> bool:
    if isinstance(exc, (
        redis.exceptions.ConnectionError,
        redis.exceptions.TimeoutError,
        CacheUnavailable,
        asyncio.TimeoutError,
    )):
        return True
    if isinstance(exc, redis.exceptions.ResponseError):
        return str(exc).upper().startswith(_TRANSIENT_REPLIES)
    return False


def is_retryable_network_error(exc: BaseException) -> bool:
    return isinstance(exc, (httpx.TransportError, asyncio.TimeoutError))


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[BaseException] = None
    attempts: int = 0

    @property
    def retries(self) -> int:
        return max(0, self.attempts - 1)

    def unwrap(self) -> T:
        """Return the value, or re-raise the last error unchanged."""
        if not self.ok:
            raise self.error
        return self.value


class RetryExecutor:
    """
    Usage:
        executor = RetryExecutor(max_retries=3, base_delay=0.1)
        outcome = await executor.retry(lambda: client.hset(key, mapping=row))
        if not outcome.ok:
            ...
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 0.1,
        is_retryable: Callable[[BaseException], bool] = is_retryable_storage_error,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.is_retryable = is_retryable
        self._sleep = sleep

    async def retry(
        self,
        operation: Callable[[], Awaitable[T]],
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
    ) -> RetryOutcome[T]:
        retries = self.max_retries if max_retries is None else max_retries
        base = self.base_delay if base_delay is None else base_delay
        max_attempts = retries + 1

        last_error: Optional[BaseException] = None
        attempt = 0
        while attempt < max_attempts:
            attempt += 1
            try:
                value = await operation()
                return RetryOutcome(ok=True, value=value, attempts=attempt)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e

            if not self.is_retryable(last_error):
                logger.debug("retry_not_retryable", attempt=attempt, error=str(last_error))
                break

            if attempt < max_attempts:
                delay = base * 2 ** (attempt - 1)
                logger.warning(
                    "retrying_operation",
                    attempt=attempt,
                    max_attempts=max_attempts,
                    delay=delay,
                    error=str(last_error),
                )
                await self._sleep(delay)

        return RetryOutcome(ok=False, error=last_error, attempts=attempt)


def with_retry(
    max_retries: int = 3,
    base_delay: float = 0.1,
    is_retryable: Callable[[BaseException], bool] = is_retryable_storage_error,
):
    """Decorate an async function so calls return a RetryOutcome."""
    executor = RetryExecutor(max_retries, base_delay, is_retryable)

    def decorator(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[RetryOutcome[T]]]:
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs) -> RetryOutcome[T]:
            return await executor.retry(lambda: fn(*args, **kwargs))
        return wrapper

    return decorator
