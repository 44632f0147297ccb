"""
SocialTrust — Storage Connection

One Redis client per Store. The Store owns the write queue and the retry
policy for that client, so every repository sharing the connection also
shares its write ordering.

    reads  → RetryExecutor → client (never wait on writes)
    writes → WriteSerializationQueue → RetryExecutor → client
"""
from typing import Awaitable, Callable, Optional, TypeVar

import redis.asyncio as aioredis
import redis.exceptions
import structlog

from socialtrust.db.retry import RetryExecutor, RetryOutcome, is_retryable_storage_error
from socialtrust.db.write_queue import WriteSerializationQueue
from socialtrust.errors import CacheUnavailable

logger = structlog.get_logger()

T = TypeVar("T")

_store: Optional["Store"] = None


class Store:
    def __init__(
        self,
        client: "aioredis.Redis",
        queue: Optional[WriteSerializationQueue] = None,
        retry: Optional[RetryExecutor] = None,
    ):
        self.client = client
        self.queue = queue or WriteSerializationQueue()
        self.retry = retry or RetryExecutor()

    @classmethod
    def from_url(cls, url: str, max_retries: int = 3, base_delay: float = 0.1) -> "Store":
        client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=3,
            socket_timeout=2,
        )
        logger.info("store_created", url=url.split("@")[-1])
        return cls(client, retry=RetryExecutor(max_retries=max_retries, base_delay=base_delay))

    async def write(self, op: Callable[[], Awaitable[T]], operation: str = "write") -> T:
        """
        Run a write exclusively, retrying transient failures.
        Non-retryable errors surface unchanged; exhausted retries surface
        as CacheUnavailable.
        """
        outcome = await self.queue.run_exclusive(lambda: self.retry.retry(op))
        return self._unwrap(outcome, operation, "store_write_exhausted")

    async def read(self, op: Callable[[], Awaitable[T]], operation: str = "read") -> T:
        """Same retry policy as writes, without waiting on the write queue."""
        outcome = await self.retry.retry(op)
        return self._unwrap(outcome, operation, "store_read_exhausted")

    @staticmethod
    def _unwrap(outcome: RetryOutcome[T], operation: str, event: str) -> T:
        if outcome.ok:
            return outcome.value

        error = outcome.error
        if is_retryable_storage_error(error):
            logger.warning(event, operation=operation, attempts=outcome.attempts, error=str(error))
            raise CacheUnavailable(f"{operation} failed after {outcome.attempts} attempts: {error}") from error
        raise error

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except redis.exceptions.RedisError as e:
            logger.warning("store_unavailable", error=str(e))
            return False

    async def close(self) -> None:
        await self.client.aclose()
        logger.info("store_closed")


def get_store() -> Store:
    """Get or create the process Store (singleton)."""
    global _store
    if _store is None:
        from socialtrust.config import settings
        _store = Store.from_url(
            settings.REDIS_URL,
            max_retries=settings.STORAGE_RETRIES,
            base_delay=settings.RETRY_BASE_DELAY,
        )
    return _store


async def close() -> None:
    global _store
    if _store is not None:
        await _store.close()
        _store = None
