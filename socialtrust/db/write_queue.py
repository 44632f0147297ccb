"""
SocialTrust — Write Serialization Queue

One shared storage connection cannot run overlapping transactions, so every
write is chained onto the tail of a FIFO: each caller waits for the write
scheduled before it, runs, then releases the next waiter.

Process-local only. This is not a distributed lock.
"""
import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")


class WriteSerializationQueue:
    """At most one in-flight write, completed in the order scheduled."""

    def __init__(self):
        self._tail: Optional[asyncio.Future] = None
        self._pending = 0

    @property
    def pending(self) -> int:
        """Writes scheduled but not yet finished (running one included)."""
        return self._pending

    async def run_exclusive(self, fn: Callable[[], Awaitable[T]]) -> T:
        previous = self._tail
        release: asyncio.Future = asyncio.get_running_loop().create_future()
        self._tail = release
        self._pending += 1

        try:
            if previous is not None:
                await asyncio.shield(previous)
            return await fn()
        finally:
            self._pending -= 1
            if previous is None or previous.done():
                _resolve(release)
            else:
                # cancelled while waiting: keep our slot until the predecessor finishes
                previous.add_done_callback(lambda _: _resolve(release))


def _resolve(fut: "asyncio.Future[Any]") -> None:
    if not fut.done():
        fut.set_result(None)
