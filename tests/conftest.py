"""Shared fixtures: an in-memory Redis, a controllable clock, and fake collaborators."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Set, Tuple

import fakeredis
import pytest

from socialtrust.compute.cache import MetricsCache, ProfileCache, ScoreCache
from socialtrust.db.redis import Store
from socialtrust.db.retry import RetryExecutor

ALICE = "a1" * 32
BOB = "b2" * 32
CAROL = "c3" * 32


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StaticProfiles:
    def __init__(self, profiles: Dict[str, Dict[str, Any]], fail: bool = False):
        self.profiles = profiles
        self.fail = fail
        self.calls = 0

    async def fetch_profile(self, identity: str) -> Optional[Dict[str, Any]]:
        self.calls += 1
        if self.fail:
            raise RuntimeError("relay unreachable")
        return self.profiles.get(identity)


class StaticEvents:
    def __init__(self, with_relay_list: Set[str], delay: float = 0.0):
        self.with_relay_list = with_relay_list
        self.delay = delay

    async def latest_event(self, identity: str, kind: int) -> Optional[Dict[str, Any]]:
        if self.delay:
            await asyncio.sleep(self.delay)
        if identity in self.with_relay_list:
            return {"id": f"evt-{identity[:4]}", "kind": kind, "created_at": 1_699_999_000}
        return None


class FollowSet:
    def __init__(self, edges: Set[Tuple[str, str]]):
        self.edges = edges

    async def is_following(self, follower: str, followed: str) -> Optional[bool]:
        return (follower, followed) in self.edges


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def redis_client():
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def store(redis_client) -> Store:
    return Store(redis_client, retry=RetryExecutor(max_retries=1, base_delay=0))


@pytest.fixture
def score_cache(store, clock) -> ScoreCache:
    return ScoreCache(store, ttl_seconds=3600, clock=clock)


@pytest.fixture
def metrics_cache(store, clock) -> MetricsCache:
    return MetricsCache(store, ttl_seconds=3600, clock=clock)


@pytest.fixture
def profile_cache(store, clock) -> ProfileCache:
    return ProfileCache(store, ttl_seconds=3600, clock=clock)
