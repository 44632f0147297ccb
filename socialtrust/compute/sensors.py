"""
SocialTrust — Metrics Collector
Runs every validator for an identity and keeps the answers fresh.

    Request → Metrics cache → [fetch profile once] → validators (fan-out)
            → merge → Metrics cache → Response

One validator failing never takes the others down: its error is recorded,
its metric stays 0.0, and the rest of the result is returned as normal.
"""
import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
import structlog

from socialtrust.compute.cache import MetricsCache, ProfileCache
from socialtrust.compute.collectors import (
    validate_lightning,
    validate_nip05,
    validate_relay_list,
    validate_reciprocity,
)
from socialtrust.compute.sources import (
    EventSource,
    FollowGraph,
    NullEventSource,
    NullFollowGraph,
    ProfileSource,
)
from socialtrust.db.retry import RetryExecutor, is_retryable_network_error
from socialtrust.errors import CacheUnavailable
from socialtrust.models import (
    BatchCollectionResult,
    CollectionResult,
    ProfileMetrics,
    ValidationOutcome,
)
from socialtrust.trust.weighting import LIGHTNING_ADDRESS, NIP05_VALID, RECIPROCITY, RELAY_LIST

logger = structlog.get_logger()

IDENTITY_METRICS = (NIP05_VALID, LIGHTNING_ADDRESS, RELAY_LIST)


def reciprocity_key(source: str) -> str:
    """Reciprocity depends on the pair, so it is cached per source."""
    return f"{RECIPROCITY}@{source}"


def _chunks(items: List[str], size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


class MetricsCollector:
    """
    Usage:
        collector = MetricsCollector(MetricsCache(store), profiles, events=relays, follows=graph)
        result = await collector.collect_metrics(target, source)
        result.metrics.nip05_valid      # 1.0 / 0.0
    """

    def __init__(
        self,
        cache: MetricsCache,
        profiles: ProfileSource,
        events: Optional[EventSource] = None,
        follows: Optional[FollowGraph] = None,
        profile_cache: Optional[ProfileCache] = None,
        http: Optional[httpx.AsyncClient] = None,
        enable_nip05: bool = True,
        enable_lightning: bool = True,
        enable_relay_list: bool = True,
        enable_reciprocity: bool = True,
        check_lightning_connectivity: bool = False,
        timeout: float = 10.0,
        retries: int = 2,
        retry_base_delay: float = 0.1,
        batch_concurrency: int = 3,
        clock: Callable[[], float] = time.time,
    ):
        self.cache = cache
        self.profiles = profiles
        self.events = events or NullEventSource()
        self.follows = follows or NullFollowGraph()
        self.profile_cache = profile_cache
        self._http = http
        self.enabled = {
            NIP05_VALID: enable_nip05,
            LIGHTNING_ADDRESS: enable_lightning,
            RELAY_LIST: enable_relay_list,
            RECIPROCITY: enable_reciprocity,
        }
        self.check_lightning_connectivity = check_lightning_connectivity
        self.timeout = timeout
        self.retries = retries
        self.retry_base_delay = retry_base_delay
        self.batch_concurrency = batch_concurrency
        self._clock = clock

    def now(self) -> int:
        return int(self._clock())

    @asynccontextmanager
    async def _client(self):
        if self._http is not None:
            yield self._http
            return
        async with httpx.AsyncClient(
            headers={"User-Agent": "SocialTrust Collector/1.0"},
            follow_redirects=True,
        ) as client:
            yield client

    # ── Cache-aside ───────────────────────────────

    def _wanted_keys(self, source: Optional[str]) -> List[str]:
        keys = [m for m in IDENTITY_METRICS if self.enabled[m]]
        if source and self.enabled[RECIPROCITY]:
            keys.append(reciprocity_key(source))
        return keys

    async def _from_cache(self, target: str, source: Optional[str]) -> Optional[ProfileMetrics]:
        try:
            found = await self.cache.get_metrics(target)
        except CacheUnavailable as e:
            logger.warning("metrics_cache_read_skipped", target=target[:8], error=str(e))
            return None
        if found is None:
            return None
        values, computed_at = found
        if any(k not in values for k in self._wanted_keys(source)):
            return None
        return ProfileMetrics(
            pubkey=target,
            nip05_valid=values.get(NIP05_VALID, 0.0),
            lightning_address=values.get(LIGHTNING_ADDRESS, 0.0),
            relay_list=values.get(RELAY_LIST, 0.0),
            reciprocity=values.get(reciprocity_key(source), 0.0) if source else 0.0,
            computed_at=computed_at,
        )

    async def _profile(self, target: str, errors: List[str]) -> Dict[str, Any]:
        if self.profile_cache is not None:
            try:
                cached = await self.profile_cache.get(target)
            except CacheUnavailable:
                cached = None
            if cached is not None:
                return cached

        try:
            profile = await asyncio.wait_for(self.profiles.fetch_profile(target), timeout=self.timeout)
        except Exception as e:
            errors.append(f"profile: {str(e) or type(e).__name__}")
            logger.warning("profile_fetch_failed", target=target[:8], error=str(e))
            return {}

        if profile and self.profile_cache is not None:
            try:
                await self.profile_cache.save(target, profile)
            except CacheUnavailable as e:
                logger.warning("profile_cache_write_skipped", error=str(e))
        return profile or {}

    # ── Validator fan-out ─────────────────────────

    async def _run(
        self,
        name: str,
        check: Callable[[], Awaitable[ValidationOutcome]],
        timeout: float,
        executor: RetryExecutor,
        details: Dict[str, ValidationOutcome],
        errors: List[str],
    ) -> None:
        t0 = time.time()
        outcome = await executor.retry(lambda: asyncio.wait_for(check(), timeout=timeout))
        elapsed = round((time.time() - t0) * 1000, 2)
        if outcome.ok:
            details[name] = outcome.value
            return
        error = outcome.error
        message = str(error) or type(error).__name__
        errors.append(f"{name}: {message}")
        logger.warning("validator_failed", metric=name, error=message,
                       attempts=outcome.attempts, elapsed_ms=elapsed)

    async def _compute(
        self,
        target: str,
        source: Optional[str],
        timeout: float,
        retries: int,
        parallel: bool,
    ):
        details: Dict[str, ValidationOutcome] = {}
        errors: List[str] = []
        executor = RetryExecutor(
            max_retries=retries,
            base_delay=self.retry_base_delay,
            is_retryable=is_retryable_network_error,
        )

        profile = await self._profile(target, errors)

        async with self._client() as client:
            checks: Dict[str, Callable[[], Awaitable[ValidationOutcome]]] = {}
            if self.enabled[NIP05_VALID]:
                checks[NIP05_VALID] = lambda: validate_nip05(target, profile, client)
            if self.enabled[LIGHTNING_ADDRESS]:
                checks[LIGHTNING_ADDRESS] = lambda: validate_lightning(
                    profile, client, self.check_lightning_connectivity,
                )
            if self.enabled[RELAY_LIST]:
                checks[RELAY_LIST] = lambda: validate_relay_list(target, self.events)
            if self.enabled[RECIPROCITY] and source:
                checks[RECIPROCITY] = lambda: validate_reciprocity(source, target, self.follows)

            runs = [self._run(name, check, timeout, executor, details, errors) for name, check in checks.items()]
            if parallel:
                await asyncio.gather(*runs)
            else:
                for run in runs:
                    await run

        return details, errors

    # ── Public API ────────────────────────────────

    async def collect_metrics(
        self,
        target: str,
        source: Optional[str] = None,
        force_refresh: bool = False,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
        parallel: bool = True,
        include_details: bool = False,
    ) -> CollectionResult:
        if not force_refresh:
            cached = await self._from_cache(target, source)
            if cached is not None:
                logger.debug("cache_hit", cache="metrics", target=target[:8])
                return CollectionResult(
                    pubkey=target,
                    source_pubkey=source,
                    metrics=cached,
                    collected_at=self.now(),
                    cache_hit=True,
                )

        details, errors = await self._compute(
            target,
            source,
            timeout=self.timeout if timeout is None else timeout,
            retries=self.retries if retries is None else retries,
            parallel=parallel,
        )

        now = self.now()
        signals = {name: 1.0 if outcome.signal else 0.0 for name, outcome in details.items()}
        metrics = ProfileMetrics(pubkey=target, computed_at=now, **signals)

        # only successful checks are cached, so failures are retried next time
        to_cache = {name: v for name, v in signals.items() if name != RECIPROCITY}
        if RECIPROCITY in signals and source:
            to_cache[reciprocity_key(source)] = signals[RECIPROCITY]
        if to_cache:
            try:
                await self.cache.save(target, to_cache, computed_at=now)
            except CacheUnavailable as e:
                logger.warning("metrics_cache_write_skipped", target=target[:8], error=str(e))

        return CollectionResult(
            pubkey=target,
            source_pubkey=source,
            metrics=metrics,
            collected_at=now,
            cache_hit=False,
            details=details if include_details else None,
            errors=errors or None,
        )

    async def collect_batch(
        self,
        targets: List[str],
        source: Optional[str] = None,
        concurrency: Optional[int] = None,
        **options,
    ) -> BatchCollectionResult:
        """Fixed-size chunks bound the outstanding IO; each target always gets a result."""
        start = time.time()
        size = concurrency or (self.batch_concurrency if options.get("parallel", True) else 1)
        results: List[CollectionResult] = []
        batch_errors: List[Dict[str, str]] = []

        async def one(target: str) -> CollectionResult:
            try:
                return await self.collect_metrics(target, source, **options)
            except Exception as e:
                message = str(e) or type(e).__name__
                batch_errors.append({"pubkey": target, "error": message})
                logger.warning("batch_target_failed", target=str(target)[:8], error=message)
                now = self.now()
                return CollectionResult(
                    pubkey=target,
                    source_pubkey=source,
                    metrics=ProfileMetrics(pubkey=target, computed_at=now),
                    collected_at=now,
                    cache_hit=False,
                    errors=[message],
                )

        for chunk in _chunks(list(targets), size):
            results.extend(await asyncio.gather(*(one(t) for t in chunk)))

        successful = sum(1 for r in results if not r.errors)
        summary = {
            "total": len(results),
            "successful": successful,
            "failed": len(results) - successful,
            "cache_hits": sum(1 for r in results if r.cache_hit),
            "duration": round((time.time() - start) * 1000, 2),
        }
        logger.info("batch_collection_complete", **summary)
        return BatchCollectionResult(results=results, summary=summary, errors=batch_errors)

    async def get_metric(self, target: str, name: str, source: Optional[str] = None, **options) -> float:
        """Single metric value; 0.0 when absent or on any failure."""
        try:
            result = await self.collect_metrics(target, source, **options)
        except Exception as e:
            logger.warning("get_metric_failed", target=str(target)[:8], metric=name, error=str(e))
            return 0.0
        return float(result.metrics.values().get(name, 0.0))

    async def invalidate_cache(self, target: str) -> bool:
        removed = await self.cache.invalidate(target)
        if self.profile_cache is not None:
            await self.profile_cache.invalidate(target)
        return removed

    async def invalidate_metric(self, target: str, name: str, source: Optional[str] = None) -> bool:
        key = reciprocity_key(source) if name == RECIPROCITY and source else name
        return await self.cache.invalidate_metric(target, key)

    async def refresh_metrics(self, target: str, source: Optional[str] = None, **options) -> CollectionResult:
        await self.invalidate_cache(target)
        return await self.collect_metrics(target, source, force_refresh=True, **options)

    async def get_cache_stats(self) -> Dict[str, Any]:
        return await self.cache.get_stats()

    async def cleanup_cache(self) -> int:
        removed = await self.cache.cleanup()
        if self.profile_cache is not None:
            removed += await self.profile_cache.cleanup()
        return removed
