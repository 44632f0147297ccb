"""
SocialTrust — Scoring Pipeline
Scores one identity as seen from another.

Flow:
    1. Check score cache
    2. Collect metrics for the target (cache-aside, validators in parallel)
    3. Resolve hop distance and turn it into a decay weight
    4. Weighted score
    5. Cache result
"""
import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import structlog

from socialtrust.compute.cache import MetricsCache, ProfileCache, ScoreCache
from socialtrust.compute.sensors import MetricsCollector
from socialtrust.compute.sources import (
    DistanceSource,
    EventSource,
    FollowGraph,
    NullDistanceSource,
    ProfileSource,
)
from socialtrust.db.redis import Store, get_store
from socialtrust.errors import CacheUnavailable
from socialtrust.models import TrustScoreResult
from socialtrust.trust.calculator import TrustScoreCalculator
from socialtrust.trust.decay import DistanceNormalizer
from socialtrust.trust.weighting import DISTANCE_WEIGHT

logger = structlog.get_logger()


@dataclass
class ScoredPair:
    source: str
    target: str
    result: TrustScoreResult
    distance: Optional[int] = None
    cache_hit: bool = False
    errors: List[str] = field(default_factory=list)

    @property
    def score(self) -> float:
        return self.result.score

    def to_dict(self) -> Dict:
        return {
            "source": self.source,
            "target": self.target,
            "distance": self.distance,
            "cache_hit": self.cache_hit,
            "errors": self.errors,
            **self.result.to_dict(),
        }


class TrustPipeline:
    def __init__(
        self,
        calculator: TrustScoreCalculator,
        collector: MetricsCollector,
        distances: Optional[DistanceSource] = None,
        normalizer: Optional[DistanceNormalizer] = None,
        batch_concurrency: int = 3,
    ):
        self.calculator = calculator
        self.collector = collector
        self.distances = distances or NullDistanceSource()
        self.normalizer = normalizer or DistanceNormalizer()
        self.batch_concurrency = batch_concurrency

    async def _distance_weight(self, source: str, target: str, errors: List[str]):
        try:
            distance = await self.distances.distance(source, target)
        except Exception as e:
            errors.append(f"distance: {str(e) or type(e).__name__}")
            logger.warning("distance_lookup_failed", source=source[:8], target=target[:8], error=str(e))
            return None, 0.0
        if distance is None or not self.normalizer.is_reachable(distance):
            return distance, 0.0
        return distance, self.normalizer.normalize(distance)

    async def _cached(self, source: str, target: str) -> Optional[TrustScoreResult]:
        cache = self.calculator.cache
        if cache is None:
            return None
        try:
            return await cache.get(source, target)
        except CacheUnavailable as e:
            logger.warning("score_cache_read_skipped", error=str(e))
            return None

    async def score(self, source: str, target: str, force_refresh: bool = False) -> ScoredPair:
        if not force_refresh:
            cached = await self._cached(source, target)
            if cached is not None:
                logger.debug("cache_hit", cache="score", source=source[:8], target=target[:8])
                return ScoredPair(source, target, cached, cache_hit=True)

        collected = await self.collector.collect_metrics(target, source, force_refresh=force_refresh)
        errors = list(collected.errors or [])

        distance, weight = await self._distance_weight(source, target, errors)
        inputs = {DISTANCE_WEIGHT: weight, **collected.metrics.values()}

        result = await self.calculator.calculate(
            inputs,
            source_key=source,
            target_key=target,
            force_refresh=True,
        )
        logger.info(
            "pair_scored",
            source=source[:8],
            target=target[:8],
            score=round(result.score, 4),
            distance=distance,
            errors=len(errors),
        )
        return ScoredPair(source, target, result, distance=distance, errors=errors)

    async def score_many(self, source: str, targets: List[str], force_refresh: bool = False) -> List[ScoredPair]:
        """One ScoredPair per target, in order. A failing target scores 0.0 with its error attached."""
        sem = asyncio.Semaphore(self.batch_concurrency)

        async def one(target: str) -> ScoredPair:
            async with sem:
                try:
                    return await self.score(source, target, force_refresh=force_refresh)
                except Exception as e:
                    message = str(e) or type(e).__name__
                    logger.warning("score_failed", source=str(source)[:8], target=str(target)[:8], error=message)
                    empty = TrustScoreResult(score=0.0, metric_values={}, metric_weights={},
                                             computed_at=self.collector.now())
                    return ScoredPair(source, target, empty, errors=[message])

        return list(await asyncio.gather(*(one(t) for t in targets)))


def build_pipeline(
    profiles: ProfileSource,
    store: Optional[Store] = None,
    events: Optional[EventSource] = None,
    follows: Optional[FollowGraph] = None,
    distances: Optional[DistanceSource] = None,
    settings=None,
    registry=None,
) -> TrustPipeline:
    """Wire a pipeline from Settings and the preset registry."""
    if settings is None:
        from socialtrust.config import settings
    from socialtrust.trust.presets import profile_from_settings, registry_from_settings

    store = store or get_store()
    registry = registry or registry_from_settings(settings)
    calculator = TrustScoreCalculator(
        registry.active,
        cache=ScoreCache(store, settings.TRUST_SCORES_TTL, settings.FORMULA_VERSION),
    )
    collector = MetricsCollector(
        MetricsCache(store, settings.PROFILE_METRICS_TTL),
        profiles,
        events=events,
        follows=follows,
        profile_cache=ProfileCache(store, settings.PROFILE_CACHE_TTL),
        timeout=settings.VALIDATOR_TIMEOUT,
        retries=settings.VALIDATOR_RETRIES,
        retry_base_delay=settings.RETRY_BASE_DELAY,
        batch_concurrency=settings.BATCH_CONCURRENCY,
    )
    return TrustPipeline(
        calculator,
        collector,
        distances=distances,
        normalizer=DistanceNormalizer(profile_from_settings(registry, settings)),
        batch_concurrency=settings.BATCH_CONCURRENCY,
    )
