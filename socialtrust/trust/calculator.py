"""
SocialTrust — Trust Score Calculator

    score = clamp01( Σ wᵢ · vᵢ^pᵢ  /  Σ wᵢ )

over the enabled metrics present in the inputs. Missing metrics are
skipped rather than counted as zero. If nothing enabled contributes any
weight the score is 0.0.

Results are cached per (source, target) pair when a ScoreCache is given.
The cache is an optimization: if storage is unavailable the score is still
computed and returned.
"""
from __future__ import annotations

import math
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import structlog

from socialtrust.compute.cache import ScoreCache
from socialtrust.errors import CacheUnavailable, InvalidInputs, SchemeInvalid
from socialtrust.models import MetricBreakdown, MetricInputs, TrustScoreResult
from socialtrust.trust.weighting import DEFAULT_SCHEME, WeightingScheme, validate_scheme

logger = structlog.get_logger()


def _clamp01(x: float) -> float:
    return max(0.0, min(1.0, x))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class TrustScoreCalculator:
    def __init__(
        self,
        scheme: Optional[WeightingScheme] = None,
        cache: Optional[ScoreCache] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._scheme = self._checked(scheme or DEFAULT_SCHEME)
        self.cache = cache
        self._clock = clock

    @staticmethod
    def _checked(scheme: WeightingScheme) -> WeightingScheme:
        violations = validate_scheme(scheme)
        if violations:
            raise SchemeInvalid(scheme.name, violations)
        return scheme

    @property
    def scheme(self) -> WeightingScheme:
        return self._scheme

    def set_scheme(self, scheme: WeightingScheme) -> None:
        self._scheme = self._checked(scheme)

    # ── Input validation ──────────────────────────

    def validate_inputs(self, inputs: MetricInputs) -> Tuple[List[str], List[str]]:
        """Returns (errors, warnings). Missing metrics only warn."""
        errors: List[str] = []
        warnings: List[str] = []

        if not any(name in inputs for name in self._scheme.metrics):
            errors.append("no metric values provided")

        for name, value in inputs.items():
            if not _is_number(value):
                errors.append(f"metric {name} value is not a number: {value!r}")
            elif not math.isfinite(value):
                errors.append(f"metric {name} value is not finite: {value}")
            elif not 0 <= value <= 1:
                errors.append(f"metric {name} value {value} is out of range [0,1]")
            elif name not in self._scheme.metrics:
                warnings.append(f"metric {name} is not part of scheme {self._scheme.name}")

        for name, cfg in self._scheme.metrics.items():
            if cfg.enabled and name not in inputs:
                warnings.append(f"missing metric: {name}")

        return errors, warnings

    # ── Scoring ───────────────────────────────────

    def _terms(self, inputs: MetricInputs):
        """(name, value, config) for every enabled metric present in inputs."""
        for name, cfg in self._scheme.metrics.items():
            if not cfg.enabled or name not in inputs:
                continue
            value = inputs[name]
            if not _is_number(value) or not math.isfinite(value):
                continue
            yield name, _clamp01(float(value)), cfg

    def _compute(self, inputs: MetricInputs) -> TrustScoreResult:
        weighted_sum = 0.0
        total_weight = 0.0
        values: Dict[str, float] = {}
        weights: Dict[str, float] = {}

        for name, value, cfg in self._terms(inputs):
            weighted_sum += cfg.weight * value ** cfg.exponent
            total_weight += cfg.weight
            values[name] = value
            weights[name] = cfg.weight

        score = _clamp01(weighted_sum / total_weight) if total_weight > 0 else 0.0
        return TrustScoreResult(
            score=score,
            metric_values=values,
            metric_weights=weights,
            computed_at=int(self._clock()),
        )

    async def calculate(
        self,
        inputs: MetricInputs,
        source_key: Optional[str] = None,
        target_key: Optional[str] = None,
        force_refresh: bool = False,
        validate_inputs: bool = True,
    ) -> TrustScoreResult:
        if validate_inputs:
            errors, warnings = self.validate_inputs(inputs)
            if errors:
                raise InvalidInputs(errors)
            if warnings:
                logger.debug("metric_input_warnings", warnings=warnings)

        use_cache = self.cache is not None and source_key is not None and target_key is not None

        if use_cache and not force_refresh:
            try:
                cached = await self.cache.get(source_key, target_key)
            except CacheUnavailable as e:
                logger.warning("score_cache_read_skipped", error=str(e))
                cached = None
            if cached is not None:
                return cached

        result = self._compute(inputs)

        if use_cache:
            try:
                await self.cache.save(source_key, target_key, result)
            except CacheUnavailable as e:
                logger.warning("score_cache_write_skipped", error=str(e))

        return result

    def calculate_breakdown(self, inputs: MetricInputs) -> List[MetricBreakdown]:
        """Per-metric contributions, largest first. Never touches the cache."""
        terms = list(self._terms(inputs))
        total_weight = sum(cfg.weight for _, _, cfg in terms)

        breakdown = []
        for name, value, cfg in terms:
            transformed = value ** cfg.exponent
            contribution = cfg.weight * transformed
            normalized = contribution / total_weight if total_weight > 0 else 0.0
            breakdown.append(MetricBreakdown(
                metric=name,
                value=value,
                weight=cfg.weight,
                exponent=cfg.exponent,
                transformed_value=transformed,
                contribution=contribution,
                normalized_contribution=normalized,
                percent_of_total=normalized * 100,
            ))

        breakdown.sort(key=lambda b: b.contribution, reverse=True)
        return breakdown

    def simulate(self, base: MetricInputs, overrides: Mapping[str, float]) -> float:
        """What-if score with overrides applied. No caching, no mutation."""
        combined = {**base, **overrides}
        return self._compute(combined).score

    # ── Cache passthroughs ────────────────────────

    async def get_cache_stats(self) -> Optional[Dict[str, Any]]:
        return await self.cache.get_stats() if self.cache else None

    def reset_cache_stats(self) -> None:
        if self.cache:
            self.cache.reset_stats()

    async def cleanup_cache(self) -> int:
        return await self.cache.cleanup() if self.cache else 0

    async def invalidate_cache(self, source_key: str, target_key: str) -> bool:
        return await self.cache.invalidate(source_key, target_key) if self.cache else False

    async def invalidate_all_cache(self, identity: str) -> int:
        return await self.cache.invalidate_all(identity) if self.cache else 0
