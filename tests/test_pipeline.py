"""Tests for socialtrust.compute.pipeline."""

from __future__ import annotations

from types import SimpleNamespace

import httpx
import pytest

from socialtrust.compute.pipeline import TrustPipeline, build_pipeline
from socialtrust.compute.sensors import MetricsCollector
from socialtrust.trust.calculator import TrustScoreCalculator

from conftest import ALICE, BOB, CAROL, FollowSet, StaticEvents, StaticProfiles

PROFILES = {BOB: {"nip05": "bob@example.com", "lud16": "bob@getalby.com"}}


class Distances:
    def __init__(self, table, fail: bool = False):
        self.table = table
        self.fail = fail

    async def distance(self, source, target):
        if self.fail:
            raise RuntimeError("graph offline")
        return self.table.get((source, target))


@pytest.fixture
async def http():
    handler = lambda request: httpx.Response(200, json={"names": {"bob": BOB}})  # noqa: E731
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        yield client


@pytest.fixture
def collector(metrics_cache, http, clock):
    return MetricsCollector(
        metrics_cache,
        StaticProfiles(PROFILES),
        events=StaticEvents({BOB}),
        follows=FollowSet({(ALICE, BOB), (BOB, ALICE)}),
        http=http,
        retries=0,
        clock=clock,
    )


def make_pipeline(score_cache, collector, clock, distances):
    calculator = TrustScoreCalculator(cache=score_cache, clock=clock)
    return TrustPipeline(calculator, collector, distances=distances)


class TestScore:
    async def test_one_hop_with_every_signal(self, score_cache, collector, clock):
        pipeline = make_pipeline(score_cache, collector, clock, Distances({(ALICE, BOB): 1}))
        scored = await pipeline.score(ALICE, BOB)
        # 0.5 * 0.1 + 0.15 + 0.1 + 0.1 + 0.15
        assert scored.score == pytest.approx(0.55)
        assert scored.distance == 1
        assert scored.cache_hit is False
        assert scored.errors == []
        assert scored.result.metric_values["distance_weight"] == pytest.approx(0.1)

    async def test_second_request_served_from_cache(self, score_cache, collector, clock):
        pipeline = make_pipeline(score_cache, collector, clock, Distances({(ALICE, BOB): 1}))
        first = await pipeline.score(ALICE, BOB)
        second = await pipeline.score(ALICE, BOB)
        assert second.cache_hit is True
        assert second.result == first.result

    async def test_force_refresh(self, score_cache, collector, clock):
        distances = Distances({(ALICE, BOB): 1})
        pipeline = make_pipeline(score_cache, collector, clock, distances)
        await pipeline.score(ALICE, BOB)
        distances.table[(ALICE, BOB)] = 0
        refreshed = await pipeline.score(ALICE, BOB, force_refresh=True)
        assert refreshed.cache_hit is False
        assert refreshed.score == pytest.approx(1.0)

    async def test_unreachable_target_has_zero_distance_weight(self, score_cache, collector, clock):
        pipeline = make_pipeline(score_cache, collector, clock, Distances({}))
        scored = await pipeline.score(ALICE, BOB)
        assert scored.distance is None
        assert scored.score == pytest.approx(0.5)

    async def test_distance_failure_is_recorded(self, score_cache, collector, clock):
        pipeline = make_pipeline(score_cache, collector, clock, Distances({}, fail=True))
        scored = await pipeline.score(ALICE, BOB)
        assert scored.errors == ["distance: graph offline"]
        assert scored.score == pytest.approx(0.5)

    async def test_to_dict(self, score_cache, collector, clock):
        pipeline = make_pipeline(score_cache, collector, clock, Distances({(ALICE, BOB): 2}))
        data = (await pipeline.score(ALICE, BOB)).to_dict()
        assert data["source"] == ALICE
        assert data["distance"] == 2
        assert "metric_values" in data


class TestScoreMany:
    async def test_results_in_order_with_failures_isolated(self, score_cache, collector, clock):
        pipeline = make_pipeline(score_cache, collector, clock, Distances({(ALICE, BOB): 1}))
        scored = await pipeline.score_many(ALICE, [BOB, "bad key", CAROL])
        assert [s.target for s in scored] == [BOB, "bad key", CAROL]
        assert scored[0].score == pytest.approx(0.55)
        assert scored[1].score == 0.0
        assert scored[1].errors
        assert scored[2].errors == []


class TestBuildPipeline:
    async def test_wires_configuration(self, store):
        settings = SimpleNamespace(
            PRESETS_FILE="",
            WEIGHTING_SCHEME="conservative",
            DECAY_PROFILE="strict",
            DECAY_FACTOR=0.5,
            TRUST_SCORES_TTL=60,
            PROFILE_METRICS_TTL=120,
            PROFILE_CACHE_TTL=180,
            FORMULA_VERSION="v7",
            VALIDATOR_TIMEOUT=2.0,
            VALIDATOR_RETRIES=1,
            RETRY_BASE_DELAY=0.0,
            BATCH_CONCURRENCY=4,
        )
        pipeline = build_pipeline(StaticProfiles({}), store, settings=settings)

        assert pipeline.calculator.scheme.name == "conservative"
        assert pipeline.calculator.cache.formula_version == "v7"
        assert pipeline.calculator.cache.ttl_seconds == 60
        assert pipeline.collector.cache.ttl_seconds == 120
        assert pipeline.collector.profile_cache.ttl_seconds == 180
        assert pipeline.collector.timeout == 2.0
        assert pipeline.normalizer.profile.decay_factor == 0.5
        assert pipeline.batch_concurrency == 4
