"""Tests for the scheduled cache cleanup job."""

from __future__ import annotations

from socialtrust.models import TrustScoreResult
from socialtrust.workers.worker_settings import WorkerSettings, _cleanup_minutes, cleanup_caches


class BrokenCache:
    async def cleanup(self) -> int:
        raise RuntimeError("redis went away")


async def test_cleanup_job_sweeps_every_cache(score_cache, metrics_cache, profile_cache, clock):
    result = TrustScoreResult(score=0.5, metric_values={}, metric_weights={}, computed_at=int(clock.now))
    await score_cache.save("alice", "bob", result)
    await metrics_cache.save("bob", {"nip05_valid": 1.0, "relay_list": 0.0})
    await profile_cache.save("bob", {"name": "bob"})
    clock.advance(3600)

    removed = await cleanup_caches({"caches": [score_cache, metrics_cache, profile_cache]})
    assert removed == {"ScoreCache": 1, "MetricsCache": 2, "ProfileCache": 1}


async def test_one_failing_cache_does_not_stop_the_rest(score_cache):
    removed = await cleanup_caches({"caches": [BrokenCache(), score_cache]})
    assert removed == {"BrokenCache": 0, "ScoreCache": 0}


def test_cron_schedule():
    assert _cleanup_minutes(15) == {0, 15, 30, 45}
    assert _cleanup_minutes(60) == {0}
    assert WorkerSettings.functions == [cleanup_caches]
    assert len(WorkerSettings.cron_jobs) == 1
