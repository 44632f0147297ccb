"""Tests for socialtrust.compute.cache against an in-memory Redis."""

from __future__ import annotations

import asyncio

import pytest

from socialtrust.compute.cache import ScoreCache, check_key
from socialtrust.errors import ConstraintViolation
from socialtrust.models import TrustScoreResult


def result(score: float, computed_at: int = 1_700_000_000) -> TrustScoreResult:
    return TrustScoreResult(
        score=score,
        metric_values={"distance_weight": 0.1, "nip05_valid": 1.0},
        metric_weights={"distance_weight": 0.5, "nip05_valid": 0.15},
        computed_at=computed_at,
    )


class TestKeys:
    @pytest.mark.parametrize("bad", ["", "a:b", "has space", "tab\there", None, 42])
    def test_malformed_keys(self, bad):
        with pytest.raises(ConstraintViolation):
            check_key(bad)

    async def test_cache_rejects_before_touching_storage(self, score_cache):
        with pytest.raises(ConstraintViolation):
            await score_cache.save("a:b", "c", result(0.5))
        with pytest.raises(ConstraintViolation):
            await score_cache.get("a", "")


class TestScoreCache:
    async def test_round_trip(self, score_cache):
        original = result(0.55)
        await score_cache.save("alice", "bob", original)
        assert await score_cache.get("alice", "bob") == original

    async def test_miss(self, score_cache):
        assert await score_cache.get("alice", "nobody") is None
        assert not await score_cache.exists("alice", "nobody")

    async def test_entry_reports_expiry(self, score_cache, clock):
        await score_cache.save("alice", "bob", result(0.55))
        entry = await score_cache.get_entry("alice", "bob")
        assert entry.source_key == "alice"
        assert entry.target_key == "bob"
        assert entry.expires_at == int(clock.now) + 3600

    async def test_entry_is_read_in_one_round_trip(self, score_cache, store, monkeypatch):
        await score_cache.save("alice", "bob", result(0.55))
        reads = []
        original = store.read

        async def counting_read(op, operation="read"):
            reads.append(operation)
            value = await original(op, operation)
            # a concurrent invalidate right after the first read
            await store.client.delete("st:score:v1:row:alice:bob")
            return value

        monkeypatch.setattr(store, "read", counting_read)
        entry = await score_cache.get_entry("alice", "bob")
        assert reads == ["score_get_entry"]
        assert entry.result.score == 0.55

    async def test_expiry_and_cleanup(self, score_cache, clock):
        await score_cache.save("alice", "bob", result(0.55))
        assert await score_cache.exists("alice", "bob")

        clock.advance(3600)
        assert await score_cache.get("alice", "bob") is None
        assert not await score_cache.exists("alice", "bob")

        assert await score_cache.cleanup() == 1
        assert not await score_cache.exists("alice", "bob")
        assert await score_cache.get_scores_for_source("alice") == []

        stats = await score_cache.get_stats()
        assert stats["expired_entries"] == 1
        assert stats["last_cleanup"] == int(clock.now)

    async def test_cleanup_keeps_live_rows(self, score_cache, clock):
        await score_cache.save("alice", "bob", result(0.5))
        clock.advance(1800)
        await score_cache.save("alice", "carol", result(0.6))
        clock.advance(1800)
        assert await score_cache.cleanup() == 1
        assert await score_cache.exists("alice", "carol")

    @pytest.mark.parametrize("cleanup_first", [True, False])
    async def test_save_racing_cleanup_is_kept(self, score_cache, clock, cleanup_first):
        await score_cache.save("alice", "bob", result(0.2))
        clock.advance(4000)
        fresh = result(0.8, computed_at=int(clock.now))

        jobs = [score_cache.cleanup(), score_cache.save("alice", "bob", fresh)]
        if not cleanup_first:
            jobs.reverse()
        await asyncio.gather(*jobs)

        assert await score_cache.exists("alice", "bob")
        assert await score_cache.get("alice", "bob") == fresh
        assert [r["target"] for r in await score_cache.get_scores_for_source("alice")] == ["bob"]

    async def test_concurrent_saves_last_writer_wins(self, score_cache, store, monkeypatch):
        issued = []
        original = store.write

        async def slow_first_write(op, operation="write"):
            # the first save stalls inside its write; later saves must wait behind it
            delay = 0.01 if not issued else 0
            issued.append(operation)

            async def delayed():
                await asyncio.sleep(delay)
                return await op()

            return await original(delayed, operation)

        monkeypatch.setattr(store, "write", slow_first_write)
        scores = [0.1, 0.9, 0.4, 0.7]
        await asyncio.gather(*(score_cache.save("alice", "bob", result(s)) for s in scores))

        assert issued == ["score_save"] * len(scores)
        assert (await score_cache.get("alice", "bob")).score == 0.7

    async def test_upsert_keeps_created_at(self, score_cache, store, clock):
        await score_cache.save("alice", "bob", result(0.2))
        created = await store.client.hget("st:score:v1:row:alice:bob", "created_at")
        clock.advance(60)
        await score_cache.save("alice", "bob", result(0.9))

        row = await store.client.hgetall("st:score:v1:row:alice:bob")
        assert row["created_at"] == created
        assert int(row["updated_at"]) == int(clock.now)
        assert (await score_cache.get("alice", "bob")).score == 0.9

    async def test_formula_versions_are_separate(self, score_cache, store, clock):
        await score_cache.save("alice", "bob", result(0.5))
        v2 = ScoreCache(store, formula_version="v2", clock=clock)
        assert await v2.get("alice", "bob") is None

    async def test_invalidate_touches_one_pair(self, score_cache):
        await score_cache.save("alice", "bob", result(0.5))
        await score_cache.save("alice", "carol", result(0.6))
        assert await score_cache.invalidate("alice", "bob") is True
        assert await score_cache.invalidate("alice", "bob") is False
        assert await score_cache.get("alice", "bob") is None
        assert await score_cache.exists("alice", "carol")

    async def test_batch_invalidate_counts_real_rows(self, score_cache):
        await score_cache.save("alice", "bob", result(0.5))
        await score_cache.save("alice", "carol", result(0.6))
        removed = await score_cache.batch_invalidate([("alice", "bob"), ("alice", "carol"), ("x", "y")])
        assert removed == 2

    async def test_invalidate_all_matches_source_or_target(self, score_cache):
        await score_cache.save("alice", "bob", result(0.5))
        await score_cache.save("carol", "alice", result(0.6))
        await score_cache.save("bob", "carol", result(0.7))
        assert await score_cache.invalidate_all("alice") == 2
        assert await score_cache.exists("bob", "carol")
        assert not await score_cache.exists("carol", "alice")

    async def test_listings_sorted_by_score(self, score_cache):
        await score_cache.save("alice", "bob", result(0.3))
        await score_cache.save("alice", "carol", result(0.9))
        await score_cache.save("alice", "dave", result(0.5))
        await score_cache.save("erin", "bob", result(0.8))

        by_source = await score_cache.get_scores_for_source("alice")
        assert [r["target"] for r in by_source] == ["carol", "dave", "bob"]
        assert by_source[0]["score"] == 0.9

        by_target = await score_cache.get_scores_for_target("bob")
        assert [r["source"] for r in by_target] == ["erin", "alice"]

    async def test_listing_skips_expired(self, score_cache, clock):
        await score_cache.save("alice", "bob", result(0.3))
        clock.advance(3600)
        await score_cache.save("alice", "carol", result(0.9))
        assert [r["target"] for r in await score_cache.get_scores_for_source("alice")] == ["carol"]

    async def test_get_all_entries(self, score_cache, clock):
        await score_cache.save("alice", "bob", result(0.3))
        clock.advance(5)
        await score_cache.save("alice", "carol", result(0.9))
        entries = await score_cache.get_all_entries(limit=1)
        assert [(e.source_key, e.target_key) for e in entries] == [("alice", "carol")]

    async def test_stats_and_reset(self, score_cache):
        await score_cache.save("alice", "bob", result(0.3))
        await score_cache.get("alice", "bob")
        await score_cache.get("alice", "bob")
        await score_cache.get("alice", "nobody")

        stats = await score_cache.get_stats()
        assert stats["hits"] == 2
        assert stats["misses"] == 1
        assert stats["hit_rate"] == pytest.approx(2 / 3)
        assert stats["total_entries"] == 1
        assert stats["last_cleanup"] is None

        score_cache.reset_stats()
        stats = await score_cache.get_stats()
        assert stats["hits"] == stats["misses"] == 0
        assert stats["total_entries"] == 1


class TestMetricsCache:
    async def test_round_trip(self, metrics_cache, clock):
        await metrics_cache.save("alice", {"nip05_valid": 1.0, "relay_list": 0.0})
        values, computed_at = await metrics_cache.get_metrics("alice")
        assert values == {"nip05_valid": 1.0, "relay_list": 0.0}
        assert computed_at == int(clock.now)
        assert await metrics_cache.get_metric("alice", "nip05_valid") == 1.0
        assert await metrics_cache.get_metric("alice", "reciprocity") is None

    async def test_per_metric_expiry(self, metrics_cache, clock):
        await metrics_cache.save("alice", {"nip05_valid": 1.0})
        await metrics_cache.save("alice", {"relay_list": 1.0}, ttl_seconds=60)
        clock.advance(60)
        assert await metrics_cache.get("alice") == {"nip05_valid": 1.0}
        assert await metrics_cache.cleanup() == 1
        assert await metrics_cache.count_live() == 1

    async def test_save_racing_cleanup_is_kept(self, metrics_cache, clock):
        await metrics_cache.save("alice", {"nip05_valid": 0.0})
        clock.advance(4000)
        await asyncio.gather(metrics_cache.cleanup(), metrics_cache.save("alice", {"nip05_valid": 1.0}))
        assert await metrics_cache.get("alice") == {"nip05_valid": 1.0}
        assert await metrics_cache.count_live() == 1

    async def test_all_expired_is_a_miss(self, metrics_cache, clock):
        await metrics_cache.save("alice", {"nip05_valid": 1.0})
        clock.advance(3600)
        assert await metrics_cache.get_metrics("alice") is None
        assert (await metrics_cache.get_stats())["misses"] == 1

    async def test_invalidate(self, metrics_cache):
        await metrics_cache.save("alice", {"nip05_valid": 1.0, "relay_list": 1.0})
        assert await metrics_cache.invalidate_metric("alice", "relay_list") is True
        assert await metrics_cache.get("alice") == {"nip05_valid": 1.0}
        assert await metrics_cache.invalidate("alice") is True
        assert await metrics_cache.invalidate("alice") is False
        assert await metrics_cache.count_live() == 0

    async def test_metric_name_validated(self, metrics_cache):
        with pytest.raises(ConstraintViolation):
            await metrics_cache.save("alice", {"bad:name": 1.0})


class TestProfileCache:
    async def test_round_trip_and_expiry(self, profile_cache, clock):
        profile = {"name": "alice", "nip05": "alice@example.com"}
        await profile_cache.save("alice", profile)
        assert await profile_cache.get("alice") == profile
        clock.advance(3600)
        assert await profile_cache.get("alice") is None
        assert await profile_cache.cleanup() == 1

    async def test_save_racing_cleanup_is_kept(self, profile_cache, clock):
        await profile_cache.save("alice", {"name": "old"})
        clock.advance(4000)
        await asyncio.gather(profile_cache.cleanup(), profile_cache.save("alice", {"name": "new"}))
        assert await profile_cache.get("alice") == {"name": "new"}

    async def test_invalidate(self, profile_cache):
        await profile_cache.save("alice", {"name": "alice"})
        assert await profile_cache.invalidate("alice") is True
        assert await profile_cache.get("alice") is None

    async def test_backstop_ttl(self, profile_cache, store):
        await profile_cache.save("alice", {"name": "alice"})
        assert 7000 < await store.client.ttl("st:profile:row:alice") <= 3600 + 3600
