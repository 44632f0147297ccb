"""
SocialTrust — Cache Layer
Every computed result is cached in Redis so we're not re-querying relays
and re-scoring on every request.

One repository per entity kind, all with the same surface
(get / save / invalidate / cleanup / get_stats / reset_stats):

    ScoreCache    (source, target, formula_version) → TrustScoreResult
    MetricsCache  identity → per-metric values
    ProfileCache  identity → fetched profile document

Key Schema:
    st:score:{version}:row:{source}:{target}   → hash (score row)
    st:score:{version}:by-source:{source}      → set of targets
    st:score:{version}:by-target:{target}      → set of sources
    st:score:{version}:expiry                  → zset "{source}:{target}" by expires_at
    st:metrics:row:{identity}                  → hash metric_name → JSON {value, computed_at, expires_at}
    st:metrics:expiry                          → zset "{identity}:{metric}" by expires_at
    st:profile:row:{identity}                  → JSON {profile, fetched_at, expires_at}
    st:profile:expiry                          → zset identity by expires_at

Rows are never expired by Redis itself (except the profile backstop);
reads ignore stale rows and cleanup() removes them.
"""
import json
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import structlog

from socialtrust.db.redis import Store
from socialtrust.errors import ConstraintViolation
from socialtrust.models import CacheEntry, TrustScoreResult

logger = structlog.get_logger()


def check_key(key: str, what: str = "key") -> str:
    """Keys must be non-empty, whitespace-free, and free of ':'."""
    if not isinstance(key, str) or not key or ":" in key or any(c.isspace() for c in key):
        raise ConstraintViolation(f"Malformed {what}: {key!r}")
    return key


class CacheRepository(ABC):
    """Shared TTL bookkeeping and hit/miss accounting."""

    def __init__(self, store: Store, ttl_seconds: int = 3600, clock: Callable[[], float] = time.time):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._hits = 0
        self._misses = 0
        self._expired_entries = 0
        self._last_cleanup: Optional[int] = None

    def now(self) -> int:
        return int(self._clock())

    def _record(self, hit: bool) -> None:
        if hit:
            self._hits += 1
        else:
            self._misses += 1

    def _live(self, expires_at: Any) -> bool:
        return expires_at is not None and int(float(expires_at)) > self.now()

    async def get_stats(self) -> Dict[str, Any]:
        total = self._hits + self._misses
        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / total if total else 0.0,
            "total_entries": await self.count_live(),
            "expired_entries": self._expired_entries,
            "last_cleanup": self._last_cleanup,
        }

    def reset_stats(self) -> None:
        """Zero the hit/miss counters. Stored rows are untouched."""
        self._hits = 0
        self._misses = 0

    def _finish_cleanup(self, removed: int) -> int:
        self._expired_entries = removed
        self._last_cleanup = self.now()
        logger.info("cache_cleanup", cache=type(self).__name__, removed=removed)
        return removed

    @abstractmethod
    async def count_live(self) -> int: ...

    @abstractmethod
    async def cleanup(self) -> int: ...


# ── Score pairs ───────────────────────────────────

class ScoreCache(CacheRepository):
    """
    Usage:
        cache = ScoreCache(store, ttl_seconds=3600)

        cached = await cache.get(source, target)
        if cached:
            return cached

        # ... compute result ...

        await cache.save(source, target, result)
    """

    def __init__(
        self,
        store: Store,
        ttl_seconds: int = 3600,
        formula_version: str = "v1",
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(store, ttl_seconds, clock)
        self.formula_version = check_key(formula_version, "formula version")
        self._prefix = f"st:score:{formula_version}"
        self._expiry = f"{self._prefix}:expiry"

    def _row(self, source: str, target: str) -> str:
        return f"{self._prefix}:row:{source}:{target}"

    def _by_source(self, source: str) -> str:
        return f"{self._prefix}:by-source:{source}"

    def _by_target(self, target: str) -> str:
        return f"{self._prefix}:by-target:{target}"

    def _check_pair(self, source: str, target: str) -> None:
        check_key(source, "source key")
        check_key(target, "target key")

    @staticmethod
    def _decode(row: Dict[str, str]) -> TrustScoreResult:
        return TrustScoreResult(
            score=float(row["score"]),
            metric_values=json.loads(row["metric_values"]),
            metric_weights=json.loads(row["metric_weights"]),
            computed_at=int(row["computed_at"]),
        )

    async def _live_row(self, source: str, target: str, operation: str) -> Optional[Dict[str, str]]:
        self._check_pair(source, target)
        row = await self.store.read(lambda: self.store.client.hgetall(self._row(source, target)), operation)
        if not row or not self._live(row.get("expires_at")):
            self._record(False)
            return None
        self._record(True)
        logger.debug("cache_hit", cache="score", source=source[:8], target=target[:8])
        return row

    async def get(self, source: str, target: str) -> Optional[TrustScoreResult]:
        row = await self._live_row(source, target, "score_get")
        return None if row is None else self._decode(row)

    async def get_entry(self, source: str, target: str) -> Optional[CacheEntry]:
        row = await self._live_row(source, target, "score_get_entry")
        if row is None:
            return None
        return CacheEntry(source, target, self._decode(row), int(float(row["expires_at"])))

    async def exists(self, source: str, target: str) -> bool:
        self._check_pair(source, target)
        expires_at = await self.store.read(
            lambda: self.store.client.hget(self._row(source, target), "expires_at"), "score_exists",
        )
        return self._live(expires_at)

    async def save(self, source: str, target: str, result: TrustScoreResult) -> None:
        """Upsert; created_at survives overwrites of the same key."""
        self._check_pair(source, target)
        now = self.now()
        expires_at = now + self.ttl_seconds
        row_key = self._row(source, target)
        mapping = {
            "source_key": source,
            "target_key": target,
            "score": float(result.score),
            "computed_at": int(result.computed_at),
            "expires_at": expires_at,
            "metric_weights": json.dumps(result.metric_weights, sort_keys=True),
            "metric_values": json.dumps(result.metric_values, sort_keys=True),
            "formula_version": self.formula_version,
            "updated_at": now,
        }

        async def op():
            async with self.store.client.pipeline(transaction=True) as pipe:
                pipe.hset(row_key, mapping=mapping)
                pipe.hsetnx(row_key, "created_at", now)
                pipe.sadd(self._by_source(source), target)
                pipe.sadd(self._by_target(target), source)
                pipe.zadd(self._expiry, {f"{source}:{target}": expires_at})
                await pipe.execute()

        await self.store.write(op, "score_save")
        logger.debug("cache_set", cache="score", source=source[:8], target=target[:8], ttl=self.ttl_seconds)

    def _queue_delete(self, pipe, source: str, target: str) -> None:
        pipe.delete(self._row(source, target))
        pipe.srem(self._by_source(source), target)
        pipe.srem(self._by_target(target), source)
        pipe.zrem(self._expiry, f"{source}:{target}")

    async def _delete_pairs(self, pairs: List[Tuple[str, str]]) -> int:
        """Delete rows; returns how many rows actually existed."""
        if not pairs:
            return 0

        return await self.store.write(lambda: self._delete_rows(pairs), "score_delete")

    async def _delete_rows(self, pairs: List[Tuple[str, str]]) -> int:
        async with self.store.client.pipeline(transaction=True) as pipe:
            for source, target in pairs:
                self._queue_delete(pipe, source, target)
            results = await pipe.execute()
        # four commands per pair; the first is the row DELETE
        return sum(int(results[i]) for i in range(0, len(results), 4))

    async def invalidate(self, source: str, target: str) -> bool:
        self._check_pair(source, target)
        return await self._delete_pairs([(source, target)]) > 0

    async def batch_invalidate(self, pairs: Iterable[Tuple[str, str]]) -> int:
        pairs = list(pairs)
        for source, target in pairs:
            self._check_pair(source, target)
        removed = await self._delete_pairs(pairs)
        logger.info("cache_batch_invalidate", requested=len(pairs), removed=removed)
        return removed

    async def invalidate_all(self, identity: str) -> int:
        """Drop every row where identity is the source or the target."""
        check_key(identity, "identity")
        client = self.store.client
        targets = await self.store.read(lambda: client.smembers(self._by_source(identity)), "score_index")
        sources = await self.store.read(lambda: client.smembers(self._by_target(identity)), "score_index")
        pairs = {(identity, t) for t in targets} | {(s, identity) for s in sources}
        return await self._delete_pairs(sorted(pairs))

    async def _rows_for(self, keys: List[Tuple[str, str]]) -> List[Dict[str, str]]:
        if not keys:
            return []

        async def fetch():
            async with self.store.client.pipeline(transaction=False) as pipe:
                for source, target in keys:
                    pipe.hgetall(self._row(source, target))
                return await pipe.execute()

        rows = await self.store.read(fetch, "score_rows")
        return [r for r in rows if r and self._live(r.get("expires_at"))]

    @staticmethod
    def _listing(rows: List[Dict[str, str]], counterpart: str) -> List[Dict[str, Any]]:
        out = [
            {
                counterpart: row[f"{counterpart}_key"],
                "score": float(row["score"]),
                "computed_at": int(row["computed_at"]),
                "expires_at": int(float(row["expires_at"])),
            }
            for row in rows
        ]
        out.sort(key=lambda r: r["score"], reverse=True)
        return out

    async def get_scores_for_source(self, source: str) -> List[Dict[str, Any]]:
        check_key(source, "source key")
        targets = await self.store.read(lambda: self.store.client.smembers(self._by_source(source)), "score_index")
        rows = await self._rows_for([(source, t) for t in targets])
        return self._listing(rows, "target")

    async def get_scores_for_target(self, target: str) -> List[Dict[str, Any]]:
        check_key(target, "target key")
        sources = await self.store.read(lambda: self.store.client.smembers(self._by_target(target)), "score_index")
        rows = await self._rows_for([(s, target) for s in sources])
        return self._listing(rows, "source")

    async def get_all_entries(self, limit: int = 100) -> List[CacheEntry]:
        """Most recently written rows first, expired or not (diagnostics)."""
        members = await self.store.read(
            lambda: self.store.client.zrevrange(self._expiry, 0, limit - 1), "score_all",
        )
        keys = [tuple(m.split(":", 1)) for m in members]

        async def fetch():
            async with self.store.client.pipeline(transaction=False) as pipe:
                for source, target in keys:
                    pipe.hgetall(self._row(source, target))
                return await pipe.execute()

        rows = await self.store.read(fetch, "score_all") if keys else []
        return [
            CacheEntry(r["source_key"], r["target_key"], self._decode(r), int(float(r["expires_at"])))
            for r in rows if r
        ]

    async def count_live(self) -> int:
        now = self.now()
        return int(await self.store.read(
            lambda: self.store.client.zcount(self._expiry, f"({now}", "+inf"), "score_count",
        ))

    async def cleanup(self) -> int:
        now = self.now()

        # the scan runs inside the queued write so it sees every earlier save
        async def op():
            members = await self.store.client.zrangebyscore(self._expiry, "-inf", now)
            if not members:
                return 0
            return await self._delete_rows([tuple(m.split(":", 1)) for m in members])

        return self._finish_cleanup(await self.store.write(op, "score_cleanup"))


# ── Per-identity metrics ──────────────────────────

class MetricsCache(CacheRepository):
    """Per-identity metric rows; each metric carries its own expiry."""

    _expiry = "st:metrics:expiry"

    @staticmethod
    def _row(identity: str) -> str:
        return f"st:metrics:row:{identity}"

    def _decode_live(self, raw: Dict[str, str]) -> Tuple[Dict[str, float], int]:
        values: Dict[str, float] = {}
        computed_at = 0
        for name, blob in raw.items():
            cell = json.loads(blob)
            if self._live(cell.get("expires_at")):
                values[name] = float(cell["value"])
                computed_at = max(computed_at, int(cell["computed_at"]))
        return values, computed_at

    async def get_metrics(self, identity: str) -> Optional[Tuple[Dict[str, float], int]]:
        """Live metric values and the newest computed_at, or None."""
        check_key(identity, "identity")
        raw = await self.store.read(lambda: self.store.client.hgetall(self._row(identity)), "metrics_get")
        values, computed_at = self._decode_live(raw or {})
        self._record(bool(values))
        return (values, computed_at) if values else None

    async def get(self, identity: str) -> Optional[Dict[str, float]]:
        found = await self.get_metrics(identity)
        return found[0] if found else None

    async def get_metric(self, identity: str, name: str) -> Optional[float]:
        check_key(identity, "identity")
        blob = await self.store.read(lambda: self.store.client.hget(self._row(identity), name), "metrics_get_one")
        if blob is None:
            self._record(False)
            return None
        cell = json.loads(blob)
        live = self._live(cell.get("expires_at"))
        self._record(live)
        return float(cell["value"]) if live else None

    async def save(
        self,
        identity: str,
        metrics: Dict[str, float],
        computed_at: Optional[int] = None,
        ttl_seconds: Optional[int] = None,
    ) -> None:
        check_key(identity, "identity")
        for name in metrics:
            check_key(name, "metric name")
        now = self.now()
        computed_at = now if computed_at is None else computed_at
        expires_at = now + (self.ttl_seconds if ttl_seconds is None else ttl_seconds)
        cells = {
            name: json.dumps({"value": float(v), "computed_at": computed_at, "expires_at": expires_at})
            for name, v in metrics.items()
        }
        if not cells:
            return

        async def op():
            async with self.store.client.pipeline(transaction=True) as pipe:
                pipe.hset(self._row(identity), mapping=cells)
                pipe.zadd(self._expiry, {f"{identity}:{name}": expires_at for name in cells})
                await pipe.execute()

        await self.store.write(op, "metrics_save")

    async def invalidate(self, identity: str) -> bool:
        check_key(identity, "identity")
        client = self.store.client
        names = await self.store.read(lambda: client.hkeys(self._row(identity)), "metrics_keys")

        async def op():
            async with client.pipeline(transaction=True) as pipe:
                pipe.delete(self._row(identity))
                if names:
                    pipe.zrem(self._expiry, *[f"{identity}:{n}" for n in names])
                results = await pipe.execute()
            return int(results[0]) > 0

        return await self.store.write(op, "metrics_invalidate")

    async def invalidate_metric(self, identity: str, name: str) -> bool:
        check_key(identity, "identity")

        async def op():
            async with self.store.client.pipeline(transaction=True) as pipe:
                pipe.hdel(self._row(identity), name)
                pipe.zrem(self._expiry, f"{identity}:{name}")
                results = await pipe.execute()
            return int(results[0]) > 0

        return await self.store.write(op, "metrics_invalidate_metric")

    async def count_live(self) -> int:
        now = self.now()
        return int(await self.store.read(
            lambda: self.store.client.zcount(self._expiry, f"({now}", "+inf"), "metrics_count",
        ))

    async def cleanup(self) -> int:
        now = self.now()

        async def op():
            members = await self.store.client.zrangebyscore(self._expiry, "-inf", now)
            if not members:
                return 0
            async with self.store.client.pipeline(transaction=True) as pipe:
                for member in members:
                    identity, name = member.split(":", 1)
                    pipe.hdel(self._row(identity), name)
                pipe.zrem(self._expiry, *members)
                results = await pipe.execute()
            return sum(int(r) for r in results[:-1])

        return self._finish_cleanup(await self.store.write(op, "metrics_cleanup"))


# ── Profile documents ─────────────────────────────

class ProfileCache(CacheRepository):
    """Fetched profile documents, shared across validators and calls."""

    _expiry = "st:profile:expiry"

    @staticmethod
    def _row(identity: str) -> str:
        return f"st:profile:row:{identity}"

    async def get(self, identity: str) -> Optional[Dict[str, Any]]:
        check_key(identity, "identity")
        blob = await self.store.read(lambda: self.store.client.get(self._row(identity)), "profile_get")
        if blob is None:
            self._record(False)
            return None
        cell = json.loads(blob)
        live = self._live(cell.get("expires_at"))
        self._record(live)
        return cell["profile"] if live else None

    async def save(self, identity: str, profile: Dict[str, Any]) -> None:
        check_key(identity, "identity")
        now = self.now()
        expires_at = now + self.ttl_seconds
        blob = json.dumps({"profile": profile, "fetched_at": now, "expires_at": expires_at})

        async def op():
            async with self.store.client.pipeline(transaction=True) as pipe:
                # backstop so abandoned documents do not live forever
                pipe.set(self._row(identity), blob, ex=self.ttl_seconds + 3600)
                pipe.zadd(self._expiry, {identity: expires_at})
                await pipe.execute()

        await self.store.write(op, "profile_save")

    async def invalidate(self, identity: str) -> bool:
        check_key(identity, "identity")

        async def op():
            async with self.store.client.pipeline(transaction=True) as pipe:
                pipe.delete(self._row(identity))
                pipe.zrem(self._expiry, identity)
                results = await pipe.execute()
            return int(results[0]) > 0

        return await self.store.write(op, "profile_invalidate")

    async def count_live(self) -> int:
        now = self.now()
        return int(await self.store.read(
            lambda: self.store.client.zcount(self._expiry, f"({now}", "+inf"), "profile_count",
        ))

    async def cleanup(self) -> int:
        now = self.now()

        async def op():
            members = await self.store.client.zrangebyscore(self._expiry, "-inf", now)
            if not members:
                return 0
            async with self.store.client.pipeline(transaction=True) as pipe:
                for identity in members:
                    pipe.delete(self._row(identity))
                pipe.zrem(self._expiry, *members)
                results = await pipe.execute()
            return sum(int(r) for r in results[:-1])

        return self._finish_cleanup(await self.store.write(op, "profile_cleanup"))
