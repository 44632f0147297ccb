"""
SocialTrust — Worker Settings

arq worker that keeps the caches tidy. Reads skip expired rows on their
own; this job removes them so Redis doesn't keep growing.

    arq socialtrust.workers.worker_settings.WorkerSettings
"""
from typing import Any, Dict

import structlog
from arq import cron
from arq.connections import RedisSettings

from socialtrust._logger import configure_logging
from socialtrust.compute.cache import MetricsCache, ProfileCache, ScoreCache
from socialtrust.config import settings
from socialtrust.db.redis import Store

logger = structlog.get_logger()

REDIS_SETTINGS = RedisSettings.from_dsn(settings.REDIS_URL)


def _cleanup_minutes(every: int) -> set:
    return set(range(0, 60, every))


async def startup(ctx: Dict[str, Any]) -> None:
    configure_logging()
    store = Store.from_url(
        settings.REDIS_URL,
        max_retries=settings.STORAGE_RETRIES,
        base_delay=settings.RETRY_BASE_DELAY,
    )
    ctx["store"] = store
    ctx["caches"] = [
        ScoreCache(store, settings.TRUST_SCORES_TTL, settings.FORMULA_VERSION),
        MetricsCache(store, settings.PROFILE_METRICS_TTL),
        ProfileCache(store, settings.PROFILE_CACHE_TTL),
    ]
    logger.info("worker_started", env=settings.ENVIRONMENT, cleanup_every_min=settings.CACHE_CLEANUP_MINUTES)


async def shutdown(ctx: Dict[str, Any]) -> None:
    store = ctx.get("store")
    if store is not None:
        await store.close()


async def cleanup_caches(ctx: Dict[str, Any]) -> Dict[str, int]:
    """Remove expired rows from every cache. Returns removed counts per cache."""
    removed: Dict[str, int] = {}
    for cache in ctx["caches"]:
        name = type(cache).__name__
        try:
            removed[name] = await cache.cleanup()
        except Exception as e:
            logger.error("cache_cleanup_failed", cache=name, error=str(e))
            removed[name] = 0
    logger.info("cache_cleanup_complete", **removed)
    return removed


class WorkerSettings:
    functions = [cleanup_caches]

    cron_jobs = [
        cron(
            cleanup_caches,
            minute=_cleanup_minutes(settings.CACHE_CLEANUP_MINUTES),
            unique=True,  # one cleanup at a time across workers
            run_at_startup=True,
        ),
    ]

    on_startup = startup
    on_shutdown = shutdown

    redis_settings = REDIS_SETTINGS
    max_jobs = 10
    job_timeout = 300
