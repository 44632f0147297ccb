"""
SocialTrust — Configuration
Scoring, caching and collector settings.

All settings load from environment variables with safe defaults for development.
"""
import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _float(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}")


def _int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}")


class Settings:
    def __init__(self):
        self.ENVIRONMENT = os.getenv("ST_ENV", "development")

        # === Storage ===
        self.REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self.FORMULA_VERSION = os.getenv("FORMULA_VERSION", "v1")

        # === Cache TTLs (seconds) ===
        self.TRUST_SCORES_TTL = _int("TRUST_SCORES_TTL", "3600")
        self.PROFILE_METRICS_TTL = _int("PROFILE_METRICS_TTL", "3600")
        self.PROFILE_CACHE_TTL = _int("PROFILE_CACHE_TTL", "3600")
        self.CACHE_CLEANUP_MINUTES = _int("CACHE_CLEANUP_MINUTES", "15")

        # === Scoring ===
        self.DECAY_PROFILE = os.getenv("DECAY_PROFILE", "default")
        decay = os.getenv("DECAY_FACTOR", "")
        self.DECAY_FACTOR: Optional[float] = _float("DECAY_FACTOR", decay) if decay else None
        self.WEIGHTING_SCHEME = os.getenv("WEIGHTING_SCHEME", "default")
        self.PRESETS_FILE = os.getenv("PRESETS_FILE", "")

        # === Collectors ===
        self.VALIDATOR_TIMEOUT = _float("VALIDATOR_TIMEOUT", "10")
        self.VALIDATOR_RETRIES = _int("VALIDATOR_RETRIES", "2")
        self.RETRY_BASE_DELAY = _float("RETRY_BASE_DELAY", "0.1")
        self.STORAGE_RETRIES = _int("STORAGE_RETRIES", "3")
        self.BATCH_CONCURRENCY = _int("BATCH_CONCURRENCY", "3")

        self._validate()

    def _validate(self):
        if self.DECAY_FACTOR is not None and not 0 < self.DECAY_FACTOR <= 1:
            raise RuntimeError("DECAY_FACTOR must be in (0, 1]")
        for name in ("TRUST_SCORES_TTL", "PROFILE_METRICS_TTL", "PROFILE_CACHE_TTL"):
            if getattr(self, name) < 0:
                raise RuntimeError(f"{name} must be non-negative")
        if self.BATCH_CONCURRENCY < 1:
            raise RuntimeError("BATCH_CONCURRENCY must be at least 1")
        if not 1 <= self.CACHE_CLEANUP_MINUTES <= 60:
            raise RuntimeError("CACHE_CLEANUP_MINUTES must be between 1 and 60")


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
