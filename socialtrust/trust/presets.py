"""
SocialTrust — Preset Registry
Named decay profiles and weighting schemes, loaded once at startup.

Built-in presets live in decay.py / weighting.py. Extra presets can be
supplied as a JSON file (PRESETS_FILE):

    {
      "decay_profiles": {"local": {"decay_factor": 0.4, "max_distance": 6}},
      "weighting_schemes": {
        "nip05-only": {"version": "v1", "metrics": {"nip05_valid": {"weight": 1.0}}}
      }
    }
"""
import json
from pathlib import Path
from typing import Dict, List, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from socialtrust.errors import SchemeInvalid
from socialtrust.trust.decay import DECAY_PROFILES, DecayProfile, create_custom_profile
from socialtrust.trust.weighting import (
    PRESET_SCHEMES,
    MetricConfig,
    WeightingScheme,
    build_scheme,
    validate_scheme,
)

logger = structlog.get_logger()


class MetricConfigModel(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    weight: float = 0.2
    exponent: float = 1.0
    enabled: bool = True


class SchemeModel(BaseModel):
    version: str = "v1"
    metrics: Dict[str, MetricConfigModel]


class DecayProfileModel(BaseModel):
    decay_factor: float
    max_distance: int = 1000
    self_weight: float = 1.0

    @field_validator("decay_factor")
    @classmethod
    def factor_in_range(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("decay_factor must be in (0, 1]")
        return v


class PresetsFile(BaseModel):
    decay_profiles: Dict[str, DecayProfileModel] = Field(default_factory=dict)
    weighting_schemes: Dict[str, SchemeModel] = Field(default_factory=dict)


class SchemeRegistry:
    """
    Holds every known scheme and profile plus the active scheme.

    Usage:
        registry = SchemeRegistry()
        registry.activate("conservative")
        calc = TrustScoreCalculator(registry.active)
    """

    def __init__(self, active: str = "default"):
        self._schemes: Dict[str, WeightingScheme] = dict(PRESET_SCHEMES)
        self._profiles: Dict[str, DecayProfile] = dict(DECAY_PROFILES)
        self._active = self._schemes["default"]
        if active != "default":
            self.activate(active)

    # ── Schemes ───────────────────────────────────

    @property
    def active(self) -> WeightingScheme:
        return self._active

    def names(self) -> List[str]:
        return list(self._schemes)

    def get(self, name: str) -> WeightingScheme:
        try:
            return self._schemes[name.lower()]
        except KeyError:
            raise KeyError(f"Unknown weighting scheme: {name}") from None

    def register(self, scheme: WeightingScheme) -> None:
        violations = validate_scheme(scheme)
        if violations:
            raise SchemeInvalid(scheme.name, violations)
        self._schemes[scheme.name.lower()] = scheme
        logger.info("scheme_registered", scheme=scheme.name, version=scheme.version)

    def activate(self, name: str) -> WeightingScheme:
        scheme = self.get(name)
        violations = validate_scheme(scheme)
        if violations:
            raise SchemeInvalid(scheme.name, violations)
        self._active = scheme
        logger.info("scheme_activated", scheme=scheme.name, version=scheme.version)
        return scheme

    # ── Decay profiles ────────────────────────────

    def profile_names(self) -> List[str]:
        return list(self._profiles)

    def get_profile(self, name: str) -> DecayProfile:
        try:
            return self._profiles[name.lower()]
        except KeyError:
            raise KeyError(f"Unknown decay profile: {name}") from None

    def register_profile(self, name: str, profile: DecayProfile) -> None:
        self._profiles[name.lower()] = create_custom_profile(
            profile.decay_factor, profile.max_distance, profile.self_weight,
        )

    # ── Static configuration ──────────────────────

    def load_file(self, path: str) -> int:
        """Load presets from a JSON file. Returns how many entries were added."""
        raw = Path(path).read_text(encoding="utf-8")
        try:
            data = PresetsFile.model_validate(json.loads(raw))
        except (ValidationError, json.JSONDecodeError) as e:
            raise ValueError(f"Invalid presets file {path}: {e}") from e

        for name, p in data.decay_profiles.items():
            self.register_profile(name, DecayProfile(p.decay_factor, p.max_distance, p.self_weight))
        for name, s in data.weighting_schemes.items():
            self.register(build_scheme(
                name,
                s.version,
                {m: MetricConfig(c.weight, c.exponent, c.enabled) for m, c in s.metrics.items()},
            ))

        added = len(data.decay_profiles) + len(data.weighting_schemes)
        logger.info("presets_loaded", path=path, entries=added)
        return added


def registry_from_settings(settings=None) -> SchemeRegistry:
    if settings is None:
        from socialtrust.config import settings
    registry = SchemeRegistry()
    if settings.PRESETS_FILE:
        registry.load_file(settings.PRESETS_FILE)
    registry.activate(settings.WEIGHTING_SCHEME)
    return registry


def profile_from_settings(registry: SchemeRegistry, settings=None) -> DecayProfile:
    """Configured preset, with DECAY_FACTOR overriding its factor when set."""
    if settings is None:
        from socialtrust.config import settings
    profile = registry.get_profile(settings.DECAY_PROFILE)
    factor: Optional[float] = settings.DECAY_FACTOR
    if factor is not None:
        profile = create_custom_profile(factor, profile.max_distance, profile.self_weight)
    return profile
