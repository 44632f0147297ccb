"""
SocialTrust — Weighting Schemes

A scheme maps each metric to {weight, exponent, enabled}. Schemes are
validated when built and never mutated afterwards; helpers return new
schemes.

Formula per metric:  contribution = weight × value ** exponent
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional

from socialtrust.errors import SchemeInvalid

DISTANCE_WEIGHT = "distance_weight"
NIP05_VALID = "nip05_valid"
LIGHTNING_ADDRESS = "lightning_address"
RELAY_LIST = "relay_list"
RECIPROCITY = "reciprocity"

METRIC_NAMES = (DISTANCE_WEIGHT, NIP05_VALID, LIGHTNING_ADDRESS, RELAY_LIST, RECIPROCITY)


@dataclass(frozen=True)
class MetricConfig:
    weight: float
    exponent: float = 1.0
    enabled: bool = True


@dataclass(frozen=True)
class WeightingScheme:
    name: str
    version: str
    metrics: Mapping[str, MetricConfig] = field(default_factory=dict)

    def enabled_metrics(self) -> Dict[str, MetricConfig]:
        return {name: cfg for name, cfg in self.metrics.items() if cfg.enabled}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "metrics": {
                name: {"weight": c.weight, "exponent": c.exponent, "enabled": c.enabled}
                for name, c in self.metrics.items()
            },
        }


def validate_scheme(scheme: WeightingScheme) -> List[str]:
    """Collect every violation; an empty list means the scheme is valid."""
    violations = []

    if not scheme.name or not scheme.name.strip():
        violations.append("scheme must have a name")
    if not scheme.version or not scheme.version.strip():
        violations.append("scheme must have a version")
    if not scheme.metrics:
        violations.append("scheme must have at least one metric")

    for name, cfg in scheme.metrics.items():
        if not math.isfinite(cfg.weight):
            violations.append(f"metric {name} has non-finite weight {cfg.weight}")
        elif cfg.weight < 0:
            violations.append(f"metric {name} has negative weight {cfg.weight}")
    for name, cfg in scheme.metrics.items():
        if not math.isfinite(cfg.exponent):
            violations.append(f"metric {name} has non-finite exponent {cfg.exponent}")
        elif cfg.exponent < 1:
            violations.append(f"metric {name} has exponent {cfg.exponent} (must be >= 1)")
    for name, cfg in scheme.metrics.items():
        if cfg.weight > 0 and not cfg.enabled:
            violations.append(f"metric {name} has positive weight but is disabled")

    if not any(cfg.enabled and cfg.weight > 0 for cfg in scheme.metrics.values()):
        violations.append("at least one metric must be enabled with weight > 0")

    return violations


def build_scheme(name: str, version: str, metrics: Mapping[str, MetricConfig]) -> WeightingScheme:
    """Construct and validate; raises SchemeInvalid."""
    scheme = WeightingScheme(name=name, version=version, metrics=dict(metrics))
    violations = validate_scheme(scheme)
    if violations:
        raise SchemeInvalid(name, violations)
    return scheme


def normalize_weights(scheme: WeightingScheme) -> WeightingScheme:
    """
    Rescale enabled weights to sum to 1.0. Disabled metrics keep their
    weight. A zero enabled total returns the scheme unchanged.
    """
    total = sum(cfg.weight for cfg in scheme.metrics.values() if cfg.enabled)
    if total <= 0:
        return scheme
    metrics = {
        name: replace(cfg, weight=cfg.weight / total) if cfg.enabled else cfg
        for name, cfg in scheme.metrics.items()
    }
    return replace(scheme, metrics=metrics)


def compare_schemes(a: WeightingScheme, b: WeightingScheme) -> Dict[str, Any]:
    added = [m for m in b.metrics if m not in a.metrics]
    removed = [m for m in a.metrics if m not in b.metrics]
    modified = []
    for metric, old in a.metrics.items():
        new = b.metrics.get(metric)
        if new is None or new == old:
            continue
        modified.append({
            "metric": metric,
            "old_weight": old.weight,
            "new_weight": new.weight,
            "old_exponent": old.exponent,
            "new_exponent": new.exponent,
            "old_enabled": old.enabled,
            "new_enabled": new.enabled,
        })
    return {"added": added, "removed": removed, "modified": modified}


def create_custom_scheme(name: str, metrics: Mapping[str, Mapping[str, Any]], version: str = "custom") -> WeightingScheme:
    """Fill per-metric defaults (weight 0.2, exponent 1.0, enabled) and validate."""
    configs = {
        metric: MetricConfig(
            weight=float(cfg.get("weight", 0.2)),
            exponent=float(cfg.get("exponent", 1.0)),
            enabled=bool(cfg.get("enabled", True)),
        )
        for metric, cfg in metrics.items()
    }
    return build_scheme(name, version, configs)


# ── Presets ───────────────────────────────────────

def _preset(name: str, weights: Dict[str, float], exponents: Optional[Dict[str, float]] = None) -> WeightingScheme:
    exponents = exponents or {}
    return build_scheme(
        name,
        "v1",
        {m: MetricConfig(weight=w, exponent=exponents.get(m, 1.0)) for m, w in weights.items()},
    )


DEFAULT_SCHEME = _preset("default", {
    DISTANCE_WEIGHT: 0.5, NIP05_VALID: 0.15, LIGHTNING_ADDRESS: 0.1, RELAY_LIST: 0.1, RECIPROCITY: 0.15,
})

CONSERVATIVE_SCHEME = _preset("conservative", {
    DISTANCE_WEIGHT: 0.7, NIP05_VALID: 0.1, LIGHTNING_ADDRESS: 0.05, RELAY_LIST: 0.05, RECIPROCITY: 0.1,
})

PROGRESSIVE_SCHEME = _preset("progressive", {
    DISTANCE_WEIGHT: 0.3, NIP05_VALID: 0.25, LIGHTNING_ADDRESS: 0.15, RELAY_LIST: 0.1, RECIPROCITY: 0.2,
})

BALANCED_SCHEME = _preset("balanced", {m: 0.2 for m in METRIC_NAMES})

VALIDATION_FOCUSED_SCHEME = _preset(
    "validation-focused",
    {DISTANCE_WEIGHT: 0.2, NIP05_VALID: 0.3, LIGHTNING_ADDRESS: 0.2, RELAY_LIST: 0.15, RECIPROCITY: 0.15},
    {NIP05_VALID: 1.2, LIGHTNING_ADDRESS: 1.1},
)

SOCIAL_PROOF_SCHEME = _preset(
    "social-proof",
    {DISTANCE_WEIGHT: 0.4, NIP05_VALID: 0.15, LIGHTNING_ADDRESS: 0.1, RELAY_LIST: 0.1, RECIPROCITY: 0.25},
    {RECIPROCITY: 1.3},
)

PRESET_SCHEMES: Dict[str, WeightingScheme] = {
    s.name: s for s in (
        DEFAULT_SCHEME,
        CONSERVATIVE_SCHEME,
        PROGRESSIVE_SCHEME,
        BALANCED_SCHEME,
        VALIDATION_FOCUSED_SCHEME,
        SOCIAL_PROOF_SCHEME,
    )
}

SCHEME_DESCRIPTIONS = {
    "default": "Moderate emphasis on social distance",
    "conservative": "Social distance dominates; validations are minor",
    "progressive": "Profile validations outweigh social distance",
    "balanced": "Equal weight for every metric",
    "validation-focused": "Profile validations with boosted exponents",
    "social-proof": "Emphasizes mutual follows",
}


def scheme_metadata(scheme: WeightingScheme) -> Dict[str, Any]:
    preset = scheme.name in PRESET_SCHEMES
    return {
        "name": scheme.name,
        "version": scheme.version,
        "description": SCHEME_DESCRIPTIONS.get(scheme.name, "Custom weighting scheme"),
        "tags": [scheme.name] if preset else ["custom"],
        "is_default": scheme.name == "default",
    }
