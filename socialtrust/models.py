"""
SocialTrust — Value Types
Immutable results passed between the calculator, collectors and caches.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

# metric name → value in [0, 1]
MetricInputs = Mapping[str, float]


@dataclass(frozen=True)
class TrustScoreResult:
    score: float
    metric_values: Dict[str, float]
    metric_weights: Dict[str, float]
    computed_at: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "metric_values": dict(self.metric_values),
            "metric_weights": dict(self.metric_weights),
            "computed_at": self.computed_at,
        }


@dataclass(frozen=True)
class CacheEntry:
    source_key: str
    target_key: str
    result: TrustScoreResult
    expires_at: int


@dataclass(frozen=True)
class MetricBreakdown:
    metric: str
    value: float
    weight: float
    exponent: float
    transformed_value: float
    contribution: float
    normalized_contribution: float
    percent_of_total: float


@dataclass(frozen=True)
class ValidationOutcome:
    """What a validator learned about one identity."""
    signal: bool
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ProfileMetrics:
    pubkey: str
    nip05_valid: float = 0.0
    lightning_address: float = 0.0
    relay_list: float = 0.0
    reciprocity: float = 0.0
    computed_at: int = 0

    def values(self) -> Dict[str, float]:
        return {
            "nip05_valid": self.nip05_valid,
            "lightning_address": self.lightning_address,
            "relay_list": self.relay_list,
            "reciprocity": self.reciprocity,
        }


@dataclass
class CollectionResult:
    pubkey: str
    metrics: ProfileMetrics
    collected_at: int
    cache_hit: bool
    source_pubkey: Optional[str] = None
    details: Optional[Dict[str, ValidationOutcome]] = None
    errors: Optional[List[str]] = None


@dataclass
class BatchCollectionResult:
    results: List[CollectionResult]
    summary: Dict[str, Any]
    errors: List[Dict[str, str]]
