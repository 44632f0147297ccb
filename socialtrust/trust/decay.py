"""
SocialTrust — Distance Decay
Turns a social-graph hop distance into a weight in [0, 1].

    distance 0              → self_weight
    distance d ≥ 1          → decay_factor ** d
    d ≥ zero threshold      → exactly 0.0
    d ≥ max_distance        → 0.0 (unreachable)

The zero threshold is the first distance whose weight rounds to 0 at
WEIGHT_PRECISION decimal places. It is computed once per normalizer.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, asdict
from typing import Dict, List, Mapping, Optional, Tuple

WEIGHT_PRECISION = 6
_ZERO_BELOW = 0.5 * 10 ** -WEIGHT_PRECISION


@dataclass(frozen=True)
class DecayProfile:
    decay_factor: float
    max_distance: int = 1000
    self_weight: float = 1.0

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


# ── Presets ───────────────────────────────────────

DECAY_PROFILES: Dict[str, DecayProfile] = {
    "default": DecayProfile(decay_factor=0.1),
    "conservative": DecayProfile(decay_factor=0.2),
    "progressive": DecayProfile(decay_factor=0.05),
    "balanced": DecayProfile(decay_factor=0.15),
    "strict": DecayProfile(decay_factor=0.3),
    "extended": DecayProfile(decay_factor=0.025),
}


def get_decay_profile(name: str) -> DecayProfile:
    try:
        return DECAY_PROFILES[name.lower()]
    except KeyError:
        raise KeyError(f"Unknown decay profile: {name}") from None


def create_custom_profile(
    decay_factor: float,
    max_distance: int = 1000,
    self_weight: float = 1.0,
) -> DecayProfile:
    profile = DecayProfile(decay_factor=decay_factor, max_distance=max_distance, self_weight=self_weight)
    errors = validate_decay_profile(profile)
    if errors:
        raise ValueError(f"Invalid decay profile: {'; '.join(errors)}")
    return profile


def validate_decay_profile(profile: DecayProfile) -> List[str]:
    errors = []
    if not isinstance(profile.decay_factor, (int, float)) or math.isnan(profile.decay_factor):
        errors.append(f"decay_factor must be a number, got {profile.decay_factor!r}")
    elif not 0 < profile.decay_factor <= 1:
        errors.append(f"decay_factor must be in (0, 1], got {profile.decay_factor}")
    if not isinstance(profile.max_distance, int) or profile.max_distance < 1:
        errors.append(f"max_distance must be a positive integer, got {profile.max_distance!r}")
    if not 0 <= profile.self_weight <= 1:
        errors.append(f"self_weight must be in [0, 1], got {profile.self_weight}")
    return errors


def _zero_weight_threshold(profile: DecayProfile) -> Optional[int]:
    """First distance ≥ 1 whose weight rounds to zero; None if it never does."""
    factor = profile.decay_factor
    if factor >= 1:
        return None
    d = max(1, math.floor(math.log(_ZERO_BELOW) / math.log(factor)))
    # log() rounding can land one step either side
    while d > 1 and factor ** (d - 1) < _ZERO_BELOW:
        d -= 1
    while factor ** d >= _ZERO_BELOW:
        d += 1
    return d


def _check_distance(distance) -> None:
    if isinstance(distance, bool) or not isinstance(distance, int) or distance < 0:
        raise ValueError(f"Invalid distance: {distance!r}. Must be a non-negative integer.")


class DistanceNormalizer:
    """
    Usage:
        normalizer = DistanceNormalizer(get_decay_profile("balanced"))
        normalizer.normalize(2)     # 0.0225
    """

    def __init__(self, profile: Optional[DecayProfile] = None):
        self.profile = profile or DECAY_PROFILES["default"]
        errors = validate_decay_profile(self.profile)
        if errors:
            raise ValueError(f"Invalid DistanceNormalizer configuration: {'; '.join(errors)}")
        self._zero_threshold = _zero_weight_threshold(self.profile)

    @property
    def zero_weight_threshold(self) -> Optional[int]:
        return self._zero_threshold

    def is_reachable(self, distance: int) -> bool:
        return (
            isinstance(distance, int)
            and not isinstance(distance, bool)
            and 0 <= distance < self.profile.max_distance
        )

    def normalize(self, distance: int) -> float:
        _check_distance(distance)
        if distance == 0:
            return self.profile.self_weight
        if distance >= self.profile.max_distance:
            return 0.0
        if self._zero_threshold is not None and distance >= self._zero_threshold:
            return 0.0
        if self.profile.decay_factor == 1:
            return self.profile.self_weight
        return self.profile.decay_factor ** distance

    def normalize_with_result(self, distance: int) -> Dict[str, object]:
        return {
            "distance": distance,
            "weight": self.normalize(distance),
            "is_reachable": self.is_reachable(distance),
        }

    def normalize_many(self, distances: Mapping[str, int]) -> Dict[str, float]:
        return {key: self.normalize(d) for key, d in distances.items()}

    def generate_decay_curve(self, max_distance: int = 20) -> List[Tuple[int, float]]:
        return [(d, self.normalize(d)) for d in range(max_distance + 1)]

    def statistics(self) -> Dict[str, Optional[int]]:
        factor = self.profile.decay_factor
        if factor >= 1:
            half = quarter = None
        else:
            half = math.ceil(math.log(0.5) / math.log(factor))
            quarter = math.ceil(math.log(0.25) / math.log(factor))
        threshold = self._zero_threshold
        reach = self.profile.max_distance if threshold is None else min(threshold, self.profile.max_distance)
        return {
            "zero_weight_threshold": threshold,
            "effective_reach": reach,
            "half_weight_distance": half,
            "quarter_weight_distance": quarter,
        }

    def compare(self, distance1: int, distance2: int) -> Dict[str, float]:
        weight1 = self.normalize(distance1)
        weight2 = self.normalize(distance2)
        return {
            "distance1": distance1,
            "distance2": distance2,
            "weight1": weight1,
            "weight2": weight2,
            "difference": weight1 - weight2,
            "ratio": weight1 / weight2 if weight2 > 0 else math.inf,
        }
