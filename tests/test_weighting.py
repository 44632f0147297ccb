"""Tests for socialtrust.trust.weighting."""

from __future__ import annotations

import pytest

from socialtrust.errors import SchemeInvalid
from socialtrust.trust.weighting import (
    BALANCED_SCHEME,
    DEFAULT_SCHEME,
    PRESET_SCHEMES,
    SOCIAL_PROOF_SCHEME,
    MetricConfig,
    WeightingScheme,
    build_scheme,
    compare_schemes,
    create_custom_scheme,
    normalize_weights,
    scheme_metadata,
    validate_scheme,
)


class TestValidateScheme:
    @pytest.mark.parametrize("name", sorted(PRESET_SCHEMES))
    def test_presets_are_valid(self, name):
        assert validate_scheme(PRESET_SCHEMES[name]) == []

    def test_empty_scheme_collects_every_violation_in_order(self):
        violations = validate_scheme(WeightingScheme(name="", version="", metrics={}))
        assert violations == [
            "scheme must have a name",
            "scheme must have a version",
            "scheme must have at least one metric",
            "at least one metric must be enabled with weight > 0",
        ]

    def test_weight_and_exponent_problems_accumulate(self):
        scheme = WeightingScheme("s", "v1", {
            "a": MetricConfig(weight=-0.1),
            "b": MetricConfig(weight=0.5, exponent=0.5),
        })
        violations = validate_scheme(scheme)
        assert len(violations) == 2
        assert "negative weight" in violations[0]
        assert "exponent" in violations[1]

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_weight_and_exponent(self, value):
        scheme = WeightingScheme("s", "v1", {
            "a": MetricConfig(weight=value),
            "b": MetricConfig(weight=0.5, exponent=value),
        })
        assert validate_scheme(scheme)[:2] == [
            f"metric a has non-finite weight {value}",
            f"metric b has non-finite exponent {value}",
        ]

    def test_disabled_metric_with_weight(self):
        scheme = WeightingScheme("s", "v1", {
            "a": MetricConfig(weight=0.5, enabled=False),
            "b": MetricConfig(weight=0.5),
        })
        assert validate_scheme(scheme) == ["metric a has positive weight but is disabled"]

    def test_build_scheme_raises(self):
        with pytest.raises(SchemeInvalid) as exc:
            build_scheme("s", "v1", {"a": MetricConfig(weight=0.0)})
        assert exc.value.violations == ["at least one metric must be enabled with weight > 0"]


class TestNormalizeWeights:
    def test_enabled_weights_sum_to_one(self):
        scheme = WeightingScheme("s", "v1", {
            "a": MetricConfig(weight=2.0),
            "b": MetricConfig(weight=2.0),
            "c": MetricConfig(weight=0.3, enabled=False),
        })
        result = normalize_weights(scheme)
        assert result.metrics["a"].weight == pytest.approx(0.5)
        assert result.metrics["b"].weight == pytest.approx(0.5)
        assert result.metrics["c"].weight == 0.3
        # original is untouched
        assert scheme.metrics["a"].weight == 2.0

    def test_zero_total_returns_scheme_unchanged(self):
        scheme = WeightingScheme("s", "v1", {"a": MetricConfig(weight=0.0)})
        assert normalize_weights(scheme) is scheme


class TestCompareSchemes:
    def test_modified_reports_old_and_new(self):
        diff = compare_schemes(DEFAULT_SCHEME, BALANCED_SCHEME)
        assert diff["added"] == []
        assert diff["removed"] == []
        assert len(diff["modified"]) == 5
        distance = next(m for m in diff["modified"] if m["metric"] == "distance_weight")
        assert distance["old_weight"] == 0.5
        assert distance["new_weight"] == 0.2
        assert distance["old_exponent"] == distance["new_exponent"] == 1.0

    def test_added_and_removed(self):
        a = create_custom_scheme("a", {"nip05_valid": {}, "relay_list": {}})
        b = create_custom_scheme("b", {"nip05_valid": {}, "reciprocity": {}})
        diff = compare_schemes(a, b)
        assert diff == {"added": ["reciprocity"], "removed": ["relay_list"], "modified": []}


class TestCustomSchemes:
    def test_defaults_are_filled(self):
        scheme = create_custom_scheme("mine", {"nip05_valid": {}, "relay_list": {"weight": 0.5}})
        assert scheme.version == "custom"
        assert scheme.metrics["nip05_valid"] == MetricConfig(weight=0.2, exponent=1.0, enabled=True)
        assert scheme.metrics["relay_list"].weight == 0.5

    def test_invalid_custom_scheme(self):
        with pytest.raises(SchemeInvalid):
            create_custom_scheme("mine", {"nip05_valid": {"exponent": 0.5}})

    @pytest.mark.parametrize("cfg", [
        {"weight": 1.0, "exponent": float("nan")},
        {"weight": float("inf")},
        {"weight": float("nan")},
    ])
    def test_custom_scheme_rejects_non_finite(self, cfg):
        with pytest.raises(SchemeInvalid):
            create_custom_scheme("mine", {"nip05_valid": cfg, "relay_list": {"weight": 0.5}})


class TestPresets:
    def test_social_proof_exponents(self):
        assert SOCIAL_PROOF_SCHEME.metrics["distance_weight"].exponent == 1.0
        assert SOCIAL_PROOF_SCHEME.metrics["reciprocity"].exponent == 1.3

    def test_default_weights_sum_to_one(self):
        assert sum(c.weight for c in DEFAULT_SCHEME.metrics.values()) == pytest.approx(1.0)

    def test_metadata(self):
        assert scheme_metadata(DEFAULT_SCHEME)["is_default"] is True
        custom = create_custom_scheme("mine", {"nip05_valid": {}})
        meta = scheme_metadata(custom)
        assert meta["tags"] == ["custom"]
        assert meta["description"] == "Custom weighting scheme"

    def test_to_dict(self):
        data = DEFAULT_SCHEME.to_dict()
        assert data["name"] == "default"
        assert data["metrics"]["nip05_valid"] == {"weight": 0.15, "exponent": 1.0, "enabled": True}
