"""Tests for configuration loading and validation."""

from __future__ import annotations

import pytest

from gate_intel.config import DiscoveryConfig, Settings
from gate_intel.errors import ConfigurationError


class TestDiscoveryConfig:
    def test_defaults(self) -> None:
        config = DiscoveryConfig()

        assert config.min_events_for_candidate == 5
        assert config.merge_threshold_meters == 10.0
        assert config.virtual_gate_threshold_meters == 25.0
        assert config.auto_approve_score == 0.95
        assert config.recommend_score == 0.75

    def test_accepts_camel_case_records(self) -> None:
        config = DiscoveryConfig.from_mapping(
            {"minEventsForCandidate": 8, "mergeThresholdMeters": 5, "virtualGateThresholdMeters": 12}
        )

        assert config.min_events_for_candidate == 8
        assert config.merge_threshold_meters == 5.0
        assert config.virtual_gate_threshold_meters == 12.0

    def test_merge_band_wider_than_virtual_band_rejected(self) -> None:
        with pytest.raises(ConfigurationError, match="merge_threshold_meters"):
            DiscoveryConfig.from_mapping(
                {"merge_threshold_meters": 30, "virtual_gate_threshold_meters": 25}
            )

    @pytest.mark.parametrize(
        "field",
        ["merge_threshold_meters", "virtual_gate_threshold_meters", "recommend_score"],
    )
    def test_negative_threshold_rejected(self, field: str) -> None:
        with pytest.raises(ConfigurationError, match="must not be negative"):
            DiscoveryConfig.from_mapping({field: -1})

    def test_recommend_above_auto_approve_rejected(self) -> None:
        with pytest.raises(ConfigurationError, match="recommend_score"):
            DiscoveryConfig.from_mapping({"recommend_score": 0.97, "auto_approve_score": 0.9})

    def test_score_above_one_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            DiscoveryConfig.from_mapping({"auto_approve_score": 1.5})

    def test_zero_min_events_rejected(self) -> None:
        with pytest.raises(ConfigurationError, match="min_events_for_candidate"):
            DiscoveryConfig.from_mapping({"min_events_for_candidate": 0})

    def test_wrong_type_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            DiscoveryConfig.from_mapping({"merge_threshold_meters": "close"})

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    @pytest.mark.parametrize(
        "key", ["mergeThresholdMeters", "autoApproveScore", "centroidEpsilonMeters"]
    )
    def test_non_finite_threshold_rejected(self, key: str, value: float) -> None:
        with pytest.raises(ConfigurationError):
            DiscoveryConfig.from_mapping({key: value})

    def test_frozen(self) -> None:
        config = DiscoveryConfig()
        with pytest.raises(Exception):
            config.merge_threshold_meters = 3.0  # type: ignore[misc]


class TestSettings:
    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GATE_INTEL_MIN_EVENTS_FOR_CANDIDATE", "7")
        monkeypatch.setenv("GATE_INTEL_MERGE_THRESHOLD_METERS", "6.5")

        config = DiscoveryConfig.from_settings(Settings())

        assert config.min_events_for_candidate == 7
        assert config.merge_threshold_meters == 6.5

    def test_inconsistent_environment_fails_at_build(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GATE_INTEL_VIRTUAL_GATE_THRESHOLD_METERS", "5")

        with pytest.raises(ConfigurationError):
            DiscoveryConfig.from_settings(Settings())
