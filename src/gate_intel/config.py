"""Configuration for the gate discovery engine.

Two layers:
- Settings: process-wide defaults loaded from environment variables.
- DiscoveryConfig: the per-event configuration record, validated once at
  worker start.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

from gate_intel.errors import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="GATE_INTEL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Candidate eligibility ────────────────────────────────────────────────
    # Confirmed events required before a candidate is scored at all
    min_events_for_candidate: int = 5

    # ── Proximity bands (meters between candidate centroids) ─────────────────
    merge_threshold_meters: float = 10.0
    virtual_gate_threshold_meters: float = 25.0

    # ── Decision thresholds ──────────────────────────────────────────────────
    auto_approve_score: float = 0.95
    recommend_score: float = 0.75

    # Centroid movement below this does not retrigger merge detection
    centroid_epsilon_meters: float = 1.0

    # ── Workers ──────────────────────────────────────────────────────────────
    worker_queue_size: int = 1000
    worker_max_restarts: int = 3

    log_level: str = "INFO"


settings = Settings()


class DiscoveryConfig(BaseModel):
    """Per-event discovery thresholds.

    Read-only to the engine. Accepts snake_case or camelCase keys so that
    records stored by the event service can be passed straight through.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        allow_inf_nan=False,
    )

    min_events_for_candidate: int = 5
    merge_threshold_meters: float = 10.0
    virtual_gate_threshold_meters: float = 25.0
    auto_approve_score: float = 0.95
    recommend_score: float = 0.75
    centroid_epsilon_meters: float = 1.0

    @model_validator(mode="after")
    def _check_consistency(self) -> DiscoveryConfig:
        problems: list[str] = []

        if self.min_events_for_candidate < 1:
            problems.append("min_events_for_candidate must be at least 1")

        for name in (
            "merge_threshold_meters",
            "virtual_gate_threshold_meters",
            "auto_approve_score",
            "recommend_score",
            "centroid_epsilon_meters",
        ):
            if getattr(self, name) < 0:
                problems.append(f"{name} must not be negative")

        if self.merge_threshold_meters > self.virtual_gate_threshold_meters:
            problems.append(
                f"merge_threshold_meters ({self.merge_threshold_meters}) exceeds "
                f"virtual_gate_threshold_meters ({self.virtual_gate_threshold_meters})"
            )
        if self.auto_approve_score > 1.0 or self.recommend_score > 1.0:
            problems.append("score thresholds must lie in [0, 1]")
        if self.recommend_score > self.auto_approve_score:
            problems.append(
                f"recommend_score ({self.recommend_score}) exceeds "
                f"auto_approve_score ({self.auto_approve_score})"
            )

        # Raised directly (not as ValueError) so pydantic does not wrap it
        if problems:
            raise ConfigurationError("; ".join(problems))
        return self

    @classmethod
    def from_settings(cls, source: Settings | None = None) -> DiscoveryConfig:
        """Build a config from process-wide defaults."""
        source = source or settings
        return cls.from_mapping(
            {
                "min_events_for_candidate": source.min_events_for_candidate,
                "merge_threshold_meters": source.merge_threshold_meters,
                "virtual_gate_threshold_meters": source.virtual_gate_threshold_meters,
                "auto_approve_score": source.auto_approve_score,
                "recommend_score": source.recommend_score,
                "centroid_epsilon_meters": source.centroid_epsilon_meters,
            }
        )

    @classmethod
    def from_mapping(cls, record: Mapping[str, Any]) -> DiscoveryConfig:
        """Build a config from an external record.

        Raises:
            ConfigurationError: If a value has the wrong type or the
                thresholds are inconsistent.
        """
        try:
            return cls.model_validate(dict(record))
        except ValidationError as e:
            raise ConfigurationError(str(e)) from e
