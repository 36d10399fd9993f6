"""Candidate model for provisional gates."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from gate_intel.geometry import Position, PositionMoments
from gate_intel.models.enums import Disposition

CandidateId = tuple[str, str]
"""(event_id, declared_tag)."""


def format_candidate_id(candidate_id: CandidateId) -> str:
    return f"{candidate_id[0]}:{candidate_id[1]}"


@dataclass
class Candidate:
    """A provisional gate built from every confirmed scan sharing a tag.

    Live state owned by one event's worker. Statistics are a pure fold over
    confirmed scans; score and disposition are derived and rewritten by the
    coordinator. Readers outside the worker get a CandidateSnapshot instead.
    """

    event_id: str
    declared_tag: str

    moments: PositionMoments = field(default_factory=PositionMoments)
    """Running mean/variance of scan positions."""

    first_observed_at: datetime | None = None
    last_observed_at: datetime | None = None

    staff_ids: set[str] = field(default_factory=set)  # pyright: ignore[reportUnknownVariableType]
    """Distinct operators who scanned at this tag."""

    anchor_centroid: Position | None = None
    """Centroid as of the last change signal; drift is measured against it."""

    confidence_score: float | None = None
    """None until the candidate reaches min_events_for_candidate."""

    score_details: dict[str, float] = field(default_factory=dict)  # pyright: ignore[reportUnknownVariableType]
    """Sub-scores behind confidence_score, for explanation."""

    disposition: Disposition | None = None
    merge_target_id: CandidateId | None = None
    """Set only when disposition is MERGE_WITH_NEARBY."""

    decision_reason: str | None = None

    @property
    def id(self) -> CandidateId:
        return (self.event_id, self.declared_tag)

    @property
    def count(self) -> int:
        return self.moments.count

    @property
    def centroid(self) -> Position | None:
        return self.moments.centroid

    @property
    def spatial_variance(self) -> float:
        return self.moments.spatial_variance

    @property
    def distinct_staff_count(self) -> int:
        return len(self.staff_ids)

    @property
    def duration_hours(self) -> float:
        """Observed span in hours (0 for a single scan)."""
        if self.first_observed_at is None or self.last_observed_at is None:
            return 0.0
        return (self.last_observed_at - self.first_observed_at).total_seconds() / 3600

    @property
    def is_scored(self) -> bool:
        return self.confidence_score is not None

    def snapshot(self) -> CandidateSnapshot:
        """Immutable copy safe to hand to other threads or tasks."""
        return CandidateSnapshot(
            event_id=self.event_id,
            declared_tag=self.declared_tag,
            count=self.count,
            centroid=self.centroid,
            spatial_variance=self.spatial_variance,
            first_observed_at=self.first_observed_at,
            last_observed_at=self.last_observed_at,
            distinct_staff_count=self.distinct_staff_count,
            confidence_score=self.confidence_score,
            score_details=dict(self.score_details),
            disposition=self.disposition,
            merge_target_id=self.merge_target_id,
            decision_reason=self.decision_reason,
        )


@dataclass(frozen=True)
class CandidateSnapshot:
    """Point-in-time copy of a Candidate, as published to collaborators."""

    event_id: str
    declared_tag: str
    count: int
    centroid: Position | None
    spatial_variance: float
    first_observed_at: datetime | None
    last_observed_at: datetime | None
    distinct_staff_count: int
    confidence_score: float | None
    score_details: dict[str, float]
    disposition: Disposition | None
    merge_target_id: CandidateId | None
    decision_reason: str | None

    @property
    def id(self) -> CandidateId:
        return (self.event_id, self.declared_tag)

    def to_record(self) -> dict[str, Any]:
        """Flatten into a plain dict for upsert by the persistence layer."""
        return {
            "event_id": self.event_id,
            "declared_tag": self.declared_tag,
            "count": self.count,
            "centroid_lat": self.centroid[0] if self.centroid else None,
            "centroid_lon": self.centroid[1] if self.centroid else None,
            "spatial_variance": self.spatial_variance,
            "first_observed_at": self.first_observed_at,
            "last_observed_at": self.last_observed_at,
            "distinct_staff_count": self.distinct_staff_count,
            "confidence_score": self.confidence_score,
            "score_details": dict(self.score_details),
            "disposition": self.disposition.value if self.disposition else None,
            "merge_target_tag": self.merge_target_id[1] if self.merge_target_id else None,
            "decision_reason": self.decision_reason,
        }
