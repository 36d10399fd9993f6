"""Confidence scoring for gate candidates.

Weighted sum of four banded sub-scores. Weights and band cutoffs are fixed
constants, not configuration, so every score can be audited by hand:

    spatial consistency   40%   tighter clustering scores higher
    temporal density      30%   scans per hour of observed span
    staff consistency     20%   scans per distinct operator, capped at 10
    volume                10%   raw scan count

Spatial bands apply to spatial_variance, the combined per-axis standard
deviation in degrees.
Temporal and volume bands are strict lower bounds (a velocity of exactly 5
scans/hour lands in the 0.8 band).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

from gate_intel.models.candidate import Candidate

SPATIAL_WEIGHT = 0.40
TEMPORAL_WEIGHT = 0.30
STAFF_WEIGHT = 0.20
VOLUME_WEIGHT = 0.10

# (upper bound on spatial variance in degrees, sub-score); above the last bound -> floor
SPATIAL_BANDS: tuple[tuple[float, float], ...] = (
    (0.001, 1.0),  # ~100 m
    (0.01, 0.8),
    (0.1, 0.6),
)
SPATIAL_FLOOR = 0.3

# (strict lower bound on scans/hour, sub-score)
TEMPORAL_BANDS: tuple[tuple[float, float], ...] = (
    (5.0, 1.0),
    (2.0, 0.8),
    (1.0, 0.6),
)
TEMPORAL_FLOOR = 0.4

# (strict lower bound on count, sub-score)
VOLUME_BANDS: tuple[tuple[int, float], ...] = (
    (50, 1.0),
    (20, 0.8),
    (10, 0.6),
)
VOLUME_FLOOR = 0.4

STAFF_RATIO_CAP = 10.0

# One minute; keeps velocity finite when every scan shares a timestamp
MIN_DURATION_HOURS = 1.0 / 60.0


@dataclass(frozen=True)
class ScoreBreakdown:
    """Sub-scores and the raw measures behind them."""

    spatial: float
    temporal: float
    staff: float
    volume: float
    checkin_velocity: float
    """Scans per hour over the (floored) observed span."""

    location_variance: float
    """spatial_variance the spatial band was read from, degrees."""

    @property
    def score(self) -> float:
        total = (
            self.spatial * SPATIAL_WEIGHT
            + self.temporal * TEMPORAL_WEIGHT
            + self.staff * STAFF_WEIGHT
            + self.volume * VOLUME_WEIGHT
        )
        return min(1.0, max(0.0, total))

    def as_dict(self) -> dict[str, float]:
        return asdict(self)


def spatial_subscore(spatial_variance: float) -> float:
    """Map spatial variance to [0.3, 1.0]; non-increasing in variance."""
    for bound, value in SPATIAL_BANDS:
        if spatial_variance < bound:
            return value
    return SPATIAL_FLOOR


def temporal_subscore(velocity: float) -> float:
    for bound, value in TEMPORAL_BANDS:
        if velocity > bound:
            return value
    return TEMPORAL_FLOOR


def staff_subscore(count: int, distinct_staff: int) -> float:
    if distinct_staff <= 0:
        return 0.0
    return min(count / distinct_staff, STAFF_RATIO_CAP) / STAFF_RATIO_CAP


def volume_subscore(count: int) -> float:
    for bound, value in VOLUME_BANDS:
        if count > bound:
            return value
    return VOLUME_FLOOR


def checkin_velocity(count: int, duration_hours: float) -> float:
    return count / max(duration_hours, MIN_DURATION_HOURS)


class ConfidenceScorer:
    """Pure scoring of a candidate's stored statistics.

    Deterministic and side-effect free. Callers decide whether a candidate
    is eligible; the scorer does not consult min_events_for_candidate.

    Usage:
        scorer = ConfidenceScorer()
        breakdown = scorer.breakdown(candidate)
        breakdown.score  # in [0, 1]
    """

    def breakdown(self, candidate: Candidate) -> ScoreBreakdown:
        count = candidate.count
        velocity = checkin_velocity(count, candidate.duration_hours)
        return ScoreBreakdown(
            spatial=spatial_subscore(candidate.spatial_variance),
            temporal=temporal_subscore(velocity),
            staff=staff_subscore(count, candidate.distinct_staff_count),
            volume=volume_subscore(count),
            checkin_velocity=velocity,
            location_variance=candidate.spatial_variance,
        )

    def score(self, candidate: Candidate) -> float:
        return self.breakdown(candidate).score
