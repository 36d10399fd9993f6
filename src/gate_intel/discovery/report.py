"""Event-level quality report for gate discovery.

Summarises one event's discovery state: how many scans were folded or
turned away, how candidates split across dispositions, how many merge and
virtual-gate relationships exist, and how spread out the scans are overall.
It ends with a single recommendation line for operators.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import asdict, dataclass
from typing import Any

from gate_intel.geometry import PositionMoments, combine_moments
from gate_intel.models.candidate import Candidate
from gate_intel.models.enums import Disposition, MergeAction
from gate_intel.models.merge import MergeSuggestion

# Confirmed scans below which discovery is not trusted at all
MIN_RELIABLE_SCANS = 50

# Event-wide location variance (degrees) above which gates are told apart
# physically, and below which every scan is effectively one spot
PHYSICAL_SPREAD_DEGREES = 0.0001
SINGLE_SPOT_DEGREES = 0.00001

# Dispositions that leave a candidate standing as its own gate
STANDING_DISPOSITIONS = frozenset(
    {
        Disposition.AUTO_APPROVE,
        Disposition.RECOMMEND_APPROVE,
        Disposition.MANUAL_REVIEW,
    }
)


@dataclass(frozen=True)
class QualityReport:
    """Point-in-time discovery quality for one event."""

    event_id: str
    total_scans: int
    confirmed_scans: int
    rejected_scans: int
    ignored_unconfirmed: int

    candidates: int
    scored_candidates: int
    dispositions: dict[str, int]
    """Scored candidates per disposition value."""

    physical_gates: int
    """Scored candidates standing as their own gate."""

    merge_suggestions: int
    virtual_gate_suggestions: int

    location_variance: float | None
    """Mean of the event-wide lat/lon standard deviations, degrees."""

    recommended_strategy: str
    """'physical', 'virtual' or 'insufficient_data'."""

    recommendation: str

    @property
    def can_enforce_gates(self) -> bool:
        return self.physical_gates >= 2 or self.virtual_gate_suggestions >= 1

    def as_dict(self) -> dict[str, Any]:
        record = asdict(self)
        record["can_enforce_gates"] = self.can_enforce_gates
        return record


def event_moments(candidates: Iterable[Candidate]) -> PositionMoments:
    """Combine every candidate's moments into the event-wide moments."""
    total = PositionMoments()
    for candidate in candidates:
        total = combine_moments(total, candidate.moments)
    return total


def recommend_strategy(physical_gates: int, virtual_gates: int, variance: float | None) -> str:
    if physical_gates >= 2 and variance is not None and variance > PHYSICAL_SPREAD_DEGREES:
        return "physical"
    if virtual_gates > 0:
        return "virtual"
    return "insufficient_data"


def recommend(
    confirmed_scans: int,
    physical_gates: int,
    virtual_gates: int,
    variance: float | None,
) -> str:
    """Operator-facing advice, first matching rule wins."""
    if confirmed_scans < MIN_RELIABLE_SCANS:
        return f"Need at least {MIN_RELIABLE_SCANS} confirmed scans for reliable gate discovery"
    if physical_gates == 0 and virtual_gates == 0:
        return "Unable to discover any gates - check data quality"
    if physical_gates == 1:
        return "Only one physical gate found - may need more data"
    if variance is not None and variance < SINGLE_SPOT_DEGREES:
        return "All scans at same location - virtual gates recommended"
    if physical_gates >= 2:
        return f"Gate discovery ready - {physical_gates} physical gates available"
    return f"Gate discovery ready - {virtual_gates} virtual gates available"


def build_quality_report(
    event_id: str,
    *,
    confirmed_scans: int,
    rejected_scans: int,
    ignored_unconfirmed: int,
    candidates: Iterable[Candidate],
    suggestions: Iterable[MergeSuggestion],
) -> QualityReport:
    """Build the report from engine state. Pure; nothing is mutated."""
    pool = list(candidates)
    scored = [c for c in pool if c.disposition is not None]
    dispositions = Counter(c.disposition.value for c in scored if c.disposition is not None)
    physical_gates = sum(1 for c in scored if c.disposition in STANDING_DISPOSITIONS)

    actions = Counter(s.recommended_action for s in suggestions)
    virtual_gates = actions[MergeAction.CREATE_VIRTUAL_GATE]

    moments = event_moments(pool)
    variance = (moments.sd_lat + moments.sd_lon) / 2 if moments.count > 1 else None

    return QualityReport(
        event_id=event_id,
        total_scans=confirmed_scans + rejected_scans + ignored_unconfirmed,
        confirmed_scans=confirmed_scans,
        rejected_scans=rejected_scans,
        ignored_unconfirmed=ignored_unconfirmed,
        candidates=len(pool),
        scored_candidates=len(scored),
        dispositions=dict(sorted(dispositions.items())),
        physical_gates=physical_gates,
        merge_suggestions=actions[MergeAction.MERGE],
        virtual_gate_suggestions=virtual_gates,
        location_variance=variance,
        recommended_strategy=recommend_strategy(physical_gates, virtual_gates, variance),
        recommendation=recommend(confirmed_scans, physical_gates, virtual_gates, variance),
    )
