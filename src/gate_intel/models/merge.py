"""MergeSuggestion derived record."""

from __future__ import annotations

from dataclasses import dataclass

from gate_intel.models.candidate import CandidateId
from gate_intel.models.enums import MergeAction

# Relative weight of the explanatory overlap factors
TIME_OVERLAP_WEIGHT = 0.6
STAFF_OVERLAP_WEIGHT = 0.4


@dataclass(frozen=True)
class MergeSuggestion:
    """A recommendation about two candidates that may be the same gate.

    Always stored with primary_id < candidate_id so an unordered pair has
    exactly one key. Build through `for_pair` to get the ordering for free.
    """

    primary_id: CandidateId
    candidate_id: CandidateId
    distance_meters: float
    recommended_action: MergeAction
    confidence: float
    """Minimum of the two candidates' confidence scores."""

    time_overlap: float = 0.0
    """Shared share of the two observed time spans, in [0, 1]."""

    staff_overlap: float = 0.0
    """Shared share of the two staff sets, in [0, 1]."""

    @classmethod
    def for_pair(
        cls,
        a: CandidateId,
        b: CandidateId,
        *,
        distance_meters: float,
        recommended_action: MergeAction,
        confidence: float,
        time_overlap: float = 0.0,
        staff_overlap: float = 0.0,
    ) -> MergeSuggestion:
        primary, other = (a, b) if a < b else (b, a)
        return cls(
            primary_id=primary,
            candidate_id=other,
            distance_meters=distance_meters,
            recommended_action=recommended_action,
            confidence=confidence,
            time_overlap=time_overlap,
            staff_overlap=staff_overlap,
        )

    @property
    def pair(self) -> tuple[CandidateId, CandidateId]:
        return (self.primary_id, self.candidate_id)

    @property
    def overlap_score(self) -> float:
        """How much the two tags look like one gate worked in parallel.

        Explanatory only; it never changes the recommended action.
        """
        return self.time_overlap * TIME_OVERLAP_WEIGHT + self.staff_overlap * STAFF_OVERLAP_WEIGHT

    def involves(self, candidate_id: CandidateId) -> bool:
        return candidate_id in (self.primary_id, self.candidate_id)

    def partner_of(self, candidate_id: CandidateId) -> CandidateId:
        """The other member of the pair."""
        if candidate_id == self.primary_id:
            return self.candidate_id
        if candidate_id == self.candidate_id:
            return self.primary_id
        raise KeyError(candidate_id)
