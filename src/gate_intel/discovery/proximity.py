"""Proximity and merge detection between scored candidates.

Classifies candidate pairs by centroid distance:
- distance <= merge threshold          -> MERGE
- distance <= virtual-gate threshold   -> CREATE_VIRTUAL_GATE
- otherwise                            -> no suggestion

SEPARATE is never emitted spontaneously; only `audit_pair` returns it.

Every suggestion also carries two explanatory overlap factors: how much the
two tags' observed time spans coincide, and how many staff they share. Two
tags scanned at the same time by the same people are usually one gate with
two labels. The factors never change the recommended action.

Scaling boundary: `evaluate` is a flat O(n) scan per changed candidate and
`detect_all` is O(n²). Both are fine for the tens to low hundreds of tags an
event carries. Past that, put a per-event grid hash or k-d tree behind the
same `evaluate` contract.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterable

from gate_intel.config import DiscoveryConfig
from gate_intel.errors import UnscoredCandidateAccessError
from gate_intel.geometry import Position, haversine_m
from gate_intel.models.candidate import Candidate
from gate_intel.models.enums import MergeAction
from gate_intel.models.merge import MergeSuggestion

logger = logging.getLogger(__name__)


def require_scored(candidate: Candidate, config: DiscoveryConfig) -> float:
    """Return the candidate's score, or fail if it has none.

    Raises:
        UnscoredCandidateAccessError: If the candidate is below the
            eligibility threshold or has not been scored.
    """
    required = config.min_events_for_candidate
    if candidate.count < required or candidate.confidence_score is None:
        raise UnscoredCandidateAccessError(candidate.id, candidate.count, required)
    return candidate.confidence_score


def time_overlap(a: Candidate, b: Candidate) -> float:
    """Intersection over union of the two observed time spans."""
    if (
        a.first_observed_at is None
        or a.last_observed_at is None
        or b.first_observed_at is None
        or b.last_observed_at is None
    ):
        return 0.0

    start = max(a.first_observed_at, b.first_observed_at)
    end = min(a.last_observed_at, b.last_observed_at)
    if end < start:
        return 0.0

    union = max(a.last_observed_at, b.last_observed_at) - min(
        a.first_observed_at, b.first_observed_at
    )
    if not union:
        # Both spans are the same instant
        return 1.0
    return (end - start) / union


def staff_overlap(a: Candidate, b: Candidate) -> float:
    """Jaccard similarity of the two staff sets."""
    union = a.staff_ids | b.staff_ids
    if not union:
        return 0.0
    return len(a.staff_ids & b.staff_ids) / len(union)


class MergeDetector:
    """Pairwise proximity classification for one event's candidates.

    Usage:
        detector = MergeDetector(config)
        suggestions = detector.evaluate(changed, others)
    """

    def __init__(self, config: DiscoveryConfig) -> None:
        self._config = config

    def classify(self, distance_meters: float) -> MergeAction | None:
        if distance_meters <= self._config.merge_threshold_meters:
            return MergeAction.MERGE
        if distance_meters <= self._config.virtual_gate_threshold_meters:
            return MergeAction.CREATE_VIRTUAL_GATE
        return None

    def evaluate(
        self,
        changed: Candidate,
        others: Iterable[Candidate],
    ) -> list[MergeSuggestion]:
        """Compare one changed candidate against the rest of its event.

        Others from a different event, unscored others and the candidate
        itself are skipped.

        Args:
            changed: The candidate whose centroid or eligibility changed.
            others: Candidates to compare against.

        Returns:
            Deduplicated suggestions, one per unordered pair.

        Raises:
            UnscoredCandidateAccessError: If `changed` has no score.
        """
        changed_score, origin = self._scored_centroid(changed)

        by_pair: dict[tuple, MergeSuggestion] = {}
        for other in others:
            if other.id == changed.id or other.event_id != changed.event_id:
                continue
            other_score = other.confidence_score
            other_centroid = other.centroid
            if (
                other_score is None
                or other_centroid is None
                or other.count < self._config.min_events_for_candidate
            ):
                continue

            distance = haversine_m(origin, other_centroid)
            action = self.classify(distance)
            if action is None:
                continue

            suggestion = self._suggest(
                changed, other, distance, action, min(changed_score, other_score)
            )
            by_pair[suggestion.pair] = suggestion

        return list(by_pair.values())

    def detect_all(self, candidates: Iterable[Candidate]) -> list[MergeSuggestion]:
        """Full pairwise scan over every scored candidate.

        The batch equivalent of calling `evaluate` for each candidate.
        """
        scored = [
            c
            for c in candidates
            if c.is_scored and c.count >= self._config.min_events_for_candidate
        ]
        scored.sort(key=lambda c: c.id)

        by_pair: dict[tuple, MergeSuggestion] = {}
        for i, candidate in enumerate(scored):
            for suggestion in self.evaluate(candidate, scored[i + 1 :]):
                by_pair[suggestion.pair] = suggestion
        return list(by_pair.values())

    def refresh(self, suggestion: MergeSuggestion, a: Candidate, b: Candidate) -> MergeSuggestion:
        """Bring a suggestion's confidence and overlaps up to date.

        Distance and action are kept; use after a fold that rescored one of
        the pair without moving its centroid.

        Raises:
            UnscoredCandidateAccessError: If either candidate has no score.
        """
        return dataclasses.replace(
            suggestion,
            confidence=min(require_scored(a, self._config), require_scored(b, self._config)),
            time_overlap=time_overlap(a, b),
            staff_overlap=staff_overlap(a, b),
        )

    def audit_pair(self, a: Candidate, b: Candidate) -> MergeSuggestion:
        """Explicitly classify one pair, reporting SEPARATE beyond both bands.

        Raises:
            UnscoredCandidateAccessError: If either candidate has no score.
            ValueError: If the candidates belong to different events or are
                the same candidate.
        """
        if a.event_id != b.event_id:
            raise ValueError(f"Cannot compare candidates across events: {a.id} vs {b.id}")
        if a.id == b.id:
            raise ValueError(f"Cannot compare a candidate with itself: {a.id}")

        score_a, centroid_a = self._scored_centroid(a)
        score_b, centroid_b = self._scored_centroid(b)

        distance = haversine_m(centroid_a, centroid_b)
        action = self.classify(distance) or MergeAction.SEPARATE

        logger.debug(
            "Audit %s vs %s: %.2fm -> %s", a.declared_tag, b.declared_tag, distance, action.value
        )
        return self._suggest(a, b, distance, action, min(score_a, score_b))

    def _scored_centroid(self, candidate: Candidate) -> tuple[float, Position]:
        score = require_scored(candidate, self._config)
        centroid = candidate.centroid
        if centroid is None:
            raise UnscoredCandidateAccessError(
                candidate.id, candidate.count, self._config.min_events_for_candidate
            )
        return score, centroid

    def _suggest(
        self,
        a: Candidate,
        b: Candidate,
        distance: float,
        action: MergeAction,
        confidence: float,
    ) -> MergeSuggestion:
        return MergeSuggestion.for_pair(
            a.id,
            b.id,
            distance_meters=distance,
            recommended_action=action,
            confidence=confidence,
            time_overlap=time_overlap(a, b),
            staff_overlap=staff_overlap(a, b),
        )
