"""Decision engine: map a scored candidate to an approval disposition.

Decision order (first match wins):
1. Any MERGE relationship -> MERGE_WITH_NEARBY, targeting the nearest partner.
2. Any CREATE_VIRTUAL_GATE relationship -> the score-only disposition,
   downgraded one step on the approval ladder.
3. Score thresholds alone.

Proximity always outranks score: a spatially ambiguous candidate is never
auto-approved, however clean its own cluster is.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from gate_intel.config import DiscoveryConfig
from gate_intel.discovery.proximity import require_scored
from gate_intel.models.candidate import Candidate, CandidateId
from gate_intel.models.enums import Disposition, MergeAction
from gate_intel.models.merge import MergeSuggestion

logger = logging.getLogger(__name__)

# Below this a candidate is rejected outright
MANUAL_REVIEW_SCORE = 0.5

# Strongest first; a downgrade moves one step right
APPROVAL_LADDER: tuple[Disposition, ...] = (
    Disposition.AUTO_APPROVE,
    Disposition.RECOMMEND_APPROVE,
    Disposition.MANUAL_REVIEW,
    Disposition.REJECT,
)

REASONS: dict[Disposition, str] = {
    Disposition.MERGE_WITH_NEARBY: "Too close to existing gate - merge recommended",
    Disposition.AUTO_APPROVE: "High confidence - all metrics excellent",
    Disposition.RECOMMEND_APPROVE: "Good confidence - meets discovery threshold",
    Disposition.MANUAL_REVIEW: "Moderate confidence - requires manual review",
    Disposition.REJECT: "Low confidence - likely false positive",
}
VIRTUAL_GATE_REASON = "Virtual gate - close proximity detected"


@dataclass(frozen=True)
class Decision:
    """Outcome of deciding one candidate."""

    disposition: Disposition
    reason: str
    merge_target_id: CandidateId | None = None


def downgrade(disposition: Disposition) -> Disposition:
    """One step down the approval ladder; REJECT stays REJECT."""
    index = APPROVAL_LADDER.index(disposition)
    return APPROVAL_LADDER[min(index + 1, len(APPROVAL_LADDER) - 1)]


class DecisionEngine:
    """Applies configured thresholds and merge relationships.

    Usage:
        engine = DecisionEngine(config)
        decision = engine.decide(candidate, suggestions)
    """

    def __init__(self, config: DiscoveryConfig) -> None:
        self._config = config

    def disposition_for_score(self, score: float) -> Disposition:
        if score >= self._config.auto_approve_score:
            return Disposition.AUTO_APPROVE
        if score >= self._config.recommend_score:
            return Disposition.RECOMMEND_APPROVE
        if score >= MANUAL_REVIEW_SCORE:
            return Disposition.MANUAL_REVIEW
        return Disposition.REJECT

    def decide(
        self,
        candidate: Candidate,
        suggestions: Iterable[MergeSuggestion],
    ) -> Decision:
        """Decide a candidate's disposition.

        Suggestions not involving the candidate are ignored, so the caller
        may pass the whole event's suggestion set.

        Raises:
            UnscoredCandidateAccessError: If the candidate has no score.
        """
        score = require_scored(candidate, self._config)
        own = [s for s in suggestions if s.involves(candidate.id)]

        merges = [s for s in own if s.recommended_action == MergeAction.MERGE]
        if merges:
            # Nearest first, then the more confident pair, then id for determinism
            target = min(
                merges,
                key=lambda s: (s.distance_meters, -s.confidence, s.partner_of(candidate.id)),
            )
            return Decision(
                disposition=Disposition.MERGE_WITH_NEARBY,
                reason=REASONS[Disposition.MERGE_WITH_NEARBY],
                merge_target_id=target.partner_of(candidate.id),
            )

        by_score = self.disposition_for_score(score)

        if any(s.recommended_action == MergeAction.CREATE_VIRTUAL_GATE for s in own):
            downgraded = downgrade(by_score)
            return Decision(
                disposition=downgraded,
                reason=f"{VIRTUAL_GATE_REASON}; {REASONS[downgraded].lower()}",
            )

        return Decision(disposition=by_score, reason=REASONS[by_score])
