"""Incremental update coordinator for one event's gate discovery.

Pipeline per scan event:
1. Aggregator folds the scan into its tag's statistics.
2. An eligible candidate is rescored (cheap, every time).
3. If the aggregator reported a material change, the candidate is compared
   against its scored neighbours and its merge suggestions are replaced.
4. The candidate and every partner whose suggestion set changed are
   re-decided.

All four steps finish before `apply` returns, so a reader between events
always sees a consistent state. Nothing here is thread-safe: one engine
belongs to one event's worker.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from gate_intel.config import DiscoveryConfig
from gate_intel.discovery.aggregator import CandidateAggregator
from gate_intel.discovery.decision import DecisionEngine
from gate_intel.discovery.proximity import MergeDetector
from gate_intel.discovery.report import QualityReport, build_quality_report
from gate_intel.discovery.scoring import ConfidenceScorer
from gate_intel.errors import InvalidEventError
from gate_intel.models.candidate import (
    Candidate,
    CandidateId,
    CandidateSnapshot,
    format_candidate_id,
)
from gate_intel.models.merge import MergeSuggestion
from gate_intel.models.scan_event import ScanEvent

logger = logging.getLogger(__name__)

Pair = tuple[CandidateId, CandidateId]


@dataclass(frozen=True)
class UpdateResult:
    """What one applied scan event changed."""

    candidate_id: CandidateId | None
    """Candidate the event folded into (None when the event was ignored)."""

    changed: bool
    """True when merge detection was rerun for the candidate."""

    candidates: tuple[CandidateSnapshot, ...] = ()
    """Snapshots of every candidate whose record should be upserted."""

    suggestions: tuple[MergeSuggestion, ...] = ()
    """Current suggestions touching `affected_ids` (replacement set)."""

    affected_ids: frozenset[CandidateId] = frozenset()


@dataclass
class EngineStats:
    """Event counters for operators."""

    applied: int = 0
    ignored_unconfirmed: int = 0
    rejected: int = 0


@dataclass
class _Update:
    affected: set[CandidateId] = field(default_factory=set)  # pyright: ignore[reportUnknownVariableType]
    changed: bool = False


class GateDiscoveryEngine:
    """Gate discovery state and pipeline for a single event.

    Usage:
        engine = GateDiscoveryEngine("event-1", DiscoveryConfig())
        result = engine.apply(scan_event)
        for snapshot in result.candidates:
            ...
    """

    def __init__(self, event_id: str, config: DiscoveryConfig) -> None:
        self.event_id = event_id
        self.config = config
        self.stats = EngineStats()

        self._aggregator = CandidateAggregator(config)
        self._scorer = ConfidenceScorer()
        self._detector = MergeDetector(config)
        self._decider = DecisionEngine(config)
        self._suggestions: dict[Pair, MergeSuggestion] = {}

    # ── Queries (return copies, never live state) ───────────────────────────

    def candidates(self) -> list[CandidateSnapshot]:
        return [c.snapshot() for c in sorted(self._aggregator, key=lambda c: c.id)]

    def candidate(self, candidate_id: CandidateId) -> CandidateSnapshot | None:
        live = self._aggregator.get(candidate_id)
        return live.snapshot() if live else None

    def merge_suggestions(self) -> list[MergeSuggestion]:
        return [self._suggestions[p] for p in sorted(self._suggestions)]

    def audit(self, tag_a: str, tag_b: str) -> MergeSuggestion:
        """Explicitly classify two tags, including SEPARATE.

        Raises:
            KeyError: If either tag has no candidate.
            UnscoredCandidateAccessError: If either candidate is unscored.
        """
        a = self._aggregator.get((self.event_id, tag_a))
        b = self._aggregator.get((self.event_id, tag_b))
        if a is None or b is None:
            missing = tag_a if a is None else tag_b
            raise KeyError(f"No candidate for tag {missing!r} in event {self.event_id}")
        return self._detector.audit_pair(a, b)

    def quality_report(self) -> QualityReport:
        """Event-level summary of discovery quality."""
        return build_quality_report(
            self.event_id,
            confirmed_scans=self.stats.applied,
            rejected_scans=self.stats.rejected,
            ignored_unconfirmed=self.stats.ignored_unconfirmed,
            candidates=self._aggregator,
            suggestions=self._suggestions.values(),
        )

    # ── Incremental path ─────────────────────────────────────────────────────

    def apply(self, event: ScanEvent) -> UpdateResult:
        """Apply one scan event and run the affected part of the pipeline.

        Raises:
            InvalidEventError: If the event is malformed or belongs to a
                different event. State is left untouched.
            UnscoredCandidateAccessError: On an internal invariant violation.
        """
        if not event.confirmed:
            self.stats.ignored_unconfirmed += 1
            return UpdateResult(candidate_id=None, changed=False)

        if event.event_id is not None and event.event_id != self.event_id:
            self.stats.rejected += 1
            raise InvalidEventError(
                f"Scan for event {event.event_id} routed to worker for {self.event_id}",
                fields=["event_id"],
            )

        try:
            candidate_id, changed = self._aggregator.apply(event)
        except InvalidEventError:
            self.stats.rejected += 1
            raise

        if candidate_id is None:
            return UpdateResult(candidate_id=None, changed=False)
        self.stats.applied += 1
        candidate = self._aggregator[candidate_id]

        update = _Update(affected={candidate_id})
        if self._is_eligible(candidate):
            self._rescore(candidate)
            if changed:
                update.changed = True
                update.affected |= self._replace_suggestions(candidate)
            else:
                self._refresh_confidence(candidate)
                update.affected |= self._partners_of(candidate_id)

        self._decide_all(update.affected)
        return self._result(candidate_id, update)

    # ── Batch path ───────────────────────────────────────────────────────────

    @classmethod
    def rebuild(
        cls,
        event_id: str,
        config: DiscoveryConfig,
        events: Iterable[ScanEvent],
    ) -> GateDiscoveryEngine:
        """Build an engine from full history in one pass.

        Equivalent to applying every event in order. Used by batch tools that
        hold a whole scan file, such as the audit command.
        """
        engine = cls(event_id, config)
        history = [e for e in events if e.event_id == event_id]
        engine._aggregator.load(history)
        engine.stats.applied = sum(1 for e in history if e.confirmed)
        engine.recompute_all()
        return engine

    def restarted(self, config: DiscoveryConfig | None = None) -> GateDiscoveryEngine:
        """Fresh engine over this engine's folded statistics.

        Every derived value (scores, suggestions, dispositions) is discarded
        and recomputed, optionally under new thresholds. Counters carry over.
        Used to recover a worker or apply a configuration change without
        replaying its scans.
        """
        engine = type(self)(self.event_id, config or self.config)
        engine._aggregator.restore(self._aggregator)
        engine.stats = self.stats
        engine.recompute_all()
        return engine

    def recompute_all(self) -> None:
        """Rescore, re-detect and re-decide every candidate from scratch."""
        for candidate in self._aggregator:
            if self._is_eligible(candidate):
                self._rescore(candidate)
            else:
                self._clear_derived(candidate)

        self._suggestions = {s.pair: s for s in self._detector.detect_all(self._aggregator)}
        self._decide_all({c.id for c in self._aggregator})

    # ── Internals ────────────────────────────────────────────────────────────

    def _is_eligible(self, candidate: Candidate) -> bool:
        return candidate.count >= self.config.min_events_for_candidate

    def _rescore(self, candidate: Candidate) -> None:
        breakdown = self._scorer.breakdown(candidate)
        candidate.confidence_score = breakdown.score
        candidate.score_details = breakdown.as_dict()
        logger.debug(
            "Scored %s: %.3f %s",
            format_candidate_id(candidate.id),
            breakdown.score,
            candidate.score_details,
        )

    def _clear_derived(self, candidate: Candidate) -> None:
        candidate.confidence_score = None
        candidate.score_details = {}
        candidate.disposition = None
        candidate.merge_target_id = None
        candidate.decision_reason = None

    def _partners_of(self, candidate_id: CandidateId) -> set[CandidateId]:
        return {
            s.partner_of(candidate_id)
            for s in self._suggestions.values()
            if s.involves(candidate_id)
        }

    def _replace_suggestions(self, candidate: Candidate) -> set[CandidateId]:
        """Swap the candidate's suggestions for a fresh evaluation.

        Returns:
            Partners from both the old and new sets; their decisions may move.
        """
        old_pairs = [p for p, s in self._suggestions.items() if s.involves(candidate.id)]
        old_partners = {self._suggestions[p].partner_of(candidate.id) for p in old_pairs}
        for pair in old_pairs:
            del self._suggestions[pair]

        fresh = self._detector.evaluate(candidate, self._aggregator)
        for suggestion in fresh:
            if suggestion.pair not in old_pairs:
                logger.info(
                    "New %s suggestion: %s <-> %s (%.1fm)",
                    suggestion.recommended_action.value,
                    suggestion.primary_id[1],
                    suggestion.candidate_id[1],
                    suggestion.distance_meters,
                )
            self._suggestions[suggestion.pair] = suggestion

        new_partners = {s.partner_of(candidate.id) for s in fresh}
        for gone in old_partners - new_partners:
            logger.info("Suggestion withdrawn: %s <-> %s", candidate.declared_tag, gone[1])
        return old_partners | new_partners

    def _refresh_confidence(self, candidate: Candidate) -> None:
        """Keep pair confidence and overlaps current after a rescore without re-detection."""
        for pair, suggestion in list(self._suggestions.items()):
            if not suggestion.involves(candidate.id):
                continue
            partner = self._aggregator.get(suggestion.partner_of(candidate.id))
            if partner is None or not partner.is_scored:
                continue
            self._suggestions[pair] = self._detector.refresh(suggestion, candidate, partner)

    def _decide_all(self, candidate_ids: Iterable[CandidateId]) -> None:
        for candidate_id in candidate_ids:
            candidate = self._aggregator.get(candidate_id)
            if candidate is None or not self._is_eligible(candidate):
                continue

            decision = self._decider.decide(candidate, self._suggestions.values())
            if decision.disposition != candidate.disposition:
                logger.info(
                    "Disposition %s: %s -> %s (score=%.3f)",
                    format_candidate_id(candidate_id),
                    candidate.disposition.value if candidate.disposition else None,
                    decision.disposition.value,
                    candidate.confidence_score,
                )
            candidate.disposition = decision.disposition
            candidate.merge_target_id = decision.merge_target_id
            candidate.decision_reason = decision.reason

    def _result(self, candidate_id: CandidateId, update: _Update) -> UpdateResult:
        snapshots = []
        for affected_id in sorted(update.affected):
            live = self._aggregator.get(affected_id)
            if live is not None:
                snapshots.append(live.snapshot())

        suggestions = sorted(
            (
                s
                for s in self._suggestions.values()
                if s.primary_id in update.affected or s.candidate_id in update.affected
            ),
            key=lambda s: s.pair,
        )
        return UpdateResult(
            candidate_id=candidate_id,
            changed=update.changed,
            candidates=tuple(snapshots),
            suggestions=tuple(suggestions),
            affected_ids=frozenset(update.affected),
        )
