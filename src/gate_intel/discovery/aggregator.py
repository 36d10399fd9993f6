"""Candidate aggregation: fold confirmed scans into per-tag statistics.

Each (event_id, declared_tag) owns one Candidate. Folding is incremental
(Welford), so arrival order does not change the final centroid, variance or
count beyond floating-point rounding.

`apply` reports whether the fold changed the candidate enough for downstream
scoring and merge detection to rerun: a new candidate, a crossing of the
eligibility threshold, or centroid drift beyond the configured epsilon. Drift
is measured from the centroid at the last signalled change, so slow creep
eventually triggers too.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Iterator

from gate_intel.config import DiscoveryConfig
from gate_intel.geometry import fold_position, haversine_m, summarize_positions
from gate_intel.models.candidate import Candidate, CandidateId
from gate_intel.models.scan_event import ScanEvent, ValidScan, validate_scan_event

logger = logging.getLogger(__name__)


class CandidateAggregator:
    """Running per-tag statistics for one event.

    Usage:
        aggregator = CandidateAggregator(config)
        candidate_id, changed = aggregator.apply(event)
    """

    def __init__(self, config: DiscoveryConfig) -> None:
        self._config = config
        self._candidates: dict[CandidateId, Candidate] = {}

    def __len__(self) -> int:
        return len(self._candidates)

    def __iter__(self) -> Iterator[Candidate]:
        return iter(self._candidates.values())

    def __contains__(self, candidate_id: object) -> bool:
        return candidate_id in self._candidates

    def get(self, candidate_id: CandidateId) -> Candidate | None:
        return self._candidates.get(candidate_id)

    def __getitem__(self, candidate_id: CandidateId) -> Candidate:
        return self._candidates[candidate_id]

    def apply(self, event: ScanEvent) -> tuple[CandidateId | None, bool]:
        """Fold one scan event into its candidate.

        Unconfirmed events are filtered out before anything is touched.

        Args:
            event: The scan event.

        Returns:
            Tuple of (candidate_id, changed). candidate_id is None for an
            unconfirmed event, which never creates a candidate.

        Raises:
            InvalidEventError: If a confirmed event lacks a required field.
        """
        if not event.confirmed:
            return None, False

        scan = validate_scan_event(event)
        candidate_id = scan.candidate_id

        candidate = self._candidates.get(candidate_id)
        created = candidate is None
        if candidate is None:
            candidate = Candidate(event_id=scan.event_id, declared_tag=scan.declared_tag)
            self._candidates[candidate_id] = candidate

        previous_count = candidate.count
        candidate.moments = fold_position(candidate.moments, scan.position)

        if candidate.first_observed_at is None or scan.observed_at < candidate.first_observed_at:
            candidate.first_observed_at = scan.observed_at
        if candidate.last_observed_at is None or scan.observed_at > candidate.last_observed_at:
            candidate.last_observed_at = scan.observed_at

        candidate.staff_ids.add(scan.staff_id)

        threshold = self._config.min_events_for_candidate
        crossed = previous_count < threshold <= candidate.count
        moved = self._drifted(candidate)
        changed = created or crossed or moved

        if changed:
            candidate.anchor_centroid = candidate.centroid

        logger.debug(
            "Folded scan into %s:%s (count=%d, created=%s, crossed=%s, moved=%s)",
            candidate_id[0],
            candidate_id[1],
            candidate.count,
            created,
            crossed,
            moved,
        )
        return candidate_id, changed

    def _drifted(self, candidate: Candidate) -> bool:
        if candidate.anchor_centroid is None or candidate.centroid is None:
            return False
        drift = haversine_m(candidate.anchor_centroid, candidate.centroid)
        return drift > self._config.centroid_epsilon_meters

    def load(self, events: Iterable[ScanEvent]) -> list[CandidateId]:
        """Replace all state with a batch summary of the given events.

        Equivalent to applying every event in turn, but computed per tag in a
        single numpy pass.

        Returns:
            The candidate ids built.

        Raises:
            InvalidEventError: If a confirmed event lacks a required field.
        """
        grouped: dict[CandidateId, list[ValidScan]] = defaultdict(list)
        for event in events:
            if event.confirmed:
                scan = validate_scan_event(event)
                grouped[scan.candidate_id].append(scan)

        self._candidates = {}
        for candidate_id, scans in grouped.items():
            times = [s.observed_at for s in scans]
            moments = summarize_positions(s.position for s in scans)
            self._candidates[candidate_id] = Candidate(
                event_id=candidate_id[0],
                declared_tag=candidate_id[1],
                moments=moments,
                first_observed_at=min(times),
                last_observed_at=max(times),
                staff_ids={s.staff_id for s in scans},
                anchor_centroid=moments.centroid,
            )

        return list(self._candidates)

    def restore(self, candidates: Iterable[Candidate]) -> list[CandidateId]:
        """Replace all state with copies of already folded statistics.

        Only the fold (moments, time span, staff) is carried over; score,
        disposition and merge target are left for the caller to recompute.
        Used to restart a worker without replaying its scans.

        Returns:
            The candidate ids restored.
        """
        self._candidates = {}
        for source in candidates:
            self._candidates[source.id] = Candidate(
                event_id=source.event_id,
                declared_tag=source.declared_tag,
                moments=source.moments,
                first_observed_at=source.first_observed_at,
                last_observed_at=source.last_observed_at,
                staff_ids=set(source.staff_ids),
                anchor_centroid=source.centroid,
            )
        return list(self._candidates)
