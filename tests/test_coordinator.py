"""End-to-end tests for the per-event GateDiscoveryEngine."""

from __future__ import annotations

import dataclasses
import random

import pytest

from conftest import BASE_POSITION, EVENT_ID, MakeEvent, MakeStream, offset
from gate_intel.config import DiscoveryConfig
from gate_intel.discovery.coordinator import GateDiscoveryEngine
from gate_intel.errors import InvalidEventError
from gate_intel.models import Disposition, MergeAction, ScanEvent


@pytest.fixture
def engine(config: DiscoveryConfig) -> GateDiscoveryEngine:
    return GateDiscoveryEngine(EVENT_ID, config)


def apply_all(engine: GateDiscoveryEngine, events: list[ScanEvent]) -> None:
    for event in events:
        engine.apply(event)


def interleave(*streams: list[ScanEvent]) -> list[ScanEvent]:
    merged: list[ScanEvent] = []
    for group in zip(*streams):
        merged.extend(group)
    return merged


class TestScenarios:
    def test_single_tight_cluster_needs_review(
        self, engine: GateDiscoveryEngine, make_stream: MakeStream
    ) -> None:
        """10 scans at one spot over two hours by three staff."""
        apply_all(engine, make_stream(tag="g1", count=10, span_minutes=120, staff=3))

        candidate = engine.candidate((EVENT_ID, "g1"))

        assert candidate is not None
        assert candidate.count == 10
        assert candidate.spatial_variance == pytest.approx(0.0, abs=1e-18)
        assert candidate.confidence_score == pytest.approx(0.7467, abs=1e-4)
        assert candidate.disposition == Disposition.MANUAL_REVIEW
        assert candidate.score_details["temporal"] == 0.8
        assert engine.merge_suggestions() == []

    def test_two_tags_at_one_gate_merge(
        self, engine: GateDiscoveryEngine, make_stream: MakeStream
    ) -> None:
        """Two tags 8m apart, scanned alternately within a minute."""
        a = make_stream(tag="g1", count=6)
        b = make_stream(tag="g2", count=6, position=offset(BASE_POSITION, east_m=8.0))
        apply_all(engine, interleave(a, b))

        suggestions = engine.merge_suggestions()
        g1 = engine.candidate((EVENT_ID, "g1"))
        g2 = engine.candidate((EVENT_ID, "g2"))

        assert len(suggestions) == 1
        assert suggestions[0].recommended_action == MergeAction.MERGE
        assert suggestions[0].distance_meters == pytest.approx(8.0, rel=1e-3)
        assert g1 is not None and g2 is not None
        assert g1.disposition == g2.disposition == Disposition.MERGE_WITH_NEARBY
        assert g1.merge_target_id == g2.id
        assert g2.merge_target_id == g1.id
        assert suggestions[0].confidence == min(g1.confidence_score, g2.confidence_score)  # type: ignore[type-var]

    def test_thin_tag_stays_invisible(
        self, engine: GateDiscoveryEngine, make_stream: MakeStream
    ) -> None:
        """Three scans next to a scored tag: no score, no disposition, no suggestion."""
        apply_all(engine, make_stream(tag="g1", count=8))
        apply_all(engine, make_stream(tag="g3", count=3, position=offset(BASE_POSITION, east_m=3.0)))

        thin = engine.candidate((EVENT_ID, "g3"))

        assert thin is not None
        assert thin.count == 3
        assert thin.confidence_score is None
        assert thin.disposition is None
        assert engine.merge_suggestions() == []

    def test_virtual_gate_downgrades_both(
        self, engine: GateDiscoveryEngine, make_stream: MakeStream
    ) -> None:
        apply_all(engine, make_stream(tag="g1", count=6))
        apply_all(engine, make_stream(tag="g2", count=6, position=offset(BASE_POSITION, north_m=18.0)))

        (suggestion,) = engine.merge_suggestions()

        assert suggestion.recommended_action == MergeAction.CREATE_VIRTUAL_GATE
        for snapshot in engine.candidates():
            assert snapshot.disposition != Disposition.AUTO_APPROVE
            assert snapshot.merge_target_id is None
            assert snapshot.decision_reason is not None
            assert snapshot.decision_reason.startswith("Virtual gate")


class TestEventHandling:
    def test_unconfirmed_is_counted_not_applied(
        self, engine: GateDiscoveryEngine, make_event: MakeEvent
    ) -> None:
        result = engine.apply(make_event(confirmed=False))

        assert result.candidate_id is None
        assert result.candidates == ()
        assert engine.candidates() == []
        assert engine.stats.ignored_unconfirmed == 1
        assert engine.stats.applied == 0

    def test_invalid_event_rejected_loudly(
        self, engine: GateDiscoveryEngine, make_event: MakeEvent
    ) -> None:
        engine.apply(make_event())

        with pytest.raises(InvalidEventError) as exc_info:
            engine.apply(make_event(position=(0.0, 0.0)))

        assert exc_info.value.fields == ("position",)
        assert engine.stats.rejected == 1
        assert engine.candidate((EVENT_ID, "north-gate")).count == 1  # type: ignore[union-attr]

    def test_wrong_event_rejected(
        self, engine: GateDiscoveryEngine, make_event: MakeEvent
    ) -> None:
        with pytest.raises(InvalidEventError, match="routed to worker"):
            engine.apply(make_event(event_id="evt-2"))

        assert engine.stats.rejected == 1
        assert engine.candidates() == []

    def test_update_result_reports_affected_pair(
        self, engine: GateDiscoveryEngine, make_stream: MakeStream, make_event: MakeEvent
    ) -> None:
        apply_all(engine, make_stream(tag="g1", count=5))
        near = offset(BASE_POSITION, east_m=5.0)
        apply_all(engine, make_stream(tag="g2", count=4, position=near))

        result = engine.apply(make_event(tag="g2", position=near, minutes=2))

        g1, g2 = (EVENT_ID, "g1"), (EVENT_ID, "g2")
        assert result.changed is True
        assert result.candidate_id == g2
        assert result.affected_ids == {g1, g2}
        assert [s.id for s in result.candidates] == [g1, g2]
        assert len(result.suggestions) == 1

    def test_unchanged_fold_skips_detection(
        self, engine: GateDiscoveryEngine, make_stream: MakeStream, make_event: MakeEvent
    ) -> None:
        apply_all(engine, make_stream(tag="g1", count=6))

        result = engine.apply(make_event(tag="g1", minutes=0.5))

        assert result.changed is False
        assert result.affected_ids == {(EVENT_ID, "g1")}


class TestOrderIndependence:
    @pytest.fixture
    def events(self, make_stream: MakeStream) -> list[ScanEvent]:
        return (
            make_stream(tag="g1", count=12, span_minutes=30, staff=2)
            + make_stream(tag="g2", count=7, position=offset(BASE_POSITION, east_m=7.0))
            + make_stream(tag="g3", count=9, position=offset(BASE_POSITION, north_m=20.0), staff=3)
            + make_stream(tag="g4", count=4, position=offset(BASE_POSITION, north_m=900.0))
        )

    @staticmethod
    def summary(engine: GateDiscoveryEngine) -> dict:
        return {
            "candidates": {
                s.id: (s.count, s.distinct_staff_count, s.disposition, s.merge_target_id)
                for s in engine.candidates()
            },
            "scores": {
                s.id: s.confidence_score
                for s in engine.candidates()
                if s.confidence_score is not None
            },
            "suggestions": {s.pair: s.recommended_action for s in engine.merge_suggestions()},
        }

    def test_shuffled_streams_agree(self, config: DiscoveryConfig, events: list[ScanEvent]) -> None:
        in_order = GateDiscoveryEngine(EVENT_ID, config)
        apply_all(in_order, events)

        shuffled_events = list(events)
        random.Random(7).shuffle(shuffled_events)
        shuffled = GateDiscoveryEngine(EVENT_ID, config)
        apply_all(shuffled, shuffled_events)

        expected, actual = self.summary(in_order), self.summary(shuffled)
        assert actual["candidates"] == expected["candidates"]
        assert actual["suggestions"] == expected["suggestions"]
        assert actual["scores"] == pytest.approx(expected["scores"])

    def test_rebuild_matches_incremental(
        self, config: DiscoveryConfig, events: list[ScanEvent]
    ) -> None:
        incremental = GateDiscoveryEngine(EVENT_ID, config)
        apply_all(incremental, events)

        rebuilt = GateDiscoveryEngine.rebuild(EVENT_ID, config, events)

        expected, actual = self.summary(incremental), self.summary(rebuilt)
        assert actual["candidates"] == expected["candidates"]
        assert actual["suggestions"] == expected["suggestions"]
        assert actual["scores"] == pytest.approx(expected["scores"])
        assert rebuilt.stats.applied == len(events)

    def test_restarted_matches_original(
        self, config: DiscoveryConfig, events: list[ScanEvent]
    ) -> None:
        original = GateDiscoveryEngine(EVENT_ID, config)
        apply_all(original, events)

        restarted = original.restarted()

        expected, actual = self.summary(original), self.summary(restarted)
        assert actual["candidates"] == expected["candidates"]
        assert actual["suggestions"] == expected["suggestions"]
        assert actual["scores"] == pytest.approx(expected["scores"])
        assert restarted.stats == original.stats
        assert restarted.candidate((EVENT_ID, "g1")).first_observed_at == (  # type: ignore[union-attr]
            original.candidate((EVENT_ID, "g1")).first_observed_at  # type: ignore[union-attr]
        )

    def test_restarted_applies_new_thresholds(
        self, config: DiscoveryConfig, events: list[ScanEvent]
    ) -> None:
        original = GateDiscoveryEngine(EVENT_ID, config)
        apply_all(original, events)
        assert original.candidate((EVENT_ID, "g4")).confidence_score is None  # type: ignore[union-attr]

        restarted = original.restarted(DiscoveryConfig(min_events_for_candidate=3))

        assert restarted.config.min_events_for_candidate == 3
        assert restarted.candidate((EVENT_ID, "g4")).confidence_score is not None  # type: ignore[union-attr]
        assert restarted.candidate((EVENT_ID, "g4")).count == 4  # type: ignore[union-attr]


class TestSuggestionLifecycle:
    def test_drift_withdraws_suggestion(
        self, engine: GateDiscoveryEngine, make_stream: MakeStream
    ) -> None:
        apply_all(engine, make_stream(tag="g1", count=5))
        apply_all(engine, make_stream(tag="g2", count=5, position=offset(BASE_POSITION, east_m=8.0)))
        assert len(engine.merge_suggestions()) == 1

        # Most of g2's scans turn out to be at a different entrance
        apply_all(
            engine,
            make_stream(tag="g2", count=15, position=offset(BASE_POSITION, north_m=300.0)),
        )

        g1 = engine.candidate((EVENT_ID, "g1"))
        assert engine.merge_suggestions() == []
        assert g1 is not None
        assert g1.disposition != Disposition.MERGE_WITH_NEARBY
        assert g1.merge_target_id is None

    def test_confidence_tracks_rescoring(
        self, engine: GateDiscoveryEngine, make_stream: MakeStream
    ) -> None:
        near = offset(BASE_POSITION, east_m=6.0)
        apply_all(engine, make_stream(tag="g1", count=5))
        apply_all(engine, make_stream(tag="g2", count=30, position=near, span_minutes=5))

        (suggestion,) = engine.merge_suggestions()
        scores = [s.confidence_score for s in engine.candidates()]

        assert suggestion.confidence == min(scores)  # type: ignore[type-var]

    def test_recompute_all_is_idempotent(
        self, engine: GateDiscoveryEngine, make_stream: MakeStream
    ) -> None:
        apply_all(engine, make_stream(tag="g1", count=6))
        apply_all(engine, make_stream(tag="g2", count=6, position=offset(BASE_POSITION, east_m=4.0)))
        before = (engine.candidates(), engine.merge_suggestions())

        engine.recompute_all()

        assert (engine.candidates(), engine.merge_suggestions()) == before


class TestQueries:
    def test_audit_reports_separate(
        self, engine: GateDiscoveryEngine, make_stream: MakeStream
    ) -> None:
        apply_all(engine, make_stream(tag="g1", count=5))
        apply_all(engine, make_stream(tag="g2", count=5, position=offset(BASE_POSITION, north_m=250.0)))

        result = engine.audit("g2", "g1")

        assert result.recommended_action == MergeAction.SEPARATE
        assert result.primary_id == (EVENT_ID, "g1")
        assert engine.merge_suggestions() == []

    def test_audit_unknown_tag(self, engine: GateDiscoveryEngine, make_stream: MakeStream) -> None:
        apply_all(engine, make_stream(tag="g1", count=5))

        with pytest.raises(KeyError, match="missing"):
            engine.audit("g1", "missing")

    def test_snapshots_are_detached(
        self, engine: GateDiscoveryEngine, make_stream: MakeStream, make_event: MakeEvent
    ) -> None:
        apply_all(engine, make_stream(tag="g1", count=5))
        snapshot = engine.candidate((EVENT_ID, "g1"))
        assert snapshot is not None

        engine.apply(make_event(tag="g1", minutes=3))

        assert snapshot.count == 5
        with pytest.raises(dataclasses.FrozenInstanceError):
            snapshot.count = 99  # type: ignore[misc]

    def test_snapshot_record(self, engine: GateDiscoveryEngine, make_stream: MakeStream) -> None:
        apply_all(engine, make_stream(tag="g1", count=5))

        record = engine.candidates()[0].to_record()

        assert record["declared_tag"] == "g1"
        assert record["centroid_lat"] == pytest.approx(BASE_POSITION[0])
        assert record["disposition"] in {d.value for d in Disposition}
        assert record["merge_target_tag"] is None
