"""Shared pytest fixtures for gate discovery tests."""

from __future__ import annotations

import math
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from gate_intel.config import DiscoveryConfig
from gate_intel.geometry import EARTH_RADIUS_M, Position, summarize_positions
from gate_intel.models import Candidate, ScanEvent

EVENT_ID = "evt-1"
BASE_POSITION: Position = (51.5007, -0.1246)
BASE_TIME = datetime(2026, 5, 1, 10, 0, tzinfo=timezone.utc)

METERS_PER_DEGREE_LAT = EARTH_RADIUS_M * math.pi / 180


def offset(position: Position, *, north_m: float = 0.0, east_m: float = 0.0) -> Position:
    """Shift a position by a distance in meters (small-distance approximation)."""
    lat, lon = position
    d_lat = north_m / METERS_PER_DEGREE_LAT
    d_lon = east_m / (METERS_PER_DEGREE_LAT * math.cos(math.radians(lat)))
    return (lat + d_lat, lon + d_lon)


# Type aliases for factory fixtures
MakeEvent = Callable[..., ScanEvent]
MakeStream = Callable[..., list[ScanEvent]]
MakeCandidate = Callable[..., Candidate]


@pytest.fixture
def config() -> DiscoveryConfig:
    """Default thresholds: 5 events, 10m / 25m bands, 0.95 / 0.75 scores."""
    return DiscoveryConfig()


@pytest.fixture
def make_event() -> MakeEvent:
    """Factory fixture for creating ScanEvent instances."""

    def _make(
        *,
        tag: str = "north-gate",
        position: Position | None = BASE_POSITION,
        minutes: float = 0.0,
        staff_id: str | None = "staff-1",
        confirmed: bool = True,
        event_id: str | None = EVENT_ID,
        **overrides: Any,
    ) -> ScanEvent:
        fields: dict[str, Any] = {
            "event_id": event_id,
            "declared_tag": tag,
            "position": position,
            "observed_at": BASE_TIME + timedelta(minutes=minutes),
            "staff_id": staff_id,
            "confirmed": confirmed,
        }
        fields.update(overrides)
        return ScanEvent(**fields)

    return _make


@pytest.fixture
def make_stream(make_event: MakeEvent) -> MakeStream:
    """Factory fixture for a run of confirmed scans at one tag.

    Scans are spread evenly over `span_minutes` and rotate through `staff`
    operators.
    """

    def _make(
        *,
        tag: str = "north-gate",
        count: int = 10,
        position: Position = BASE_POSITION,
        span_minutes: float = 1.0,
        staff: int = 1,
        event_id: str = EVENT_ID,
    ) -> list[ScanEvent]:
        step = span_minutes / (count - 1) if count > 1 else 0.0
        return [
            make_event(
                tag=tag,
                position=position,
                minutes=i * step,
                staff_id=f"staff-{i % staff}",
                event_id=event_id,
            )
            for i in range(count)
        ]

    return _make


@pytest.fixture
def make_candidate() -> MakeCandidate:
    """Factory fixture for scored Candidate instances at a fixed centroid."""

    def _make(
        *,
        tag: str = "north-gate",
        position: Position = BASE_POSITION,
        count: int = 10,
        score: float | None = 0.8,
        staff: int = 1,
        duration_hours: float = 1.0,
        event_id: str = EVENT_ID,
    ) -> Candidate:
        return Candidate(
            event_id=event_id,
            declared_tag=tag,
            moments=summarize_positions([position] * count),
            first_observed_at=BASE_TIME,
            last_observed_at=BASE_TIME + timedelta(hours=duration_hours),
            staff_ids={f"staff-{i}" for i in range(staff)},
            anchor_centroid=position,
            confidence_score=score,
        )

    return _make
