"""Error taxonomy for the gate discovery engine.

Three failure classes with different blast radii:
- InvalidEventError: one malformed scan event, dropped and reported.
- ConfigurationError: inconsistent thresholds, fatal at worker start.
- UnscoredCandidateAccessError: internal logic bug, fatal to one event's worker.
"""

from __future__ import annotations

from collections.abc import Sequence


class GateIntelError(Exception):
    """Base class for all engine errors."""


class InvalidEventError(GateIntelError):
    """A scan event is missing required fields or carries an impossible value."""

    def __init__(self, message: str, *, fields: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.fields = tuple(fields)


class ConfigurationError(GateIntelError):
    """Discovery thresholds are internally inconsistent."""


class UnscoredCandidateAccessError(GateIntelError):
    """Decision or merge logic was invoked on a candidate that has no score."""

    def __init__(self, candidate_id: tuple[str, str], count: int, required: int) -> None:
        super().__init__(
            f"Candidate {candidate_id[0]}:{candidate_id[1]} has {count} confirmed "
            f"events, needs {required} before it can be scored"
        )
        self.candidate_id = candidate_id
        self.count = count
        self.required = required
