"""ScanEvent input record."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from gate_intel.errors import InvalidEventError
from gate_intel.geometry import Position

# Readings this close to (0, 0) are a device reporting "no fix", not a gate
NULL_ISLAND_DEGREES = 1e-4


class ScanEvent(BaseModel):
    """One entry scan as produced by the ingestion service.

    Required fields are typed optional on purpose: the record is external, and
    a missing field must reach the engine so it can be rejected loudly rather
    than disappear in parsing. Use `validate_scan_event` before folding.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    event_id: str | None = Field(default=None, description="Parent event (partition key)")
    declared_tag: str | None = Field(
        default=None, description="Gate label assigned by the scanning device"
    )
    position: tuple[float, float] | None = Field(
        default=None, description="(latitude, longitude) in decimal degrees"
    )
    observed_at: datetime | None = None
    staff_id: str | None = None
    confirmed: bool = Field(
        default=False, description="True only for an actual admission"
    )

    @field_validator("observed_at")
    @classmethod
    def _assume_utc(cls, v: datetime | None) -> datetime | None:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @classmethod
    def parse(cls, data: str | bytes | dict[str, Any]) -> ScanEvent:
        """Parse a JSON document or mapping into a ScanEvent.

        Raises:
            InvalidEventError: If the record cannot be parsed at all.
        """
        try:
            if isinstance(data, dict):
                return cls.model_validate(data)
            return cls.model_validate_json(data)
        except ValidationError as e:
            fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
            raise InvalidEventError(f"Unparseable scan event: {e}", fields=fields) from e


@dataclass(frozen=True)
class ValidScan:
    """The fields of a ScanEvent that passed `validate_scan_event`."""

    event_id: str
    declared_tag: str
    position: Position
    observed_at: datetime
    staff_id: str

    @property
    def candidate_id(self) -> tuple[str, str]:
        return (self.event_id, self.declared_tag)


def validate_scan_event(event: ScanEvent) -> ValidScan:
    """Check that an event carries everything the engine folds.

    Returns:
        The event's required fields, no longer optional.

    Raises:
        InvalidEventError: If a required field is missing or the position is
            out of range or null island.
    """
    event_id = event.event_id
    tag = event.declared_tag
    position = event.position
    observed_at = event.observed_at
    staff_id = event.staff_id

    if not event_id or not tag or position is None or observed_at is None or not staff_id:
        missing = [
            name
            for name in ("event_id", "declared_tag", "position", "observed_at", "staff_id")
            if getattr(event, name) in (None, "")
        ]
        raise InvalidEventError(
            f"Scan event missing required field(s): {', '.join(missing)}",
            fields=missing,
        )

    lat, lon = position
    if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lon <= 180.0):
        raise InvalidEventError(f"Position out of range: ({lat}, {lon})", fields=["position"])
    if abs(lat) < NULL_ISLAND_DEGREES and abs(lon) < NULL_ISLAND_DEGREES:
        raise InvalidEventError("Position is null island (no GPS fix)", fields=["position"])

    return ValidScan(
        event_id=event_id,
        declared_tag=tag,
        position=(lat, lon),
        observed_at=observed_at,
        staff_id=staff_id,
    )
