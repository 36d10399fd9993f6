"""Data model for gate discovery."""

from gate_intel.models.candidate import (
    Candidate,
    CandidateId,
    CandidateSnapshot,
    format_candidate_id,
)
from gate_intel.models.enums import Disposition, MergeAction
from gate_intel.models.merge import MergeSuggestion
from gate_intel.models.scan_event import ScanEvent, ValidScan, validate_scan_event

__all__ = [
    "Candidate",
    "CandidateId",
    "CandidateSnapshot",
    "Disposition",
    "MergeAction",
    "MergeSuggestion",
    "ScanEvent",
    "ValidScan",
    "format_candidate_id",
    "validate_scan_event",
]
