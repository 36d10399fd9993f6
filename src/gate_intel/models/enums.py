"""Enumerations for the gate discovery data model."""

from enum import Enum


class Disposition(str, Enum):
    """Where a candidate sits in the approval workflow.

    The first four form a ladder from strongest to weakest; MERGE_WITH_NEARBY
    sits outside it and always wins (see DecisionEngine).
    """

    AUTO_APPROVE = "auto_approve"  # Score clears the auto-approval bar
    RECOMMEND_APPROVE = "recommend_approve"  # Good, but a human signs off
    MANUAL_REVIEW = "manual_review"  # Moderate confidence
    REJECT = "reject"  # Likely a false positive
    MERGE_WITH_NEARBY = "merge_with_nearby"  # Same physical gate as a neighbour


class MergeAction(str, Enum):
    """Relationship between two candidates, by centroid distance band."""

    MERGE = "merge"  # Within merge threshold
    CREATE_VIRTUAL_GATE = "create_virtual_gate"  # Close but not identical
    SEPARATE = "separate"  # Only reported by explicit audits
