"""Gate discovery pipeline.

Submodules:
- aggregator: per-tag running statistics over confirmed scans
- scoring: weighted confidence score with fixed bands
- proximity: distance-band merge / virtual-gate detection
- decision: thresholds and merge precedence -> disposition
- coordinator: incremental orchestration for one event
- report: event-level discovery quality summary
"""

from gate_intel.discovery.aggregator import CandidateAggregator
from gate_intel.discovery.coordinator import EngineStats, GateDiscoveryEngine, UpdateResult
from gate_intel.discovery.decision import Decision, DecisionEngine
from gate_intel.discovery.proximity import MergeDetector
from gate_intel.discovery.report import QualityReport, build_quality_report
from gate_intel.discovery.scoring import ConfidenceScorer, ScoreBreakdown

__all__ = [
    "CandidateAggregator",
    "ConfidenceScorer",
    "Decision",
    "DecisionEngine",
    "EngineStats",
    "GateDiscoveryEngine",
    "MergeDetector",
    "QualityReport",
    "ScoreBreakdown",
    "UpdateResult",
    "build_quality_report",
]
