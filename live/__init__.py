"""
Live package - aggregation of normalized activities for display.

- activity_log: flat correlation-merged log with bounded grep/envelope history
- lanes: per-swarm lane reducer (sort-then-fold, dedup, status transitions)
- diagnostics: newest-first flow diagnostics trail
"""

from .activity_log import TaskActivityLog, LiveSnapshot, PLAN_RELEVANT_TYPES
from .lanes import (
    LaneStatus,
    SwarmLaneState,
    ORCHESTRATOR_LANE,
    reduce,
    apply,
    sorted_lanes,
    owner_swarm_id,
    is_error_activity,
    is_swarm_critical_transition,
)
from .diagnostics import FlowDiagnostics, DiagnosticEntry

__all__ = [
    "TaskActivityLog", "LiveSnapshot", "PLAN_RELEVANT_TYPES",
    "LaneStatus", "SwarmLaneState", "ORCHESTRATOR_LANE",
    "reduce", "apply", "sorted_lanes", "owner_swarm_id",
    "is_error_activity", "is_swarm_critical_transition",
    "FlowDiagnostics", "DiagnosticEntry",
]
