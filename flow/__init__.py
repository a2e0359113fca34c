"""
Flow package - turn coordination and event normalization.

Modules:
- events: FlowEvent, Activity and the normalized event types
- normalizer: raw (type, payload) telemetry -> normalized events / envelopes
- observable: value holder with listeners (flow state, live snapshots)
- coordinator: FlowCoordinator state machine with the stream watchdog
- pipeline: LivePipeline routing envelopes into the live activity log
  (import it from flow.pipeline; it depends on the live package)
"""

from .events import (
    FlowEvent,
    Activity,
    ActivityPhase,
    InstantGrepMatch,
    InstantGrepResult,
    TodoStatus,
    TodoPriority,
    PlanStepStatus,
    TodoWritePayload,
    TaskActivityEvent,
    InstantGrepEvent,
    TodoWriteEvent,
    TodoReadEvent,
    PlanStepUpdateEvent,
    NormalizedEvent,
    EventKind,
    NormalizedEventEnvelope,
    SWARM_CONTROL_EVENT,
)
from .normalizer import normalize, normalize_envelope, PayloadView
from .observable import Observable
from .coordinator import (
    FlowCoordinator,
    FlowState,
    StreamResult,
    DelegationResult,
    StreamWatchdogError,
    NoEventsError,
    StreamStalledError,
)

__all__ = [
    "FlowEvent", "Activity", "ActivityPhase", "InstantGrepMatch", "InstantGrepResult",
    "TodoStatus", "TodoPriority", "PlanStepStatus", "TodoWritePayload",
    "TaskActivityEvent", "InstantGrepEvent", "TodoWriteEvent", "TodoReadEvent",
    "PlanStepUpdateEvent", "NormalizedEvent", "EventKind", "NormalizedEventEnvelope",
    "SWARM_CONTROL_EVENT",
    "normalize", "normalize_envelope", "PayloadView",
    "Observable",
    "FlowCoordinator", "FlowState", "StreamResult", "DelegationResult",
    "StreamWatchdogError", "NoEventsError", "StreamStalledError",
]
