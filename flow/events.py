"""
Flow event and live activity data types.
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, List, Optional, Union

# In-band control signal asking the core to delegate a task to the swarm
SWARM_CONTROL_EVENT = "coderide_invoke_swarm"


@dataclass
class FlowEvent:
    """Event emitted by the flow coordinator during a turn"""
    type: str  # text, error, raw, swarm_delegation, swarm_text, follow_up_text
    content: str = ""
    data: Optional[Dict[str, Any]] = None


class ActivityPhase(str, Enum):
    THINKING = "thinking"
    EDITING = "editing"
    EXECUTING = "executing"
    SEARCHING = "searching"
    PLANNING = "planning"


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Activity:
    """Single entry of the task activity panel (edit, bash, search, agent role...)"""
    type: str
    title: str
    detail: Optional[str] = None
    payload: Dict[str, str] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
    phase: ActivityPhase = ActivityPhase.THINKING
    is_running: bool = True
    group_id: Optional[str] = None
    id: str = field(default_factory=_new_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "detail": self.detail,
            "payload": dict(self.payload),
            "timestamp": self.timestamp,
            "phase": self.phase.value,
            "is_running": self.is_running,
            "group_id": self.group_id,
        }


@dataclass(frozen=True)
class InstantGrepMatch:
    file: str
    line: int
    preview: str


@dataclass(frozen=True)
class InstantGrepResult:
    query: str
    scope: str
    matches_count: int
    matches: List[InstantGrepMatch] = field(default_factory=list)
    duration_ms: Optional[int] = None
    created_at: float = field(default_factory=time.time)
    id: str = field(default_factory=_new_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "query": self.query,
            "scope": self.scope,
            "matches_count": self.matches_count,
            "duration_ms": self.duration_ms,
            "matches": [{"file": m.file, "line": m.line, "preview": m.preview} for m in self.matches],
            "created_at": self.created_at,
        }


class TodoStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    BLOCKED = "blocked"


class TodoPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PlanStepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class TodoWritePayload:
    title: str
    id: Optional[str] = None
    status: Optional[TodoStatus] = None
    priority: Optional[TodoPriority] = None
    notes: Optional[str] = None
    files: List[str] = field(default_factory=list)


# ------------------------------------------------------------------
# Normalized events (tagged union)
# ------------------------------------------------------------------

@dataclass(frozen=True)
class TaskActivityEvent:
    activity: Activity
    kind: str = "task_activity"


@dataclass(frozen=True)
class InstantGrepEvent:
    result: InstantGrepResult
    kind: str = "instant_grep"


@dataclass(frozen=True)
class TodoWriteEvent:
    todo: TodoWritePayload
    kind: str = "todo_write"


@dataclass(frozen=True)
class TodoReadEvent:
    kind: str = "todo_read"


@dataclass(frozen=True)
class PlanStepUpdateEvent:
    step_id: str
    status: PlanStepStatus
    kind: str = "plan_step_update"


NormalizedEvent = Union[
    TaskActivityEvent, InstantGrepEvent, TodoWriteEvent, TodoReadEvent, PlanStepUpdateEvent
]


class EventKind(str, Enum):
    TERMINAL_SESSION = "terminal_session"
    FILE_UPDATE = "file_update"
    INSTANT_GREP = "instant_grep"
    TODO_UPDATE = "todo_update"
    PLAN_STEP_UPDATE = "plan_step_update"
    SWARM_PROGRESS = "swarm_progress"
    USAGE_UPDATE = "usage_update"
    ERROR_DIAGNOSTIC = "error_diagnostic"
    GENERIC = "generic"


@dataclass(frozen=True)
class NormalizedEventEnvelope:
    version: int
    source_provider_id: str
    timestamp: float
    kind: EventKind
    payload: Dict[str, str]
    events: List[NormalizedEvent] = field(default_factory=list)
    raw_type: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "source_provider_id": self.source_provider_id,
            "timestamp": self.timestamp,
            "kind": self.kind.value,
            "raw_type": self.raw_type,
            "payload": dict(self.payload),
            "events": [event.kind for event in self.events],
        }
