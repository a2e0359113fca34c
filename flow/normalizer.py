"""
Event normalizer: turns a backend's raw ``(type, payload)`` telemetry into
typed normalized events and a display-oriented activity.

The string-keyed payload map is the wire protocol between backend adapters
and the core. ``PayloadView`` is the only place that reads it loosely; the
rest of the pipeline works with the typed events produced here.
"""

import logging
import time
from typing import Dict, List, Optional

from .events import (
    Activity,
    ActivityPhase,
    EventKind,
    InstantGrepEvent,
    InstantGrepMatch,
    InstantGrepResult,
    NormalizedEvent,
    NormalizedEventEnvelope,
    PlanStepStatus,
    PlanStepUpdateEvent,
    TaskActivityEvent,
    TodoPriority,
    TodoReadEvent,
    TodoStatus,
    TodoWriteEvent,
    TodoWritePayload,
)

logger = logging.getLogger(__name__)

ENVELOPE_VERSION = 1

MAX_PARSED_MATCH_LINES = 200
MAX_COMMAND_GREP_MATCHES = 30

_KIND_BY_TYPE: Dict[str, EventKind] = {
    "command_execution": EventKind.TERMINAL_SESSION,
    "bash": EventKind.TERMINAL_SESSION,
    "file_change": EventKind.FILE_UPDATE,
    "edit": EventKind.FILE_UPDATE,
    "instant_grep": EventKind.INSTANT_GREP,
    "search": EventKind.INSTANT_GREP,
    "web_search": EventKind.INSTANT_GREP,
    "web_search_started": EventKind.INSTANT_GREP,
    "web_search_completed": EventKind.INSTANT_GREP,
    "web_search_failed": EventKind.INSTANT_GREP,
    "todo_write": EventKind.TODO_UPDATE,
    "todo_read": EventKind.TODO_UPDATE,
    "plan_step_update": EventKind.PLAN_STEP_UPDATE,
    "swarm_steps": EventKind.SWARM_PROGRESS,
    "agent": EventKind.SWARM_PROGRESS,
    "usage": EventKind.USAGE_UPDATE,
    "error": EventKind.ERROR_DIAGNOSTIC,
}

_PHASE_BY_TYPE: Dict[str, ActivityPhase] = {
    "command_execution": ActivityPhase.EXECUTING,
    "bash": ActivityPhase.EXECUTING,
    "file_change": ActivityPhase.EDITING,
    "edit": ActivityPhase.EDITING,
    "read_batch_started": ActivityPhase.EDITING,
    "read_batch_completed": ActivityPhase.EDITING,
    "instant_grep": ActivityPhase.SEARCHING,
    "search": ActivityPhase.SEARCHING,
    "web_search": ActivityPhase.SEARCHING,
    "web_search_started": ActivityPhase.SEARCHING,
    "web_search_completed": ActivityPhase.SEARCHING,
    "web_search_failed": ActivityPhase.SEARCHING,
    "plan_step_update": ActivityPhase.PLANNING,
}

RUNNING_TYPES = {"web_search_started", "read_batch_started", "process_resumed"}
STOPPED_TYPES = {"web_search_completed", "web_search_failed", "read_batch_completed", "process_paused"}

DEFAULT_TITLES: Dict[str, str] = {
    "process_paused": "Processo in pausa",
    "process_resumed": "Processo ripreso",
    "read_batch_started": "Lettura file in batch avviata",
    "read_batch_completed": "Lettura file in batch completata",
    "web_search_started": "Ricerca web avviata",
    "web_search_completed": "Ricerca web completata",
    "web_search_failed": "Ricerca web fallita",
}

_TODO_STATUS_ALIASES: Dict[str, TodoStatus] = {
    "pending": TodoStatus.PENDING,
    "todo": TodoStatus.PENDING,
    "in_progress": TodoStatus.IN_PROGRESS,
    "in-progress": TodoStatus.IN_PROGRESS,
    "inprogress": TodoStatus.IN_PROGRESS,
    "done": TodoStatus.DONE,
    "completed": TodoStatus.DONE,
    "blocked": TodoStatus.BLOCKED,
}


class PayloadView:
    """Typed read-only accessors over a raw string payload."""

    __slots__ = ("_data",)

    def __init__(self, data: Optional[Dict[str, str]]):
        self._data = data or {}

    def raw(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def text(self, key: str) -> str:
        """Trimmed value, empty string when missing."""
        return (self._data.get(key) or "").strip()

    def lowered(self, key: str) -> str:
        return self.text(key).lower()

    def int_value(self, key: str) -> Optional[int]:
        try:
            return int(self.text(key))
        except ValueError:
            return None

    def first_text(self, *keys: str) -> Optional[str]:
        """First key whose trimmed value is non-empty."""
        for key in keys:
            value = self.text(key)
            if value:
                return value
        return None

    def first_present(self, *keys: str) -> Optional[str]:
        """First key present in the payload, untrimmed (may be empty)."""
        for key in keys:
            if key in self._data:
                return self._data[key]
        return None

    def csv_list(self, key: str) -> List[str]:
        return [part.strip() for part in (self._data.get(key) or "").split(",") if part.strip()]


# ------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------

def event_kind_for_type(type: str) -> EventKind:
    return _KIND_BY_TYPE.get(type, EventKind.GENERIC)


def normalize_envelope(
    source_provider_id: str,
    type: str,
    payload: Optional[Dict[str, str]],
    timestamp: Optional[float] = None,
) -> NormalizedEventEnvelope:
    ts = time.time() if timestamp is None else timestamp
    payload = dict(payload or {})
    return NormalizedEventEnvelope(
        version=ENVELOPE_VERSION,
        source_provider_id=source_provider_id,
        timestamp=ts,
        kind=event_kind_for_type(type),
        payload=payload,
        events=normalize(type, payload, ts),
        raw_type=type,
    )


def normalize(type: str, payload: Optional[Dict[str, str]], timestamp: Optional[float] = None) -> List[NormalizedEvent]:
    """Convert one raw telemetry tuple into zero, one or two normalized events."""
    ts = time.time() if timestamp is None else timestamp
    payload = dict(payload or {})
    view = PayloadView(payload)
    events: List[NormalizedEvent] = []

    if type == "todo_write":
        todo = parse_todo_write(view)
        if todo is not None:
            events.append(TodoWriteEvent(todo=todo))
            return events
    elif type == "todo_read":
        events.append(TodoReadEvent())
        return events
    elif type == "plan_step_update":
        step_id = view.text("step_id")
        status = _plan_step_status(view.lowered("status"))
        if step_id and status is not None:
            events.append(PlanStepUpdateEvent(step_id=step_id, status=status))
            return events
    elif type == "instant_grep":
        grep = parse_instant_grep(view, ts)
        if grep is not None:
            events.append(InstantGrepEvent(result=grep))
            events.append(TaskActivityEvent(activity=Activity(
                type=type,
                title=f"Instant Grep • {grep.query}",
                detail=f"{grep.matches_count} risultati",
                payload=payload,
                timestamp=ts,
                phase=ActivityPhase.SEARCHING,
                is_running=False,
            )))
            return events
    elif type in ("command_execution", "bash"):
        grep = parse_instant_grep_from_command(view, ts)
        if grep is not None:
            events.append(InstantGrepEvent(result=grep))

    normalized_type = normalize_special_type(type, view)
    events.append(TaskActivityEvent(activity=Activity(
        type=normalized_type,
        title=view.raw("title") or default_title(normalized_type),
        detail=view.raw("detail"),
        payload=payload,
        timestamp=ts,
        phase=phase_for_type(normalized_type),
        is_running=running_state_for_type(normalized_type),
        group_id=view.first_present("group_id", "queryId"),
    )))
    return events


# ------------------------------------------------------------------
# Type classification
# ------------------------------------------------------------------

def normalize_special_type(type: str, view: PayloadView) -> str:
    if type == "web_search":
        status = view.lowered("status")
        if status in ("started", "completed", "failed"):
            return f"web_search_{status}"
    return type


def phase_for_type(type: str) -> ActivityPhase:
    return _PHASE_BY_TYPE.get(type, ActivityPhase.THINKING)


def running_state_for_type(type: str) -> bool:
    # Anything not explicitly started/resumed is treated as not running.
    return type in RUNNING_TYPES


def default_title(type: str) -> str:
    return DEFAULT_TITLES.get(type, type)


def _plan_step_status(value: str) -> Optional[PlanStepStatus]:
    try:
        return PlanStepStatus(value)
    except ValueError:
        return None


# ------------------------------------------------------------------
# Payload parsers
# ------------------------------------------------------------------

def parse_todo_write(view: PayloadView) -> Optional[TodoWritePayload]:
    title = view.text("title")
    if not title:
        return None
    priority = None
    try:
        priority = TodoPriority(view.lowered("priority"))
    except ValueError:
        pass
    return TodoWritePayload(
        title=title,
        id=view.text("id") or None,
        status=_TODO_STATUS_ALIASES.get(view.lowered("status")),
        priority=priority,
        notes=view.raw("notes"),
        files=view.csv_list("files"),
    )


def parse_match_lines(output: str) -> List[InstantGrepMatch]:
    """Parse ``file:line:preview`` lines, inspecting at most 200 lines."""
    matches: List[InstantGrepMatch] = []
    lines = [line for line in (output or "").split("\n") if line]
    for line in lines[:MAX_PARSED_MATCH_LINES]:
        parts = line.split(":", 2)
        if len(parts) != 3:
            continue
        try:
            number = int(parts[1])
        except ValueError:
            continue
        matches.append(InstantGrepMatch(file=parts[0], line=number, preview=parts[2].strip()))
    return matches


def parse_instant_grep(view: PayloadView, timestamp: float) -> Optional[InstantGrepResult]:
    query = view.raw("query") or ""
    if not query:
        return None
    parsed = parse_match_lines(view.raw("previewLines") or "")
    explicit = view.int_value("matchesCount")
    if explicit is None:
        explicit = view.int_value("resultCount") or 0
    return InstantGrepResult(
        query=query,
        scope=view.first_present("pathScope", "scope") or ".",
        matches_count=max(explicit, len(parsed)),
        matches=parsed,
        duration_ms=view.int_value("duration_ms"),
        created_at=timestamp,
    )


def _is_search_command(command: str) -> bool:
    return command.startswith("rg ") or " rg " in command


def parse_instant_grep_from_command(view: PayloadView, timestamp: float) -> Optional[InstantGrepResult]:
    command = view.raw("command") or ""
    if not _is_search_command(command):
        return None
    parts = [p for p in command.split(" ") if p]
    tool_idx = parts.index("rg")
    query = parts[tool_idx + 1] if len(parts) > tool_idx + 1 else "(query)"
    matches = parse_match_lines(view.raw("output") or "")
    if not matches:
        return None
    logger.debug(f"Synthesized instant grep from command: {command[:80]} ({len(matches)} matches)")
    return InstantGrepResult(
        query=query,
        scope=view.raw("cwd") or ".",
        matches_count=len(matches),
        matches=matches[:MAX_COMMAND_GREP_MATCHES],
        duration_ms=None,
        created_at=timestamp,
    )
