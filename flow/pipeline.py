"""
Live pipeline - routes normalized envelopes into the activity log, the
diagnostics trail and the todo / plan-step consumers.
"""

import logging
from typing import Callable, Dict, List, Optional

from config import app_config
from live.activity_log import TaskActivityLog
from live.diagnostics import FlowDiagnostics

from .events import (
    SWARM_CONTROL_EVENT,
    InstantGrepEvent,
    NormalizedEventEnvelope,
    PlanStepStatus,
    PlanStepUpdateEvent,
    TaskActivityEvent,
    TodoReadEvent,
    TodoWriteEvent,
    TodoWritePayload,
)
from .normalizer import PayloadView, normalize_envelope

logger = logging.getLogger(__name__)

# Batch progress and web search lifecycles replace their earlier entry
MERGED_TYPES = {
    "read_batch_started",
    "read_batch_completed",
    "web_search_started",
    "web_search_completed",
    "web_search_failed",
}


class LivePipeline:
    def __init__(
        self,
        log: Optional[TaskActivityLog] = None,
        diagnostics: Optional[FlowDiagnostics] = None,
        on_todo_write: Optional[Callable[[TodoWritePayload], None]] = None,
        on_plan_step_update: Optional[Callable[[str, PlanStepStatus], None]] = None,
        diagnostics_enabled: Optional[bool] = None,
    ):
        self.log = log if log is not None else TaskActivityLog()
        self.diagnostics = diagnostics if diagnostics is not None else FlowDiagnostics()
        self.on_todo_write = on_todo_write
        self.on_plan_step_update = on_plan_step_update
        self.diagnostics_enabled = (
            app_config.flow_diagnostics_enabled if diagnostics_enabled is None else diagnostics_enabled
        )
        self.todos: List[TodoWritePayload] = []
        self.plan_steps: Dict[str, PlanStepStatus] = {}

    def record_raw_event(
        self,
        provider_id: str,
        type: str,
        payload: Optional[Dict[str, str]] = None,
        timestamp: Optional[float] = None,
    ) -> NormalizedEventEnvelope:
        envelope = normalize_envelope(provider_id, type, payload or {}, timestamp)
        self.record_envelope(envelope)
        return envelope

    def record_envelope(self, envelope: NormalizedEventEnvelope):
        raw_type = envelope.raw_type
        if raw_type == SWARM_CONTROL_EVENT:
            logger.debug(f"Ignoring swarm control event from {envelope.source_provider_id}")
            return
        self.log.add_envelope(envelope)
        if self.diagnostics_enabled:
            view = PayloadView(envelope.payload)
            self.diagnostics.push(
                provider_id=envelope.source_provider_id,
                event_type=f"{envelope.kind.value}:{raw_type}",
                summary=view.first_text("title", "detail") or raw_type,
            )

        for event in envelope.events:
            if isinstance(event, TaskActivityEvent):
                activity = event.activity
                if activity.type in MERGED_TYPES:
                    self.log.append_or_merge(activity)
                else:
                    self.log.add_activity(activity)
            elif isinstance(event, InstantGrepEvent):
                self.log.add_instant_grep(event.result)
            elif isinstance(event, TodoWriteEvent):
                self._upsert_todo(event.todo)
            elif isinstance(event, PlanStepUpdateEvent):
                self.plan_steps[event.step_id] = event.status
                if self.on_plan_step_update is not None:
                    self.on_plan_step_update(event.step_id, event.status)
            elif isinstance(event, TodoReadEvent):
                pass

    def record_error(self, provider_id: str, message: str):
        self.diagnostics.selected_provider_id = provider_id
        self.diagnostics.set_error(message)

    def bind_coordinator(self, coordinator) -> Callable[[], None]:
        """Mirror the coordinator's flow state into diagnostics."""
        coordinator.pipeline = self
        return coordinator.state.subscribe(
            lambda state: self.diagnostics.set_flow_state(state.value), emit_current=True
        )

    def clear(self):
        self.log.clear()
        self.diagnostics.clear()
        self.todos.clear()
        self.plan_steps.clear()

    def _upsert_todo(self, todo: TodoWritePayload):
        for idx, existing in enumerate(self.todos):
            same_id = todo.id is not None and existing.id == todo.id
            same_title = todo.id is None and existing.title == todo.title
            if same_id or same_title:
                self.todos[idx] = todo
                break
        else:
            self.todos.append(todo)
        logger.debug(f"Todo upserted: {todo.title}")
        if self.on_todo_write is not None:
            self.on_todo_write(todo)
