"""
Flow diagnostics: a short newest-first trail of normalized events per
provider, the last error seen and the current flow state.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config import live_config
from flow.observable import Observable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiagnosticEntry:
    provider_id: str
    event_type: str  # "<envelope kind>:<raw type>"
    summary: str
    timestamp: float = field(default_factory=time.time)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "provider_id": self.provider_id,
            "event_type": self.event_type,
            "summary": self.summary,
        }


class FlowDiagnostics:
    def __init__(self, cap: Optional[int] = None):
        self.cap = cap or live_config.diagnostics_cap
        self.entries: List[DiagnosticEntry] = []
        self.last_error: Optional[str] = None
        self.flow_state: str = "idle"
        self.selected_provider_id: str = ""
        self.changes: Observable[int] = Observable(0)

    def _changed(self):
        self.changes.set(self.changes.value + 1)

    def push(self, provider_id: str, event_type: str, summary: str):
        self.entries.insert(0, DiagnosticEntry(provider_id=provider_id, event_type=event_type, summary=summary))
        del self.entries[self.cap:]
        self._changed()

    def set_error(self, message: Optional[str]):
        self.last_error = message
        if message:
            logger.warning(f"Flow error recorded: {message}")
        self._changed()

    def set_flow_state(self, state: str):
        self.flow_state = state
        self._changed()

    def clear(self):
        self.entries.clear()
        self.last_error = None
        self._changed()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "flow_state": self.flow_state,
            "selected_provider_id": self.selected_provider_id,
            "last_error": self.last_error,
            "entries": [e.to_dict() for e in self.entries],
        }
