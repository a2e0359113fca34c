"""
Task activity log - the flat, correlation-merged list of activities shown
in the live panel, plus the recent instant-grep results and envelopes.

Every mutation publishes a fresh LiveSnapshot through ``snapshot`` so UI
and non-UI consumers (the WebSocket feed, tests) share one update point.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config import live_config
from flow.events import Activity, InstantGrepResult, NormalizedEventEnvelope
from flow.observable import Observable

from . import lanes as lane_reducer
from .lanes import SwarmLaneState

logger = logging.getLogger(__name__)

# Activity types shown in the plan / execution trace
PLAN_RELEVANT_TYPES = {
    "command_execution",
    "bash",
    "read_batch_started",
    "read_batch_completed",
    "mcp_tool_call",
    "web_search",
    "web_search_started",
    "web_search_completed",
    "web_search_failed",
    "process_paused",
    "process_resumed",
    "plan_step_update",
    "file_change",
    "edit",
}


@dataclass(frozen=True)
class LiveSnapshot:
    version: int = 0
    activities: List[Activity] = field(default_factory=list)
    instant_greps: List[InstantGrepResult] = field(default_factory=list)
    envelope_count: int = 0
    active_operations_count: int = 0
    unseen_live_events_count: int = 0

    def to_dict(self, activity_limit: Optional[int] = None) -> Dict[str, Any]:
        activities = self.activities if activity_limit is None else self.activities[-activity_limit:]
        return {
            "version": self.version,
            "activities": [a.to_dict() for a in activities],
            "instant_greps": [g.to_dict() for g in self.instant_greps],
            "envelope_count": self.envelope_count,
            "active_operations_count": self.active_operations_count,
            "unseen_live_events_count": self.unseen_live_events_count,
        }


class TaskActivityLog:
    """Single-writer activity store. All mutation happens on the event loop thread."""

    def __init__(
        self,
        instant_grep_cap: Optional[int] = None,
        envelope_cap: Optional[int] = None,
        active_ops_window: Optional[int] = None,
        lane_history_cap: Optional[int] = None,
    ):
        self.instant_grep_cap = instant_grep_cap or live_config.instant_grep_cap
        self.envelope_cap = envelope_cap or live_config.envelope_cap
        self.active_ops_window = active_ops_window or live_config.active_ops_window
        self.lane_history_cap = lane_history_cap or live_config.lane_history_cap

        self.activities: List[Activity] = []
        self.instant_greps: List[InstantGrepResult] = []
        self.envelopes: List[NormalizedEventEnvelope] = []
        self.active_operations_count = 0
        self.unseen_live_events_count = 0
        # Lanes see every activity, including ones later merged away in the flat list
        self._lane_history: List[Activity] = []
        self._version = 0
        self.snapshot: Observable[LiveSnapshot] = Observable(LiveSnapshot())

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_activity(self, activity: Activity):
        """Append without merging."""
        self.activities.append(activity)
        self._track_for_lanes(activity)
        self._recalc_active_operations()
        self._publish()

    def append(self, activity: Activity):
        """
        Append, or replace the most recent entry with the same
        ``(group_id, type)`` when the activity carries a group id.
        """
        if not activity.group_id:
            self.add_activity(activity)
            return

        for idx in range(len(self.activities) - 1, -1, -1):
            existing = self.activities[idx]
            if existing.group_id == activity.group_id and existing.type == activity.type:
                self.activities[idx] = activity
                break
        else:
            self.activities.append(activity)

        self._track_for_lanes(activity)
        self._recalc_active_operations()
        self._publish()

    append_or_merge = append

    def add_instant_grep(self, result: InstantGrepResult):
        self.instant_greps.insert(0, result)
        del self.instant_greps[self.instant_grep_cap:]
        self._publish()

    def add_envelope(self, envelope: NormalizedEventEnvelope):
        self.envelopes.insert(0, envelope)
        del self.envelopes[self.envelope_cap:]
        self.unseen_live_events_count += 1
        self._publish()

    def mark_paused(self):
        self.unseen_live_events_count += 1
        self._publish()

    def mark_resumed(self):
        self.unseen_live_events_count += 1
        self._publish()

    def mark_live_events_seen(self):
        self.unseen_live_events_count = 0
        self._publish()

    def clear(self):
        self.activities.clear()
        self.instant_greps.clear()
        self.envelopes.clear()
        self._lane_history.clear()
        self.active_operations_count = 0
        self.unseen_live_events_count = 0
        logger.info("Activity log cleared")
        self._publish()

    def _track_for_lanes(self, activity: Activity):
        self._lane_history.append(activity)
        if len(self._lane_history) > self.lane_history_cap:
            del self._lane_history[: len(self._lane_history) - self.lane_history_cap]

    def _recalc_active_operations(self):
        window = self.activities[-self.active_ops_window:]
        self.active_operations_count = sum(1 for a in window if a.is_running)

    def _publish(self):
        self._version += 1
        self.snapshot.set(LiveSnapshot(
            version=self._version,
            activities=list(self.activities),
            instant_greps=list(self.instant_greps),
            envelope_count=len(self.envelopes),
            active_operations_count=self.active_operations_count,
            unseen_live_events_count=self.unseen_live_events_count,
        ))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self.activities)

    def recent(self, limit: int) -> List[Activity]:
        if limit <= 0:
            return []
        return self.activities[-limit:]

    def plan_relevant(self) -> List[Activity]:
        return [a for a in self.activities if a.type in PLAN_RELEVANT_TYPES]

    def lane_map(self, limit_recent_events: Optional[int] = None) -> Dict[str, SwarmLaneState]:
        return lane_reducer.reduce(
            self._lane_history,
            limit_recent_events or live_config.lane_dedup_limit,
            include_orchestrator_fallback=True,
        )

    def lane_states(self) -> List[SwarmLaneState]:
        """Lanes in display order."""
        return lane_reducer.sorted_lanes(self.lane_map().values())

    def activities_for_swarm_lane(self, swarm_id: str, limit: Optional[int] = None) -> List[Activity]:
        """Time-ordered activities owned by one lane; only the orchestrator lane takes unattributed ones."""
        limit = limit or live_config.lane_display_limit
        include_fallback = swarm_id == lane_reducer.ORCHESTRATOR_LANE
        owned = [
            a for a in sorted(self._lane_history, key=lambda a: (a.timestamp, a.id))
            if lane_reducer.owner_swarm_id(a, include_fallback) == swarm_id
        ]
        return owned[-limit:]
