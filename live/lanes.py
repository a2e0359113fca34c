"""
Swarm lane reducer.

Folds activities into one lane ("card") per swarm id, plus the synthetic
``orchestrator`` lane for unattributed events. Activities are always
sorted by timestamp before folding, so the result does not depend on
arrival order.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

from config import live_config
from flow.events import Activity

logger = logging.getLogger(__name__)

ORCHESTRATOR_LANE = "orchestrator"
SWARM_GROUP_PREFIX = "swarm-"
DEFAULT_STEP_TITLE = "In attesa eventi"
COMPLETED_FALLBACK_SUMMARY = "Swarm completato."

ERROR_TYPES = {
    "web_search_failed",
    "tool_execution_error",
    "tool_validation_error",
    "tool_timeout",
    "permission_denied",
    "error",
}

_TRANSITION_WORDS = ("started", "completed", "failed")


class LaneStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


_SORT_WEIGHT = {
    LaneStatus.RUNNING: 0,
    LaneStatus.FAILED: 1,
    LaneStatus.COMPLETED: 2,
    LaneStatus.IDLE: 3,
}


@dataclass
class SwarmLaneState:
    swarm_id: str
    status: LaneStatus = LaneStatus.IDLE
    started_at: Optional[float] = None
    last_event_at: Optional[float] = None
    completed_at: Optional[float] = None
    current_step_title: str = DEFAULT_STEP_TITLE
    current_detail: str = ""
    recent_events: List[Activity] = field(default_factory=list)
    active_ops_count: int = 0
    error_count: int = 0
    summary: Optional[str] = None
    is_collapsed: bool = False
    has_unread_since_collapse: bool = False

    def to_dict(self, include_events: bool = True) -> Dict[str, Any]:
        data = {
            "swarm_id": self.swarm_id,
            "status": self.status.value,
            "started_at": self.started_at,
            "last_event_at": self.last_event_at,
            "completed_at": self.completed_at,
            "current_step_title": self.current_step_title,
            "current_detail": self.current_detail,
            "active_ops_count": self.active_ops_count,
            "error_count": self.error_count,
            "summary": self.summary,
            "is_collapsed": self.is_collapsed,
            "has_unread_since_collapse": self.has_unread_since_collapse,
        }
        if include_events:
            data["recent_events"] = [a.to_dict() for a in self.recent_events]
        return data


# ------------------------------------------------------------------
# Classification helpers
# ------------------------------------------------------------------

def owner_swarm_id(activity: Activity, include_orchestrator_fallback: bool) -> Optional[str]:
    """Resolve which lane an activity belongs to, or None."""
    swarm_id = (activity.payload.get("swarm_id") or "").strip()
    if swarm_id:
        return swarm_id
    group_id = (activity.payload.get("group_id") or "").strip()
    if group_id.startswith(SWARM_GROUP_PREFIX):
        return group_id[len(SWARM_GROUP_PREFIX):]
    return ORCHESTRATOR_LANE if include_orchestrator_fallback else None


def _detail_or_payload(activity: Activity) -> str:
    detail = activity.detail if activity.detail is not None else activity.payload.get("detail")
    return (detail or "").lower()


def _payload_status(activity: Activity) -> str:
    return (activity.payload.get("status") or "").lower()


def is_error_activity(activity: Activity) -> bool:
    if activity.type in ERROR_TYPES:
        return True
    title = activity.title.lower()
    detail = (activity.detail or "").lower()
    return (
        "errore" in title
        or "failed" in title
        or "errore" in detail
        or "failed" in detail
        or _payload_status(activity) == "failed"
    )


def is_swarm_critical_transition(activity: Activity) -> bool:
    """Whether the activity deserves a user-facing notification."""
    if activity.type == "agent" and _detail_or_payload(activity) in _TRANSITION_WORDS:
        return True
    if is_error_activity(activity):
        return True
    return _payload_status(activity) in _TRANSITION_WORDS


def status_transition(activity: Activity) -> Optional[LaneStatus]:
    """Forced lane status for an activity, or None when it forces nothing."""
    if is_error_activity(activity):
        return LaneStatus.FAILED
    detail = _detail_or_payload(activity)
    status = _payload_status(activity)
    if detail == "started" or status == "started" or activity.is_running:
        return LaneStatus.RUNNING
    if detail == "completed" or status == "completed":
        return LaneStatus.COMPLETED
    return None


def best_detail(activity: Activity) -> Optional[str]:
    candidates = [
        activity.detail,
        activity.payload.get("detail"),
        activity.payload.get("summary"),
        activity.payload.get("query"),
        activity.payload.get("path"),
        activity.payload.get("command"),
    ]
    for candidate in candidates:
        text = (candidate or "").strip()
        if text:
            return text
    return None


def dedupe_key(activity: Activity, owner: str) -> str:
    # One-second buckets: identical events within the same second collapse
    gid = activity.group_id or activity.payload.get("group_id") or "-"
    bucket = int(activity.timestamp)
    return "|".join([owner, gid, activity.type, activity.title, _payload_status(activity), str(bucket)])


def completion_summary(events: List[Activity]) -> str:
    titles = [a.title for a in events[-6:] if a.title]
    if not titles:
        return COMPLETED_FALLBACK_SUMMARY
    compact: List[str] = []
    for title in titles:
        if title not in compact:
            compact.append(title)
            if len(compact) == 3:
                break
    return "Completato • " + " → ".join(compact)


# ------------------------------------------------------------------
# Reducer
# ------------------------------------------------------------------

def apply(
    activity: Activity,
    lanes: Dict[str, SwarmLaneState],
    dedupe_keys: Dict[str, Set[str]],
    limit_recent_events: Optional[int] = None,
    include_orchestrator_fallback: bool = True,
):
    """Fold one activity into ``lanes`` in place."""
    limit = max(1, limit_recent_events or live_config.lane_dedup_limit)
    owner = owner_swarm_id(activity, include_orchestrator_fallback)
    if owner is None:
        return

    lane = lanes.get(owner)
    if lane is None:
        lane = SwarmLaneState(swarm_id=owner)
        lanes[owner] = lane
        logger.debug(f"New swarm lane: {owner}")

    key = dedupe_key(activity, owner)
    owner_keys = dedupe_keys.setdefault(owner, set())
    is_duplicate = key in owner_keys
    if not is_duplicate:
        owner_keys.add(key)
        lane.recent_events.append(activity)
        if len(lane.recent_events) > limit:
            lane.recent_events = lane.recent_events[-limit:]

    if lane.started_at is None:
        lane.started_at = activity.timestamp
    if lane.last_event_at is None or activity.timestamp > lane.last_event_at:
        lane.last_event_at = activity.timestamp
    if activity.title:
        lane.current_step_title = activity.title
    lane.current_detail = best_detail(activity) or lane.current_detail
    lane.active_ops_count = sum(1 for a in lane.recent_events if a.is_running)
    lane.error_count = sum(1 for a in lane.recent_events if is_error_activity(a))

    transition = status_transition(activity)
    if transition is LaneStatus.RUNNING:
        lane.status = LaneStatus.RUNNING
        lane.completed_at = None
        lane.summary = None
        if lane.is_collapsed:
            lane.has_unread_since_collapse = True
    elif transition is LaneStatus.COMPLETED:
        lane.status = LaneStatus.COMPLETED
        lane.completed_at = activity.timestamp
        lane.summary = completion_summary(lane.recent_events)
        lane.is_collapsed = True
        lane.has_unread_since_collapse = False
    elif transition is LaneStatus.FAILED:
        lane.status = LaneStatus.FAILED
        lane.is_collapsed = False
        lane.has_unread_since_collapse = False
    else:
        if lane.status is LaneStatus.IDLE:
            lane.status = LaneStatus.RUNNING if activity.is_running else LaneStatus.COMPLETED
        if lane.is_collapsed and not is_duplicate:
            lane.has_unread_since_collapse = True


def reduce(
    activities: Iterable[Activity],
    limit_recent_events: Optional[int] = None,
    include_orchestrator_fallback: bool = True,
) -> Dict[str, SwarmLaneState]:
    """Sort by timestamp, then fold every activity into its lane."""
    lanes: Dict[str, SwarmLaneState] = {}
    dedupe_keys: Dict[str, Set[str]] = {}
    # id breaks timestamp ties so equal-time events fold the same way every run
    for activity in sorted(activities, key=lambda a: (a.timestamp, a.id)):
        apply(activity, lanes, dedupe_keys, limit_recent_events, include_orchestrator_fallback)
    return lanes


def sorted_lanes(lanes: Iterable[SwarmLaneState]) -> List[SwarmLaneState]:
    """Running first, then failed, completed, idle; newest activity first within a status."""
    return sorted(
        lanes,
        key=lambda lane: (
            _SORT_WEIGHT[lane.status],
            -(lane.last_event_at if lane.last_event_at is not None else float("-inf")),
        ),
    )
