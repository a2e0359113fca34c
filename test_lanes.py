"""
Tests for the swarm lane reducer.
"""

import random

import pytest

from live.lanes import (
    COMPLETED_FALLBACK_SUMMARY,
    DEFAULT_STEP_TITLE,
    ORCHESTRATOR_LANE,
    LaneStatus,
    SwarmLaneState,
    completion_summary,
    is_error_activity,
    is_swarm_critical_transition,
    owner_swarm_id,
    reduce,
    sorted_lanes,
)

T = 1_700_000_000.0


def _lane_view(lanes):
    """Comparable projection of a lane map."""
    return {
        swarm_id: (
            lane.status,
            lane.started_at,
            lane.last_event_at,
            lane.completed_at,
            lane.current_step_title,
            lane.current_detail,
            [a.id for a in lane.recent_events],
            lane.error_count,
            lane.summary,
            lane.is_collapsed,
            lane.has_unread_since_collapse,
        )
        for swarm_id, lane in lanes.items()
    }


# =============================================================================
# Ownership
# =============================================================================

class TestOwnership:

    def test_payload_swarm_id(self, activity):
        assert owner_swarm_id(activity(payload={"swarm_id": " s1 "}), True) == "s1"

    def test_group_id_prefix(self, activity):
        assert owner_swarm_id(activity(payload={"group_id": "swarm-abc"}), False) == "abc"

    def test_other_group_id_is_not_a_swarm(self, activity):
        a = activity(payload={"group_id": "batch-1"})
        assert owner_swarm_id(a, True) == ORCHESTRATOR_LANE
        assert owner_swarm_id(a, False) is None

    def test_unattributed_without_fallback_is_dropped(self, activity):
        lanes = reduce([activity()], include_orchestrator_fallback=False)
        assert lanes == {}


# =============================================================================
# Folding
# =============================================================================

class TestReduce:

    def test_arrival_order_does_not_matter(self, activity):
        events = [
            activity(title="Plan", detail="started", payload={"swarm_id": "a"}, timestamp=T + 1),
            activity(title="Read", payload={"swarm_id": "a", "path": "x.py"}, timestamp=T + 2),
            activity(title="Edit", is_running=True, payload={"swarm_id": "b"}, timestamp=T + 3),
            activity(title="Done", detail="completed", payload={"swarm_id": "a"}, timestamp=T + 4),
            activity(type="error", title="Boom", payload={"swarm_id": "b"}, timestamp=T + 5),
            activity(title="Note", payload={"swarm_id": "a"}, timestamp=T + 6),
        ]
        expected = _lane_view(reduce(events))
        rng = random.Random(7)
        for _ in range(10):
            shuffled = events[:]
            rng.shuffle(shuffled)
            assert _lane_view(reduce(shuffled)) == expected

    def test_equal_timestamps_fold_deterministically(self, activity):
        a = activity(title="First", payload={"swarm_id": "s"}, timestamp=T)
        b = activity(title="Second", payload={"swarm_id": "s"}, timestamp=T)
        assert _lane_view(reduce([a, b])) == _lane_view(reduce([b, a]))

    def test_duplicates_are_not_appended_but_update_lane(self, activity):
        first = activity(title="Read", detail="a.py", payload={"swarm_id": "s"}, timestamp=T + 0.2)
        second = activity(title="Read", detail="b.py", payload={"swarm_id": "s"}, timestamp=T + 0.7)
        lane = reduce([first, second])["s"]
        assert [a.id for a in lane.recent_events] == [first.id]
        assert lane.last_event_at == T + 0.7
        assert lane.current_detail == "b.py"

    def test_dedup_bucket_is_one_second(self, activity):
        first = activity(title="Read", payload={"swarm_id": "s"}, timestamp=T + 0.9)
        second = activity(title="Read", payload={"swarm_id": "s"}, timestamp=T + 1.1)
        assert len(reduce([first, second])["s"].recent_events) == 2

    def test_recent_events_capped(self, activity):
        events = [activity(title=f"Step {i}", payload={"swarm_id": "s"}, timestamp=T + i) for i in range(100)]
        lane = reduce(events)["s"]
        assert len(lane.recent_events) == 80
        assert lane.recent_events[0].title == "Step 20"
        assert len(reduce(events, limit_recent_events=5)["s"].recent_events) == 5

    def test_started_then_completed(self, activity):
        lane = reduce([
            activity(type="agent", title="Read", detail="started", payload={"swarm_id": "s"}, timestamp=T),
            activity(title="Edit", payload={"swarm_id": "s"}, timestamp=T + 1),
            activity(title="Read", payload={"swarm_id": "s"}, timestamp=T + 2),
            activity(title="Test", payload={"swarm_id": "s"}, timestamp=T + 3),
            activity(type="agent", title="Finish", detail="completed", payload={"swarm_id": "s"}, timestamp=T + 4),
        ])["s"]
        assert lane.status == LaneStatus.COMPLETED
        assert lane.started_at == T
        assert lane.completed_at == T + 4
        assert lane.is_collapsed
        assert not lane.has_unread_since_collapse
        assert lane.summary == "Completato • Read → Edit → Test"
        assert lane.current_step_title == "Finish"

    def test_collapsed_lane_collects_unread(self, activity):
        lane = reduce([
            activity(title="Done", detail="completed", payload={"swarm_id": "s"}, timestamp=T),
            activity(title="Late note", payload={"swarm_id": "s"}, timestamp=T + 5),
        ])["s"]
        assert lane.status == LaneStatus.COMPLETED
        assert lane.is_collapsed
        assert lane.has_unread_since_collapse

    def test_restart_reopens_completed_lane(self, activity):
        lane = reduce([
            activity(title="Done", detail="completed", payload={"swarm_id": "s"}, timestamp=T),
            activity(title="Again", detail="started", payload={"swarm_id": "s"}, timestamp=T + 1),
        ])["s"]
        assert lane.status == LaneStatus.RUNNING
        assert lane.completed_at is None
        assert lane.summary is None
        assert lane.has_unread_since_collapse

    def test_failure_expands_lane(self, activity):
        lane = reduce([
            activity(title="Done", detail="completed", payload={"swarm_id": "s"}, timestamp=T),
            activity(type="tool_timeout", title="Timeout", payload={"swarm_id": "s"}, timestamp=T + 1),
        ])["s"]
        assert lane.status == LaneStatus.FAILED
        assert not lane.is_collapsed
        assert not lane.has_unread_since_collapse
        assert lane.error_count == 1

    def test_first_neutral_event_sets_status_from_running_flag(self, activity):
        assert reduce([activity(payload={"swarm_id": "s"}, is_running=True)])["s"].status == LaneStatus.RUNNING
        assert reduce([activity(payload={"swarm_id": "s"})])["s"].status == LaneStatus.COMPLETED

    def test_active_ops_count(self, activity):
        lane = reduce([
            activity(title="A", is_running=True, payload={"swarm_id": "s"}, timestamp=T),
            activity(title="B", is_running=True, payload={"swarm_id": "s"}, timestamp=T + 1),
            activity(title="C", payload={"swarm_id": "s"}, timestamp=T + 2),
        ])["s"]
        assert lane.active_ops_count == 2

    def test_detail_fallbacks(self, activity):
        lane = reduce([activity(payload={"swarm_id": "s", "command": "pytest -q"})])["s"]
        assert lane.current_detail == "pytest -q"

    def test_default_step_title(self):
        assert SwarmLaneState(swarm_id="x").current_step_title == DEFAULT_STEP_TITLE


# =============================================================================
# Classification
# =============================================================================

class TestClassification:

    @pytest.mark.parametrize("kwargs", [
        {"type": "permission_denied"},
        {"title": "Errore di rete"},
        {"title": "Build failed"},
        {"detail": "Errore: file mancante"},
        {"payload": {"status": "failed"}},
    ])
    def test_error_activity(self, activity, kwargs):
        assert is_error_activity(activity(**kwargs))

    def test_plain_activity_is_not_an_error(self, activity):
        assert not is_error_activity(activity(title="Read", detail="a.py"))

    def test_critical_transitions(self, activity):
        assert is_swarm_critical_transition(activity(type="agent", detail="started"))
        assert is_swarm_critical_transition(activity(type="agent", payload={"detail": "Completed"}))
        assert is_swarm_critical_transition(activity(type="bash", payload={"status": "completed"}))
        assert is_swarm_critical_transition(activity(type="web_search_failed"))
        assert not is_swarm_critical_transition(activity(type="bash", detail="ls"))
        assert not is_swarm_critical_transition(activity(type="agent", detail="thinking"))

    def test_completion_summary_fallback(self):
        assert completion_summary([]) == COMPLETED_FALLBACK_SUMMARY


# =============================================================================
# Ordering
# =============================================================================

class TestSortedLanes:

    def test_status_weight_then_recency(self):
        lanes = [
            SwarmLaneState("idle", status=LaneStatus.IDLE),
            SwarmLaneState("done-old", status=LaneStatus.COMPLETED, last_event_at=T),
            SwarmLaneState("failed", status=LaneStatus.FAILED, last_event_at=T),
            SwarmLaneState("run-old", status=LaneStatus.RUNNING, last_event_at=T),
            SwarmLaneState("done-new", status=LaneStatus.COMPLETED, last_event_at=T + 9),
            SwarmLaneState("run-new", status=LaneStatus.RUNNING, last_event_at=T + 9),
        ]
        assert [lane.swarm_id for lane in sorted_lanes(lanes)] == [
            "run-new", "run-old", "failed", "done-new", "done-old", "idle",
        ]
