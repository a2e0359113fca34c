"""
Tests for the live pipeline routing envelopes into the log, diagnostics
and todo / plan consumers.
"""

from flow.coordinator import FlowCoordinator
from flow.events import PlanStepStatus, TodoStatus
from flow.pipeline import LivePipeline
from live.activity_log import TaskActivityLog
from live.diagnostics import FlowDiagnostics

T = 1_700_000_000.0


class TestRecordRawEvent:

    def test_activity_and_envelope_recorded(self):
        pipeline = LivePipeline(diagnostics_enabled=True)
        envelope = pipeline.record_raw_event("codex-cli", "bash", {"title": "ls", "command": "ls"}, T)
        assert pipeline.log.envelopes == [envelope]
        assert [a.title for a in pipeline.log.activities] == ["ls"]
        entry = pipeline.diagnostics.entries[0]
        assert entry.provider_id == "codex-cli"
        assert entry.event_type == "terminal_session:bash"
        assert entry.summary == "ls"

    def test_diagnostics_summary_falls_back_to_type(self):
        pipeline = LivePipeline(diagnostics_enabled=True)
        pipeline.record_raw_event("p", "mcp_tool_call", {}, T)
        assert pipeline.diagnostics.entries[0].summary == "mcp_tool_call"

    def test_diagnostics_disabled(self):
        pipeline = LivePipeline(diagnostics_enabled=False)
        pipeline.record_raw_event("p", "bash", {}, T)
        assert pipeline.diagnostics.entries == []

    def test_batch_progress_merges(self):
        pipeline = LivePipeline()
        pipeline.record_raw_event("p", "read_batch_started", {"group_id": "g", "title": "1/2"}, T)
        pipeline.record_raw_event("p", "read_batch_started", {"group_id": "g", "title": "2/2"}, T + 1)
        assert [a.title for a in pipeline.log.activities] == ["2/2"]

    def test_plain_types_do_not_merge(self):
        pipeline = LivePipeline()
        pipeline.record_raw_event("p", "bash", {"group_id": "g"}, T)
        pipeline.record_raw_event("p", "bash", {"group_id": "g"}, T + 1)
        assert len(pipeline.log) == 2

    def test_instant_grep_routed(self):
        pipeline = LivePipeline()
        pipeline.record_raw_event("p", "instant_grep", {"query": "foo", "matchesCount": "2"}, T)
        assert pipeline.log.instant_greps[0].query == "foo"
        assert pipeline.log.activities[0].detail == "2 risultati"

    def test_todos_upserted_and_forwarded(self):
        seen = []
        pipeline = LivePipeline(on_todo_write=seen.append)
        pipeline.record_raw_event("p", "todo_write", {"id": "1", "title": "A", "status": "pending"}, T)
        pipeline.record_raw_event("p", "todo_write", {"id": "1", "title": "A2", "status": "done"}, T + 1)
        pipeline.record_raw_event("p", "todo_write", {"title": "B"}, T + 2)
        pipeline.record_raw_event("p", "todo_write", {"title": "B", "status": "in_progress"}, T + 3)
        assert [(t.title, t.status) for t in pipeline.todos] == [
            ("A2", TodoStatus.DONE),
            ("B", TodoStatus.IN_PROGRESS),
        ]
        assert len(seen) == 4

    def test_plan_steps_tracked(self):
        updates = []
        pipeline = LivePipeline(on_plan_step_update=lambda step, status: updates.append((step, status)))
        pipeline.record_raw_event("p", "plan_step_update", {"step_id": "s1", "status": "running"}, T)
        pipeline.record_raw_event("p", "plan_step_update", {"step_id": "s1", "status": "done"}, T + 1)
        assert pipeline.plan_steps == {"s1": PlanStepStatus.DONE}
        assert updates[-1] == ("s1", PlanStepStatus.DONE)

    def test_record_error(self):
        pipeline = LivePipeline()
        pipeline.record_error("claude-cli", "boom")
        assert pipeline.diagnostics.last_error == "boom"
        assert pipeline.diagnostics.selected_provider_id == "claude-cli"

    def test_clear(self):
        pipeline = LivePipeline(diagnostics_enabled=True)
        pipeline.record_raw_event("p", "todo_write", {"title": "A"}, T)
        pipeline.record_raw_event("p", "bash", {}, T)
        pipeline.record_error("p", "x")
        pipeline.clear()
        assert len(pipeline.log) == 0
        assert pipeline.todos == []
        assert pipeline.diagnostics.entries == []
        assert pipeline.diagnostics.last_error is None

    def test_shared_log_and_diagnostics(self):
        log = TaskActivityLog()
        diagnostics = FlowDiagnostics(cap=2)
        pipeline = LivePipeline(log=log, diagnostics=diagnostics, diagnostics_enabled=True)
        for i in range(3):
            pipeline.record_raw_event("p", "bash", {"title": str(i)}, T + i)
        assert len(log) == 3
        assert [e.summary for e in diagnostics.entries] == ["2", "1"]

    def test_swarm_control_event_is_not_recorded(self):
        pipeline = LivePipeline(diagnostics_enabled=True)
        envelope = pipeline.record_raw_event("codex-cli", "coderide_invoke_swarm", {"task": "t"}, T)
        assert envelope.raw_type == "coderide_invoke_swarm"
        assert len(pipeline.log) == 0
        assert pipeline.log.envelopes == []
        assert pipeline.diagnostics.entries == []


class TestBindCoordinator:

    def test_state_mirrored_until_unbound(self):
        pipeline = LivePipeline()
        coordinator = FlowCoordinator()
        unbind = pipeline.bind_coordinator(coordinator)
        assert coordinator.pipeline is pipeline
        assert pipeline.diagnostics.flow_state == "idle"
        coordinator.start_streaming()
        assert pipeline.diagnostics.flow_state == "streaming"
        unbind()
        coordinator.fail()
        assert pipeline.diagnostics.flow_state == "streaming"
