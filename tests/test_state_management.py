import asyncio
import json

import pytest

from rollout_orchestrator.engine import RolloutExecutor
from rollout_orchestrator.models import NodeOutcome, NodeState, ProbeResult, ServiceNode
from rollout_orchestrator.probes import HealthProbe
from rollout_orchestrator.report import VerificationReport

from conftest import make_node


class StateRecordingProbe(HealthProbe):
    """Records the node's state each time it is checked"""

    def __init__(self, node_ref, results):
        self.node_ref = node_ref
        self.results = results
        self.seen = []

    async def check(self):
        self.seen.append(self.node_ref[0].state)
        return self.results[min(len(self.seen) - 1, len(self.results) - 1)]


class TestStateManagement:
    """Node state machine and report bookkeeping."""

    @pytest.mark.asyncio
    async def test_node_is_polling_while_probed(self):
        ref = []
        node = make_node("api", max_attempts=3)
        node.probe = StateRecordingProbe(ref, [ProbeResult.unhealthy(), ProbeResult.healthy()])
        ref.append(node)

        await RolloutExecutor().execute([node])
        assert node.probe.seen == [NodeState.POLLING, NodeState.POLLING]
        assert node.state == NodeState.HEALTHY

    @pytest.mark.asyncio
    async def test_dependency_healthy_before_dependent_starts(self):
        states_at_start = {}
        nodes = []

        async def action(node):
            states_at_start[node.name] = {n.name: n.state for n in nodes}

        nodes.extend([make_node("db", action=action), make_node("api", deps=["db"], action=action)])
        await RolloutExecutor().execute(nodes)

        assert states_at_start["api"]["db"] == NodeState.HEALTHY
        assert states_at_start["api"]["api"] == NodeState.STARTING

    def test_terminal_states_never_change(self):
        node = ServiceNode("db")
        for terminal in (NodeState.HEALTHY, NodeState.FAILED, NodeState.TIMED_OUT):
            node.state = terminal
            for target in NodeState:
                with pytest.raises(RuntimeError, match="illegal state change"):
                    RolloutExecutor._transition(node, target)

    def test_pending_cannot_skip_to_healthy(self):
        node = ServiceNode("db")
        with pytest.raises(RuntimeError):
            RolloutExecutor._transition(node, NodeState.HEALTHY)
        RolloutExecutor._transition(node, NodeState.STARTING)
        RolloutExecutor._transition(node, NodeState.POLLING)
        RolloutExecutor._transition(node, NodeState.POLLING)
        RolloutExecutor._transition(node, NodeState.HEALTHY)
        assert node.state.terminal

    @pytest.mark.asyncio
    async def test_report_is_sealed_after_rollout(self, three_tier):
        report = await RolloutExecutor().execute(three_tier)
        assert report.sealed
        with pytest.raises(RuntimeError, match="sealed"):
            report.record(NodeOutcome("late", NodeState.HEALTHY))

    def test_outcome_recorded_once(self):
        report = VerificationReport(["db"])
        report.record(NodeOutcome("db", NodeState.HEALTHY))
        with pytest.raises(RuntimeError, match="already recorded"):
            report.record(NodeOutcome("db", NodeState.FAILED, "x"))

    @pytest.mark.asyncio
    async def test_history_tracks_attempts(self):
        nodes = [make_node("api", results=["unhealthy", "healthy"])]
        report = await RolloutExecutor().execute(nodes)

        events = [h["event"] for h in report.history]
        assert events[0] == "rollout_start"
        assert events[-1] == "rollout_finished"
        attempts = [h for h in report.history if h["event"] == "probe_attempt"]
        assert [a["status"] for a in attempts] == ["unhealthy", "healthy"]
        finished = [h for h in report.history if h["event"] == "node_finished"]
        assert finished == [{"event": "node_finished", "node": "api", "state": "healthy",
                             "reason": None, "attempts": 2}]

    @pytest.mark.asyncio
    async def test_report_lines_and_dict(self):
        nodes = [
            make_node("db"),
            make_node("api", deps=["db"], results=["unhealthy"], max_attempts=2),
            make_node("ui", deps=["api"]),
        ]
        report = await RolloutExecutor().execute(nodes)

        lines = report.format_lines()
        assert lines[0] == "db\thealthy\t-"
        assert lines[1].startswith("api\ttimed_out\ttimeout")
        assert lines[2] == "ui\tfailed\tdependency unhealthy"

        data = json.loads(json.dumps(report.to_dict()))
        assert data["success"] is False
        assert data["plan"] == ["db", "api", "ui"]
        assert [n["state"] for n in data["nodes"]] == ["healthy", "timed_out", "failed"]
        assert report.summary() == {"healthy": 1, "timed_out": 1, "failed": 1}

    @pytest.mark.asyncio
    async def test_second_concurrent_rollout_rejected(self):
        executor = RolloutExecutor()
        slow = [make_node("slow", results=["unhealthy"], max_attempts=100, interval_s=0.05)]
        task = asyncio.ensure_future(executor.execute(slow))
        await asyncio.sleep(0.02)

        with pytest.raises(RuntimeError, match="rollout already in progress"):
            await executor.execute([make_node("other")])

        executor.cancel()
        report = await task
        assert report.cancelled is True

    @pytest.mark.asyncio
    async def test_in_progress_flag_reset_after_failure(self):
        executor = RolloutExecutor()
        await executor.execute([make_node("a", results=["error"])])
        report = await executor.execute([make_node("b")])
        assert report.success is True
