import asyncio
import time

from .logger import get_logger
from .models import NodeOutcome, NodeState
from .planner import RolloutPlanner
from .report import VerificationReport
from .retry import CANCELLED, poll_until_healthy

DEPENDENCY_UNHEALTHY = "dependency unhealthy"
DRY_RUN = "dry run"

# Allowed moves of the per-node state machine; terminal states have none
_TRANSITIONS = {
    NodeState.PENDING: {NodeState.STARTING, NodeState.FAILED},
    NodeState.STARTING: {NodeState.POLLING, NodeState.FAILED},
    NodeState.POLLING: {NodeState.POLLING, NodeState.HEALTHY, NodeState.FAILED, NodeState.TIMED_OUT},
}


class _Cancelled(Exception):
    pass


class RolloutExecutor:
    def __init__(self, planner=None, cancel_event=None, probe_timeout_s=10.0, startup_timeout_s=None,
                 clock=time.monotonic):
        self.planner = planner if planner else RolloutPlanner()
        self.cancel_event = cancel_event if cancel_event is not None else asyncio.Event()
        self.probe_timeout_s = probe_timeout_s
        self.startup_timeout_s = startup_timeout_s
        self.clock = clock
        self.logger = get_logger("engine")
        self._in_progress = False

    def cancel(self):
        """Ask a running rollout to stop; safe to call from a signal handler.

        A cancel set before execute() cancels the next rollout. The signal is
        cleared once that rollout has finished.
        """
        self.cancel_event.set()

    @property
    def cancelled(self):
        return self.cancel_event.is_set()

    @staticmethod
    def _transition(node, state):
        if state not in _TRANSITIONS.get(node.state, ()):
            raise RuntimeError(f"illegal state change for {node.name}: {node.state.value} -> {state.value}")
        node.state = state

    def _finish(self, node, report, state, reason=None, attempts=0, elapsed_s=0.0):
        """Move a node to its terminal state and record it"""
        self._transition(node, state)
        report.record(NodeOutcome(node.name, state, reason, attempts, elapsed_s))
        report.add_event("node_finished", node=node.name, state=state.value, reason=reason, attempts=attempts)

        if state == NodeState.HEALTHY:
            self.logger.info(f"{node.name} is healthy")
        elif reason in (DEPENDENCY_UNHEALTHY, CANCELLED):
            self.logger.warning(f"{node.name} {state.value}: {reason}")
        else:
            self.logger.error(f"{node.name} {state.value}: {reason}")

    async def _invoke_startup(self, node):
        """Run the node's startup action, bounded by its timeout and the cancel signal"""
        if node.startup is None:
            return

        timeout = node.startup_timeout_s if node.startup_timeout_s is not None else self.startup_timeout_s
        action = asyncio.ensure_future(node.startup(node))
        waiter = asyncio.ensure_future(self.cancel_event.wait())
        try:
            done, _ = await asyncio.wait({action, waiter}, timeout=timeout,
                                         return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()

        if action in done:
            action.result()
            return

        action.cancel()
        await asyncio.gather(action, return_exceptions=True)
        if self.cancelled:
            raise _Cancelled()
        raise asyncio.TimeoutError(f"startup timed out after {timeout}s")

    async def _run_node(self, node, report):
        """Start one node and poll it to a terminal state"""
        blocked = [dep for dep in node.depends_on if report.state_of(dep) != NodeState.HEALTHY]
        if blocked:
            report.add_event("node_skipped", node=node.name, dependencies=blocked)
            self._finish(node, report, NodeState.FAILED, DEPENDENCY_UNHEALTHY)
            return

        self._transition(node, NodeState.STARTING)
        report.add_event("node_start", node=node.name)
        self.logger.info(f"Starting {node.name}")
        started = self.clock()

        try:
            await self._invoke_startup(node)
        except _Cancelled:
            self._finish(node, report, NodeState.FAILED, CANCELLED, elapsed_s=self.clock() - started)
            return
        except asyncio.TimeoutError as e:
            self._finish(node, report, NodeState.FAILED, str(e) or "startup timed out",
                         elapsed_s=self.clock() - started)
            return
        except Exception as e:
            self._finish(node, report, NodeState.FAILED, f"startup failed: {e}",
                         elapsed_s=self.clock() - started)
            return

        self._transition(node, NodeState.POLLING)
        if node.probe is None:
            self._finish(node, report, NodeState.HEALTHY, elapsed_s=self.clock() - started)
            return

        def on_attempt(attempt, result):
            self._transition(node, NodeState.POLLING)
            report.add_event("probe_attempt", node=node.name, attempt=attempt,
                             status=result.status.value, detail=result.detail)

        timeout = node.probe_timeout_s if node.probe_timeout_s is not None else self.probe_timeout_s
        outcome = await poll_until_healthy(
            node.probe, node.retry,
            probe_timeout_s=timeout,
            cancel_event=self.cancel_event,
            on_attempt=on_attempt,
            clock=self.clock,
            label=node.name,
        )
        self._finish(node, report, outcome.state, outcome.reason, outcome.attempts,
                     self.clock() - started)

    async def execute(self, nodes, dry_run=False):
        """Plan and bring up nodes in dependency order, returning the sealed report.

        ConfigurationError from planning propagates before anything is started.
        """
        if self._in_progress:
            raise RuntimeError("rollout already in progress")

        nodes = list(nodes)
        plan = self.planner.plan(nodes)
        by_name = {node.name: node for node in nodes}

        report = VerificationReport(plan.order, dry_run=dry_run)
        report.add_event("rollout_start", plan=list(plan.order), dry_run=dry_run)
        self.logger.info(f"Starting rollout of {len(plan)} nodes (dry_run={dry_run}): {', '.join(plan.order)}")

        # every invocation is a fresh rollout
        for node in nodes:
            node.state = NodeState.PENDING

        if dry_run:
            for name in plan:
                report.record(NodeOutcome(name, NodeState.PENDING, DRY_RUN))
            report.add_event("rollout_finished", success=True)
            report.seal()
            return report

        self._in_progress = True
        try:
            for name in plan:
                node = by_name[name]
                if self.cancelled:
                    self._finish(node, report, NodeState.FAILED, CANCELLED)
                    continue
                await self._run_node(node, report)
        finally:
            self._in_progress = False

        if self.cancelled:
            report.cancelled = True
            report.add_event("cancelled")
            # the signal is spent on this rollout; the executor can run again
            self.cancel_event.clear()
            self.logger.warning("Rollout cancelled; remaining nodes were not started")

        if report.success:
            self.logger.info(f"SUCCESS: all {len(plan)} nodes healthy")
        else:
            self.logger.warning(f"ROLLOUT FAILED: unhealthy nodes: {', '.join(report.failed_nodes)}")
        report.add_event("rollout_finished", success=report.success)
        report.seal()
        return report
