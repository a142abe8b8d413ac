import asyncio
import time
from dataclasses import dataclass

from .logger import get_logger
from .models import NodeState, ProbeResult, ProbeStatus

logger = get_logger("retry")

CANCELLED = "cancelled"


@dataclass(frozen=True)
class PollResult:
    state: NodeState  # HEALTHY, TIMED_OUT or FAILED
    attempts: int
    elapsed_s: float
    reason: str = None
    cancelled: bool = False


async def wait_or_cancel(delay, cancel_event=None):
    """Sleep for delay seconds. Returns True if cancel_event fired first."""
    if cancel_event is None:
        await asyncio.sleep(delay)
        return False
    if cancel_event.is_set():
        return True
    if delay <= 0:
        await asyncio.sleep(0)
        return cancel_event.is_set()
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        return True
    except asyncio.TimeoutError:
        return False


async def _probe_once(probe, timeout_s):
    """Run one check; a probe that raises is reported as an error result"""
    try:
        if not timeout_s:
            return await probe.check()
        return await asyncio.wait_for(probe.check(), timeout=timeout_s)
    except asyncio.TimeoutError:
        if timeout_s:
            return ProbeResult.unhealthy(f"no answer within {timeout_s:g}s")
        return ProbeResult.error(f"{type(probe).__name__} timed out")
    except Exception as e:
        logger.debug(f"{type(probe).__name__} raised", exc_info=True)
        return ProbeResult.error(f"{type(e).__name__}: {e}")


async def poll_until_healthy(probe, policy, probe_timeout_s=None, cancel_event=None,
                             on_attempt=None, clock=time.monotonic, label="probe"):
    """Invoke probe until it is healthy or the policy gives up.

    Stops on the first of: a healthy result, max_attempts probes, the total
    budget running out, an error result (never retried) or cancellation.
    """
    started = clock()
    attempts = 0

    def _result(state, reason=None, cancelled=False):
        return PollResult(state, attempts, clock() - started, reason, cancelled)

    def _out_of_budget():
        logger.error(f"{label}: {policy.total_budget_s}s budget used up after {attempts} attempts")
        return _result(NodeState.TIMED_OUT, f"timeout: {policy.total_budget_s}s budget exhausted after {attempts} attempts")

    while True:
        if cancel_event is not None and cancel_event.is_set():
            return _result(NodeState.FAILED, CANCELLED, cancelled=True)

        attempts += 1
        timeout_s = probe_timeout_s
        if policy.total_budget_s is not None:
            # a single attempt never outlives the budget
            remaining = max(policy.total_budget_s - (clock() - started), 0.001)
            timeout_s = min(timeout_s, remaining) if timeout_s else remaining
        result = await _probe_once(probe, timeout_s)
        if on_attempt:
            on_attempt(attempts, result)

        if result.status == ProbeStatus.HEALTHY:
            logger.info(f"{label}: healthy after {attempts} attempt(s)")
            return _result(NodeState.HEALTHY)

        if result.status == ProbeStatus.ERROR:
            logger.error(f"{label}: probe error, not retrying: {result.detail}")
            return _result(NodeState.FAILED, f"probe error: {result.detail}")

        logger.info(f"{label}: health check attempt {attempts}/{policy.max_attempts} unhealthy ({result.detail})")

        if attempts >= policy.max_attempts:
            logger.error(f"{label}: still unhealthy after {attempts} attempts")
            return _result(NodeState.TIMED_OUT, f"timeout: unhealthy after {attempts} attempts ({result.detail})")

        delay = policy.interval_s
        if policy.total_budget_s is not None:
            remaining = policy.total_budget_s - (clock() - started)
            if remaining <= 0:
                return _out_of_budget()
            delay = min(delay, remaining)

        if await wait_or_cancel(delay, cancel_event):
            logger.warning(f"{label}: cancelled while waiting")
            return _result(NodeState.FAILED, CANCELLED, cancelled=True)

        if policy.total_budget_s is not None and clock() - started >= policy.total_budget_s:
            return _out_of_budget()
