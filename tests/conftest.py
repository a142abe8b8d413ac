import asyncio

import pytest

from rollout_orchestrator.models import RetryPolicy, ServiceNode
from rollout_orchestrator.probes import ScriptedProbe


class SpyAction:
    """Startup action that counts its calls and can fail or stall"""

    def __init__(self, fail=False, delay=0.0):
        self.fail = fail
        self.delay = delay
        self.calls = 0

    async def __call__(self, node):
        self.calls += 1
        if self.delay > 0:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError(f"could not start {node.name}")


def make_node(name, deps=(), results=("healthy",), max_attempts=3, interval_s=0.0, total_budget_s=None,
              action=None, **kwargs):
    return ServiceNode(
        name=name,
        depends_on=tuple(deps),
        startup=action if action is not None else SpyAction(),
        probe=ScriptedProbe(list(results)),
        retry=RetryPolicy(max_attempts=max_attempts, interval_s=interval_s, total_budget_s=total_budget_s),
        **kwargs
    )


@pytest.fixture
def three_tier():
    """db <- api <- ui, all healthy on the first probe"""
    return [
        make_node("db"),
        make_node("api", deps=["db"]),
        make_node("ui", deps=["api"]),
    ]
