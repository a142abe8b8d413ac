from dataclasses import asdict

from .models import NodeState


class VerificationReport:
    """Final state of every node in a rollout.

    Filled in by the executor as nodes finish, then sealed. A sealed report
    no longer accepts outcomes.
    """

    def __init__(self, plan=(), dry_run=False):
        self.plan = tuple(plan)
        self.dry_run = dry_run
        self.cancelled = False
        self.outcomes = {}  # node name -> NodeOutcome
        self.history = []  # Rollout-wide events in the order they happened
        self._sealed = False

    def record(self, outcome):
        if self._sealed:
            raise RuntimeError("report is sealed")
        if outcome.name in self.outcomes:
            raise RuntimeError(f"outcome for {outcome.name} already recorded")
        self.outcomes[outcome.name] = outcome

    def add_event(self, event, **details):
        if self._sealed:
            raise RuntimeError("report is sealed")
        self.history.append({"event": event, **details})

    def seal(self):
        self._sealed = True

    @property
    def sealed(self):
        return self._sealed

    def __getitem__(self, name):
        return self.outcomes[name]

    def __contains__(self, name):
        return name in self.outcomes

    def state_of(self, name):
        outcome = self.outcomes.get(name)
        return outcome.state if outcome else None

    @property
    def success(self):
        if self.dry_run:
            return not self.cancelled
        return all(self.state_of(name) == NodeState.HEALTHY for name in self.plan)

    @property
    def exit_code(self):
        return 0 if self.success else 1

    @property
    def failed_nodes(self):
        return [o.name for o in self.ordered() if o.state in (NodeState.FAILED, NodeState.TIMED_OUT)]

    def ordered(self):
        """Outcomes in plan order"""
        return [self.outcomes[name] for name in self.plan if name in self.outcomes]

    def summary(self):
        counts = {}
        for outcome in self.outcomes.values():
            counts[outcome.state.value] = counts.get(outcome.state.value, 0) + 1
        return counts

    def to_dict(self):
        return {
            "success": self.success,
            "dry_run": self.dry_run,
            "cancelled": self.cancelled,
            "plan": list(self.plan),
            "nodes": [
                {**asdict(o), "state": o.state.value, "elapsed_s": round(o.elapsed_s, 3)}
                for o in self.ordered()
            ],
            "history": list(self.history),
        }

    def format_lines(self):
        """One tab-separated 'name state reason' line per node"""
        return [f"{o.name}\t{o.state.value}\t{o.reason or '-'}" for o in self.ordered()]
