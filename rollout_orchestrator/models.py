from dataclasses import dataclass, field
from enum import Enum

from .errors import ConfigurationError


class NodeState(str, Enum):
    PENDING = "pending"
    STARTING = "starting"
    POLLING = "polling"
    HEALTHY = "healthy"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def terminal(self):
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({NodeState.HEALTHY, NodeState.FAILED, NodeState.TIMED_OUT})


class ProbeStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    ERROR = "error"


@dataclass(frozen=True)
class ProbeResult:
    status: ProbeStatus
    detail: str = None

    @classmethod
    def healthy(cls, detail=None):
        return cls(ProbeStatus.HEALTHY, detail)

    @classmethod
    def unhealthy(cls, detail=None):
        return cls(ProbeStatus.UNHEALTHY, detail)

    @classmethod
    def error(cls, detail):
        return cls(ProbeStatus.ERROR, detail)


@dataclass(frozen=True)
class RetryPolicy:
    """How long to keep polling a node before giving up"""
    max_attempts: int = 20  # Probe invocations per node
    interval_s: float = 15.0  # Fixed wait between attempts
    total_budget_s: float = None  # Wall-clock ceiling for the whole polling phase

    def __post_init__(self):
        if isinstance(self.max_attempts, bool) or not isinstance(self.max_attempts, int) or self.max_attempts < 1:
            raise ConfigurationError(f"max_attempts must be a positive integer, got {self.max_attempts!r}")
        if self.interval_s < 0:
            raise ConfigurationError(f"interval_s must be >= 0, got {self.interval_s!r}")
        if self.total_budget_s is not None and self.total_budget_s <= 0:
            raise ConfigurationError(f"total_budget_s must be > 0, got {self.total_budget_s!r}")


@dataclass(eq=False)
class ServiceNode:
    name: str
    depends_on: tuple = ()
    startup: object = None  # async callable(node); None means nothing to start
    probe: object = None  # HealthProbe
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    startup_timeout_s: float = None
    probe_timeout_s: float = None
    state: NodeState = NodeState.PENDING  # Owned by the executor

    def __post_init__(self):
        if not self.name:
            raise ConfigurationError("node name must not be empty")
        # keep declaration order, drop repeats
        self.depends_on = tuple(dict.fromkeys(self.depends_on))


@dataclass(frozen=True)
class RolloutPlan:
    order: tuple

    def __iter__(self):
        return iter(self.order)

    def __len__(self):
        return len(self.order)


@dataclass(frozen=True)
class NodeOutcome:
    name: str
    state: NodeState
    reason: str = None  # None when healthy
    attempts: int = 0  # Probe invocations made
    elapsed_s: float = 0.0


@dataclass
class RolloutConfig:
    """Everything one rollout needs, passed explicitly instead of read from globals"""
    nodes: list = field(default_factory=list)
    default_retry: RetryPolicy = field(default_factory=RetryPolicy)
    probe_timeout_s: float = 10.0
    startup_timeout_s: float = 600.0
    required_env: list = field(default_factory=list)
