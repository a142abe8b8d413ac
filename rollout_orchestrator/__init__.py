from .models import (
    NodeState, ProbeStatus, ProbeResult, RetryPolicy, ServiceNode,
    RolloutPlan, NodeOutcome, RolloutConfig
)
from .errors import (
    ConfigurationError, DuplicateNodeError, UnknownDependencyError,
    CycleError, MissingConfigurationError, StartupError
)
from .probes import (
    HealthProbe, HttpStatusProbe, ContainerHealthProbe, TcpConnectProbe,
    ScriptedProbe, extract_health_field, build_probe
)
from .actions import CommandAction, ComposeUpAction, build_action
from .retry import PollResult, poll_until_healthy
from .planner import RolloutPlanner
from .report import VerificationReport
from .engine import RolloutExecutor

__all__ = [
    "NodeState", "ProbeStatus", "ProbeResult", "RetryPolicy", "ServiceNode",
    "RolloutPlan", "NodeOutcome", "RolloutConfig",
    "ConfigurationError", "DuplicateNodeError", "UnknownDependencyError",
    "CycleError", "MissingConfigurationError", "StartupError",
    "HealthProbe", "HttpStatusProbe", "ContainerHealthProbe", "TcpConnectProbe",
    "ScriptedProbe", "extract_health_field", "build_probe",
    "CommandAction", "ComposeUpAction", "build_action",
    "PollResult", "poll_until_healthy",
    "RolloutPlanner", "VerificationReport", "RolloutExecutor"
]
