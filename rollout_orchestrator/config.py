"""Loading rollout definitions and pre-flight checks of required settings."""
import json
import os
import re
from dataclasses import replace

from dotenv import dotenv_values

from .actions import build_action
from .errors import ConfigurationError, MissingConfigurationError
from .logger import get_logger
from .models import RetryPolicy, RolloutConfig, ServiceNode
from .probes import build_probe

logger = get_logger("config")

# ${NAME} or ${NAME:-default}, as in compose files
_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")

_NODE_KEYS = {"name", "depends_on", "startup", "probe", "retry", "startup_timeout_s", "probe_timeout_s"}
_TOP_LEVEL_KEYS = {"defaults", "required_env", "nodes"}


def load_env_file(path):
    """Read KEY=VALUE pairs from a dotenv file"""
    if not os.path.exists(path):
        raise FileNotFoundError(f"env file not found: {path}")
    return {k: v for k, v in dotenv_values(path).items() if v is not None}


def check_required_env(names, environ=None):
    """Fail fast, listing every required variable that is unset or empty"""
    environ = os.environ if environ is None else environ
    missing = [name for name in names if not environ.get(name)]
    if missing:
        raise MissingConfigurationError(missing)
    logger.info(f"All {len(names)} required environment variables are set")


def interpolate(value, environ, missing=None):
    """Substitute ${VAR} references in every string inside value"""
    if isinstance(value, str):
        def _sub(match):
            name, default = match.group(1), match.group(2)
            if environ.get(name):
                return environ[name]
            if default is not None:
                return default
            if missing is not None and name not in missing:
                missing.append(name)
            return match.group(0)

        return _VAR_PATTERN.sub(_sub, value)
    if isinstance(value, list):
        return [interpolate(v, environ, missing) for v in value]
    if isinstance(value, dict):
        return {k: interpolate(v, environ, missing) for k, v in value.items()}
    return value


def _number(value, where, allow_none=True):
    if value is None and allow_none:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"{where} must be a number, got {value!r}")
    return float(value)


def parse_retry(data, base, where):
    """Overlay retry settings from data on top of base"""
    if data is None:
        return base
    if not isinstance(data, dict):
        raise ConfigurationError(f"{where}.retry must be an object")
    unknown = set(data) - {"max_attempts", "interval_s", "total_budget_s"}
    if unknown:
        raise ConfigurationError(f"{where}.retry has unknown keys: {', '.join(sorted(unknown))}")

    changes = {}
    if "max_attempts" in data:
        changes["max_attempts"] = data["max_attempts"]
    if "interval_s" in data:
        changes["interval_s"] = _number(data["interval_s"], f"{where}.retry.interval_s", allow_none=False)
    if "total_budget_s" in data:
        changes["total_budget_s"] = _number(data["total_budget_s"], f"{where}.retry.total_budget_s")
    try:
        return replace(base, **changes)
    except ConfigurationError as e:
        raise ConfigurationError(f"{where}.retry: {e}") from e


def _parse_node(data, idx, config):
    if not isinstance(data, dict):
        raise ConfigurationError(f"nodes[{idx}] must be an object")
    name = data.get("name")
    if not isinstance(name, str) or not name:
        raise ConfigurationError(f"nodes[{idx}] needs a non-empty string name")
    where = f"node {name!r}"

    unknown = set(data) - _NODE_KEYS
    if unknown:
        raise ConfigurationError(f"{where} has unknown keys: {', '.join(sorted(unknown))}")

    depends_on = data.get("depends_on", [])
    if not isinstance(depends_on, list) or not all(isinstance(d, str) for d in depends_on):
        raise ConfigurationError(f"{where}: depends_on must be a list of node names")

    if "probe" not in data:
        raise ConfigurationError(f"{where} has no probe")

    probe_timeout = _number(data.get("probe_timeout_s"), f"{where}.probe_timeout_s")
    try:
        probe = build_probe(data["probe"], default_timeout_s=probe_timeout or config.probe_timeout_s)
        startup = build_action(data.get("startup"))
    except ConfigurationError as e:
        raise ConfigurationError(f"{where}: {e}") from e

    return ServiceNode(
        name=name,
        depends_on=tuple(depends_on),
        startup=startup,
        probe=probe,
        retry=parse_retry(data.get("retry"), config.default_retry, where),
        startup_timeout_s=_number(data.get("startup_timeout_s"), f"{where}.startup_timeout_s"),
        probe_timeout_s=probe_timeout,
    )


def parse_rollout_config(data, environ=None):
    """Build a RolloutConfig from an already-decoded rollout spec"""
    environ = os.environ if environ is None else environ
    if not isinstance(data, dict):
        raise ConfigurationError("rollout spec must be a JSON object")
    unknown = set(data) - _TOP_LEVEL_KEYS
    if unknown:
        raise ConfigurationError(f"rollout spec has unknown keys: {', '.join(sorted(unknown))}")

    missing = []
    data = interpolate(data, environ, missing)
    if missing:
        raise MissingConfigurationError(missing)

    defaults = data.get("defaults") or {}
    if not isinstance(defaults, dict):
        raise ConfigurationError("defaults must be an object")

    config = RolloutConfig()
    config.default_retry = parse_retry(defaults.get("retry"), RetryPolicy(), "defaults")
    if "probe_timeout_s" in defaults:
        config.probe_timeout_s = _number(defaults["probe_timeout_s"], "defaults.probe_timeout_s")
    if "startup_timeout_s" in defaults:
        config.startup_timeout_s = _number(defaults["startup_timeout_s"], "defaults.startup_timeout_s")

    required = data.get("required_env", [])
    if not isinstance(required, list) or not all(isinstance(r, str) for r in required):
        raise ConfigurationError("required_env must be a list of variable names")
    config.required_env = list(required)

    nodes = data.get("nodes")
    if not isinstance(nodes, list) or not nodes:
        raise ConfigurationError("rollout spec needs a non-empty nodes list")
    config.nodes = [_parse_node(n, i, config) for i, n in enumerate(nodes)]

    logger.debug(f"Loaded {len(config.nodes)} nodes")
    return config


def load_rollout_config(path, environ=None):
    with open(path) as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"{path} is not valid JSON: {e}") from e
    return parse_rollout_config(data, environ)
