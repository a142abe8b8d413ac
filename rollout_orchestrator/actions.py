"""Startup actions: the thing run to bring a node up.

An action is any async callable taking the node. It returns on success and
raises on failure; its output is not interpreted. Actions must be safe to run
again on a service that is already up.
"""
import asyncio
import os

from .errors import ConfigurationError, StartupError
from .logger import get_logger

logger = get_logger("actions")


class CommandAction:
    """Run an external command; a non-zero exit is a failed start"""

    def __init__(self, argv, cwd=None, env=None):
        if not argv:
            raise ConfigurationError("command action needs a non-empty argv")
        self.argv = [str(a) for a in argv]
        self.cwd = cwd
        self.env = dict(env) if env else None

    def __repr__(self):
        return f"{type(self).__name__}({self.argv!r})"

    async def __call__(self, node):
        env = {**os.environ, **self.env} if self.env else None
        logger.info(f"[{node.name}] running: {' '.join(self.argv)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.argv,
                cwd=self.cwd,
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, NotADirectoryError, PermissionError) as e:
            raise StartupError(f"cannot run {self.argv[0]}: {e}") from e

        try:
            stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
            raise

        if stdout:
            logger.debug(f"[{node.name}] stdout: {stdout.decode('utf-8', errors='replace').strip()}")
        if proc.returncode != 0:
            tail = stderr.decode("utf-8", errors="replace").strip()[-500:]
            raise StartupError(f"{self.argv[0]} exited with code {proc.returncode}: {tail}")


class ComposeUpAction(CommandAction):
    """`docker compose up -d <service>`, which leaves running services alone"""

    def __init__(self, service, project_dir=None, command=("docker", "compose"), build=False, env=None):
        argv = [*command, "up", "-d"]
        if build:
            argv.append("--build")
        argv.append(service)
        super().__init__(argv, cwd=project_dir, env=env)
        self.service = service


def build_action(spec):
    """Create a startup action from its config mapping. None means no-op."""
    if spec is None:
        return None
    if not isinstance(spec, dict):
        raise ConfigurationError(f"startup must be an object, got {type(spec).__name__}")

    kind = spec.get("type")
    try:
        if kind == "noop":
            return None
        if kind == "command":
            return CommandAction(spec["argv"], cwd=spec.get("cwd"), env=spec.get("env"))
        if kind == "compose":
            return ComposeUpAction(
                spec["service"],
                project_dir=spec.get("project_dir"),
                command=spec.get("command", ("docker", "compose")),
                build=bool(spec.get("build", False)),
                env=spec.get("env"),
            )
    except KeyError as e:
        raise ConfigurationError(f"{kind} startup is missing field {e.args[0]!r}") from e

    raise ConfigurationError(f"unknown startup type {kind!r}")
