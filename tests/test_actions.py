import sys

import pytest

from rollout_orchestrator.actions import CommandAction, ComposeUpAction, build_action
from rollout_orchestrator.errors import ConfigurationError, StartupError
from rollout_orchestrator.models import ServiceNode


class TestCommandAction:

    @pytest.mark.asyncio
    async def test_success(self):
        await CommandAction([sys.executable, "-c", "print('up')"])(ServiceNode("web"))

    @pytest.mark.asyncio
    async def test_non_zero_exit_raises(self):
        action = CommandAction([sys.executable, "-c", "import sys; sys.stderr.write('boom'); sys.exit(3)"])
        with pytest.raises(StartupError, match="code 3: boom"):
            await action(ServiceNode("web"))

    @pytest.mark.asyncio
    async def test_missing_executable_raises(self):
        with pytest.raises(StartupError, match="cannot run"):
            await CommandAction(["no-such-binary-xyz"])(ServiceNode("web"))

    @pytest.mark.asyncio
    async def test_env_is_merged(self):
        script = "import os, sys; sys.exit(0 if os.environ.get('APP_MODE') == 'vm' and 'PATH' in os.environ else 1)"
        await CommandAction([sys.executable, "-c", script], env={"APP_MODE": "vm"})(ServiceNode("web"))

    @pytest.mark.asyncio
    async def test_runs_in_cwd(self, tmp_path):
        script = "import os; open('marker', 'w').close()"
        await CommandAction([sys.executable, "-c", script], cwd=str(tmp_path))(ServiceNode("web"))
        assert (tmp_path / "marker").exists()

    def test_empty_argv(self):
        with pytest.raises(ConfigurationError):
            CommandAction([])


class TestComposeUpAction:

    def test_argv(self):
        action = ComposeUpAction("openwebui", project_dir="/app", build=True)
        assert action.argv == ["docker", "compose", "up", "-d", "--build", "openwebui"]
        assert action.cwd == "/app"

    def test_legacy_binary(self):
        action = ComposeUpAction("mcpo-tools", command=["docker-compose"])
        assert action.argv == ["docker-compose", "up", "-d", "mcpo-tools"]


class TestBuildAction:

    def test_none_and_noop(self):
        assert build_action(None) is None
        assert build_action({"type": "noop"}) is None

    def test_command(self):
        action = build_action({"type": "command", "argv": ["true"], "cwd": "/tmp"})
        assert isinstance(action, CommandAction)
        assert action.argv == ["true"]

    def test_compose(self):
        action = build_action({"type": "compose", "service": "web", "build": True})
        assert isinstance(action, ComposeUpAction)
        assert "--build" in action.argv

    def test_missing_field(self):
        with pytest.raises(ConfigurationError, match="'service'"):
            build_action({"type": "compose"})

    def test_unknown_type(self):
        with pytest.raises(ConfigurationError, match="unknown startup type"):
            build_action({"type": "ssh"})
