import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from deploy_agent.core.exceptions import DeployError, PruneError
from deploy_agent.deploy.stack import ComposeStackController


def _completed(returncode: int, stdout: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout)


def test_rebuild_runs_compose_up_in_tree(tmp_path: Path):
    controller = ComposeStackController(tmp_path)
    with patch("deploy_agent.deploy.stack.subprocess.run", return_value=_completed(0, "ok")) as run:
        controller.rebuild_and_restart()

    run.assert_called_once()
    args, kwargs = run.call_args
    assert args[0] == ["docker", "compose", "up", "--force-recreate", "--build", "-d"]
    assert kwargs["cwd"] == tmp_path
    assert kwargs["stderr"] == subprocess.STDOUT
    assert kwargs["timeout"] is None


def test_prune_runs_image_prune_in_tree(tmp_path: Path):
    controller = ComposeStackController(tmp_path, docker_binary="/usr/local/bin/docker", timeout=30)
    with patch("deploy_agent.deploy.stack.subprocess.run", return_value=_completed(0)) as run:
        controller.prune_unused()

    args, kwargs = run.call_args
    assert args[0] == ["/usr/local/bin/docker", "image", "prune", "-f"]
    assert kwargs["cwd"] == tmp_path
    assert kwargs["timeout"] == 30


def test_rebuild_failure_carries_exit_code_and_output(tmp_path: Path):
    controller = ComposeStackController(tmp_path)
    with patch("deploy_agent.deploy.stack.subprocess.run", return_value=_completed(1, "no such file")):
        with pytest.raises(DeployError) as exc_info:
            controller.rebuild_and_restart()

    assert exc_info.value.exit_code == 1
    assert exc_info.value.output == "no such file"
    assert "no such file" in str(exc_info.value)
    assert exc_info.value.code == "DeployError"


def test_prune_failure_is_prune_error(tmp_path: Path):
    controller = ComposeStackController(tmp_path)
    with patch("deploy_agent.deploy.stack.subprocess.run", return_value=_completed(125, "daemon not running")):
        with pytest.raises(PruneError) as exc_info:
            controller.prune_unused()

    assert not isinstance(exc_info.value, DeployError)
    assert exc_info.value.exit_code == 125
    assert exc_info.value.code == "PruneError"


def test_missing_binary_is_deploy_error(tmp_path: Path):
    controller = ComposeStackController(tmp_path, docker_binary=str(tmp_path / "no-docker"))
    with pytest.raises(DeployError) as exc_info:
        controller.rebuild_and_restart()
    assert exc_info.value.exit_code is None
    assert exc_info.value.output


def test_timeout_is_reported_with_partial_output(tmp_path: Path):
    controller = ComposeStackController(tmp_path, timeout=5)
    timeout = subprocess.TimeoutExpired(cmd=["docker"], timeout=5, output=b"pulling layers")
    with patch("deploy_agent.deploy.stack.subprocess.run", side_effect=timeout):
        with pytest.raises(PruneError) as exc_info:
            controller.prune_unused()
    assert exc_info.value.exit_code is None
    assert exc_info.value.output == "pulling layers"
    assert "timed out" in str(exc_info.value)


class TestWithFakeDockerBinary:
    """Runs a real process: a shell script standing in for the docker CLI."""

    def _script(self, tmp_path: Path, body: str) -> Path:
        script = tmp_path / "fake-docker"
        script.write_text("#!/bin/sh\n" + body)
        script.chmod(0o755)
        return script

    def test_success_with_combined_output(self, tmp_path: Path):
        workdir = tmp_path / "tree"
        workdir.mkdir()
        script = self._script(tmp_path, 'echo "args: $*"\necho "warning" >&2\npwd > invoked-in\n')
        controller = ComposeStackController(workdir, docker_binary=str(script))

        controller.rebuild_and_restart()

        assert Path((workdir / "invoked-in").read_text().strip()).resolve() == workdir.resolve()

    def test_failure_output_includes_stderr(self, tmp_path: Path):
        workdir = tmp_path / "tree"
        workdir.mkdir()
        script = self._script(tmp_path, 'echo "open docker-compose.yml: no such file" >&2\nexit 3\n')
        controller = ComposeStackController(workdir, docker_binary=str(script))

        with pytest.raises(DeployError) as exc_info:
            controller.rebuild_and_restart()

        assert exc_info.value.exit_code == 3
        assert "no such file" in exc_info.value.output
