"""Stack controller: rebuilds, restarts and prunes the container stack."""

from __future__ import annotations

import abc
import subprocess
from pathlib import Path
from typing import List, Optional, Type

import structlog

from deploy_agent.core.exceptions import CommandError, DeployError, PruneError

logger = structlog.get_logger()


class StackController(abc.ABC):
    """Operations the update coordinator runs against the deployment tree."""

    @abc.abstractmethod
    def rebuild_and_restart(self) -> None:
        """Rebuild all images and force-recreate all containers, detached.

        Raises:
            DeployError: the stack could not be rebuilt or restarted.
        """

    @abc.abstractmethod
    def prune_unused(self) -> None:
        """Remove dangling images left behind by earlier builds.

        Raises:
            PruneError: pruning failed.
        """


class ComposeStackController(StackController):
    """``docker compose`` based controller, run in the deployment tree."""

    def __init__(self, workdir: Path, *, docker_binary: str = "docker", timeout: Optional[float] = None):
        self.workdir = Path(workdir)
        self.docker_binary = docker_binary
        self.timeout = timeout

    def rebuild_and_restart(self) -> None:
        self._run(
            [self.docker_binary, "compose", "up", "--force-recreate", "--build", "-d"],
            DeployError,
        )

    def prune_unused(self) -> None:
        self._run([self.docker_binary, "image", "prune", "-f"], PruneError)

    def _run(self, cmd: List[str], error_cls: Type[CommandError]) -> str:
        """Run ``cmd`` to completion and return its combined output."""
        command = " ".join(cmd)
        logger.info("Running stack command", command=command, cwd=str(self.workdir))
        try:
            proc = subprocess.run(
                cmd,
                cwd=self.workdir,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as exc:
            output = exc.output or ""
            if isinstance(output, bytes):
                output = output.decode(errors="replace")
            logger.error("Stack command timed out", command=command, timeout=self.timeout)
            raise error_cls(f"{command} timed out after {self.timeout}s", output=output) from exc
        except OSError as exc:
            logger.error("Stack command could not start", command=command, error=str(exc))
            raise error_cls(f"{command} could not start", output=str(exc)) from exc

        output = proc.stdout or ""
        if proc.returncode != 0:
            logger.error("Stack command failed", command=command, exit_code=proc.returncode, output=output[-2000:])
            raise error_cls(
                f"{command} exited with status {proc.returncode}",
                exit_code=proc.returncode,
                output=output,
            )
        logger.info("Stack command finished", command=command, exit_code=proc.returncode)
        return output
