"""Update coordinator: single-flight fetch, rebuild and prune of the deployment.

One attempt runs these steps strictly in order, holding the update slot:

1. Reload the deployment config from the credential directory
2. Delete the current deployment tree
3. Fetch and extract the latest release archive into it
4. Rebuild and restart the container stack
5. Prune unused images

The first failing step aborts the attempt. Nothing is retried or rolled back.
"""

from __future__ import annotations

import hmac
import shutil
import threading
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

import structlog
from prometheus_client import Counter, Histogram
from pydantic import BaseModel, Field

from deploy_agent.core.credentials import DeploymentConfig, load_deployment_config
from deploy_agent.core.exceptions import BusyError, ConfigError, DeployAgentError, FetchError, UnauthorizedError
from deploy_agent.deploy.fetch import fetch_archive
from deploy_agent.deploy.stack import ComposeStackController, StackController
from deploy_agent.utils.logging import bind_attempt_context, clear_attempt_context

logger = structlog.get_logger()

UPDATE_ATTEMPTS = Counter(
    "deploy_agent_update_attempts_total",
    "Update attempts by outcome",
    ["outcome"],
)

UPDATE_DURATION = Histogram(
    "deploy_agent_update_duration_seconds",
    "Duration of update attempts that acquired the update slot",
)

Fetcher = Callable[..., int]
ControllerFactory = Callable[[Path], StackController]


class UpdateResult(BaseModel):
    attempt_id: str
    steps_completed: List[str] = Field(default_factory=list)
    entries_written: int = 0
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None


class UpdateCoordinator:
    """Owns the update slot and sequences fetcher and stack controller."""

    def __init__(
        self,
        config_dir: Path | str,
        *,
        fetcher: Fetcher = fetch_archive,
        controller_factory: ControllerFactory = ComposeStackController,
        fetch_timeout: Optional[float] = None,
    ):
        """Initialize the coordinator.

        Args:
            config_dir: Credential directory, re-read on every attempt
            fetcher: Callable replacing ``fetch_archive`` (same signature)
            controller_factory: Builds a stack controller for a deployment tree
            fetch_timeout: Upstream request timeout in seconds, None for no timeout

        Raises:
            ConfigError: the credential directory is unusable at startup
        """
        self.config_dir = Path(config_dir)
        self._fetcher = fetcher
        self._controller_factory = controller_factory
        self._fetch_timeout = fetch_timeout

        self._slot = threading.Lock()
        self._state = "idle"
        self._config = load_deployment_config(self.config_dir)
        self.last_result: Optional[UpdateResult] = None
        self.last_error: Optional[DeployAgentError] = None

    @property
    def state(self) -> str:
        return self._state

    @property
    def is_busy(self) -> bool:
        return self._slot.locked()

    @property
    def config(self) -> DeploymentConfig:
        """Most recently loaded deployment config."""
        return self._config

    def authenticate(self, candidate: Optional[str]) -> None:
        """Check a trigger secret against the current credential directory.

        An unreadable directory falls back to the last loaded secret so that
        unauthenticated callers always get the same answer.

        Raises:
            UnauthorizedError: ``candidate`` is missing or wrong
        """
        try:
            config = self._reload_config()
        except ConfigError as exc:
            logger.warning("Using last loaded trigger secret", error=str(exc))
            config = self._config
        expected = config.trigger_secret.get_secret_value().encode("utf-8")
        if candidate is None:
            raise UnauthorizedError("Unauthorized")
        # Header values arrive decoded as latin-1; re-encoding restores the raw bytes.
        try:
            received = candidate.encode("latin-1")
        except UnicodeEncodeError:
            raise UnauthorizedError("Unauthorized") from None
        if not hmac.compare_digest(received, expected):
            raise UnauthorizedError("Unauthorized")

    def attempt_update(self) -> UpdateResult:
        """Run one full update, or fail immediately if one is running.

        Raises:
            BusyError: another attempt holds the update slot
            ConfigError, FetchError, DeployError, PruneError: the failing step
        """
        if not self._slot.acquire(blocking=False):
            UPDATE_ATTEMPTS.labels(outcome=BusyError.__name__).inc()
            logger.warning("Update rejected, another update is in progress")
            raise BusyError("Update already in progress")

        result = UpdateResult(attempt_id=uuid.uuid4().hex[:12])
        bind_attempt_context(result.attempt_id)
        self._state = "running"
        start = time.monotonic()
        logger.info("Update started")
        try:
            self._run_steps(result)
            result.duration_seconds = round(time.monotonic() - start, 2)
            result.completed_at = datetime.now(timezone.utc)
            self.last_result = result
            UPDATE_ATTEMPTS.labels(outcome="success").inc()
            logger.info(
                "Update completed",
                entries=result.entries_written,
                duration_seconds=result.duration_seconds,
            )
            return result
        except DeployAgentError as exc:
            self.last_error = exc
            UPDATE_ATTEMPTS.labels(outcome=exc.code).inc()
            logger.error(
                "Update failed",
                error_kind=exc.code,
                error=str(exc),
                steps_completed=result.steps_completed,
            )
            raise
        finally:
            UPDATE_DURATION.observe(time.monotonic() - start)
            self._state = "idle"
            self._slot.release()
            clear_attempt_context()

    def _run_steps(self, result: UpdateResult) -> None:
        config = self._reload_config()
        result.steps_completed.append("load_config")

        self._clear_tree(config.source_location)
        result.steps_completed.append("clear_tree")

        result.entries_written = self._fetcher(
            config.source_location,
            config.source_server_address,
            config.source_server_secret.get_secret_value(),
            timeout=self._fetch_timeout,
        )
        result.steps_completed.append("fetch")

        controller = self._controller_factory(config.source_location)
        controller.rebuild_and_restart()
        result.steps_completed.append("rebuild_and_restart")

        controller.prune_unused()
        result.steps_completed.append("prune_unused")

    def _reload_config(self) -> DeploymentConfig:
        self._config = load_deployment_config(self.config_dir)
        return self._config

    @staticmethod
    def _clear_tree(location: Path) -> None:
        """Remove the deployment tree; an absent tree is already clean."""
        try:
            if location.is_symlink() or location.is_file():
                location.unlink()
            else:
                shutil.rmtree(location)
        except FileNotFoundError:
            logger.info("No deployment tree to remove", path=str(location))
            return
        except OSError as exc:
            raise FetchError(f"Cannot remove deployment tree {location}: {exc}") from exc
        logger.info("Removed deployment tree", path=str(location))
