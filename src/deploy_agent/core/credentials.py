"""Credential store: the four plaintext files of the configuration directory."""

from __future__ import annotations

from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict, SecretStr

from deploy_agent.core.exceptions import ConfigError

logger = structlog.get_logger()

SOURCE_LOCATION_FILE = "source_location"
SOURCE_SERVER_FILE = "source_server"
SOURCE_PASSWORD_FILE = "source_password"
TRIGGER_PASSWORD_FILE = "orchestrator_password"


class DeploymentConfig(BaseModel):
    """Snapshot of the credential directory, loaded once per update attempt."""

    model_config = ConfigDict(frozen=True)

    source_location: Path
    source_server_address: str
    source_server_secret: SecretStr
    trigger_secret: SecretStr


def _read_value(config_dir: Path, name: str) -> str:
    path = config_dir / name
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError as exc:
        raise ConfigError(f"Cannot read {path}: {exc.strerror or exc}") from exc


def load_deployment_config(config_dir: Path | str) -> DeploymentConfig:
    """Read the credential directory.

    Raises:
        ConfigError: a file is missing or unreadable, or holds a value the
            agent refuses to run with (empty trigger secret, empty or root
            deployment location).
    """
    config_dir = Path(config_dir)
    source_location = _read_value(config_dir, SOURCE_LOCATION_FILE)
    source_server = _read_value(config_dir, SOURCE_SERVER_FILE)
    source_password = _read_value(config_dir, SOURCE_PASSWORD_FILE)
    trigger_password = _read_value(config_dir, TRIGGER_PASSWORD_FILE)

    if not source_location:
        raise ConfigError(f"{SOURCE_LOCATION_FILE} is empty")
    location = Path(source_location)
    # The tree at this path is deleted on every update.
    if location.parts in ((), (location.anchor,)):
        raise ConfigError(f"{SOURCE_LOCATION_FILE} must name a directory below a root: {location}")
    if not source_server:
        raise ConfigError(f"{SOURCE_SERVER_FILE} is empty")
    if not trigger_password:
        raise ConfigError(f"{TRIGGER_PASSWORD_FILE} is empty")

    config = DeploymentConfig(
        source_location=location,
        source_server_address=source_server,
        source_server_secret=SecretStr(source_password),
        trigger_secret=SecretStr(trigger_password),
    )
    logger.debug(
        "Loaded deployment config",
        config_dir=str(config_dir),
        source_location=str(config.source_location),
        source_server=config.source_server_address,
    )
    return config
