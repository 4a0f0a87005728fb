"""Configuration management for the deploy agent."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process settings.

    Secrets and the deployment location are not settings: they live in the
    credential directory and are re-read on every trigger (see
    ``deploy_agent.core.credentials``).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server configuration
    host: str = Field("0.0.0.0", description="Server host")
    port: int = Field(1337, description="Trigger listener port")

    # Credential directory
    config_dir: str = Field("config", description="Directory holding the credential files")

    # External collaborators
    docker_binary: str = Field("docker", description="Container CLI executable")
    fetch_timeout_seconds: Optional[float] = Field(
        None,
        description="Timeout for the upstream archive request (unset = no timeout)",
    )
    command_timeout_seconds: Optional[float] = Field(
        None,
        description="Timeout for each container CLI invocation (unset = no timeout)",
    )

    # Observability
    log_level: str = Field("INFO")
    log_format: str = Field("json")
    metrics_enabled: bool = Field(True)
    metrics_port: int = Field(9090)
