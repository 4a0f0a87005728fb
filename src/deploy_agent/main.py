"""Main entry point for the deploy agent."""

import functools
import signal
import sys
from contextlib import asynccontextmanager
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI
from prometheus_client import start_http_server

from deploy_agent import __version__
from deploy_agent.api.middleware import (
    setup_error_handling,
    setup_logging_middleware,
    setup_metrics_middleware,
)
from deploy_agent.api.trigger import trigger_route
from deploy_agent.core.config import Settings
from deploy_agent.core.exceptions import ConfigError
from deploy_agent.deploy.coordinator import UpdateCoordinator
from deploy_agent.deploy.stack import ComposeStackController
from deploy_agent.utils.logging import setup_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = app.state.settings
    logger.info(
        "Starting deploy agent",
        version=__version__,
        host=settings.host,
        port=settings.port,
        config_dir=settings.config_dir,
    )
    yield
    logger.info("Shutting down deploy agent")


def build_coordinator(settings: Settings) -> UpdateCoordinator:
    """Create the process-wide coordinator from settings.

    Raises:
        ConfigError: the credential directory is unusable
    """
    controller_factory = functools.partial(
        ComposeStackController,
        docker_binary=settings.docker_binary,
        timeout=settings.command_timeout_seconds,
    )
    return UpdateCoordinator(
        settings.config_dir,
        controller_factory=controller_factory,
        fetch_timeout=settings.fetch_timeout_seconds,
    )


def create_app(settings: Optional[Settings] = None, coordinator: Optional[UpdateCoordinator] = None) -> FastAPI:
    """Create FastAPI application."""
    if settings is None:
        settings = Settings()

    # Setup logging
    setup_logging(settings.log_level, settings.log_format)

    if coordinator is None:
        coordinator = build_coordinator(settings)

    app = FastAPI(
        title="Deploy Agent",
        version=__version__,
        description="Pull the latest release, rebuild and restart the compose stack",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    app.state.settings = settings
    app.state.coordinator = coordinator

    # Setup middleware
    setup_error_handling(app)
    setup_logging_middleware(app)
    setup_metrics_middleware(app)

    # Catch-all: every path triggers an update
    app.router.routes.append(trigger_route)

    return app


def run(settings: Optional[Settings] = None):
    """Run the application."""
    if settings is None:
        settings = Settings()

    try:
        app = create_app(settings)
    except ConfigError as exc:
        logger.error("Cannot load credential directory", config_dir=settings.config_dir, error=str(exc))
        sys.exit(1)

    if settings.metrics_enabled:
        start_http_server(settings.metrics_port, addr=settings.host)
        logger.info("Metrics listener started", port=settings.metrics_port)

    def handle_sigterm(signum, frame):
        logger.info("Received SIGTERM, initiating graceful shutdown")
        sys.exit(0)

    signal.signal(signal.SIGTERM, handle_sigterm)

    # A single process: the update slot is per process.
    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        workers=1,
        log_config=None,  # We handle logging ourselves
        access_log=False,  # Handled by middleware
    )

    server = uvicorn.Server(config)
    server.run()


if __name__ == "__main__":
    run()
