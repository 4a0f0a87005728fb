"""API middleware for logging, metrics, and error handling."""

import time
import uuid
from typing import Callable

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse
from prometheus_client import Counter, Histogram
from starlette.exceptions import HTTPException as StarletteHTTPException

from deploy_agent.core.exceptions import DeployAgentError

logger = structlog.get_logger()

ERROR_KIND_HEADER = "X-Update-Error"

# Prometheus metrics
REQUEST_COUNT = Counter(
    "deploy_agent_http_requests_total",
    "Total HTTP requests",
    ["method", "status"],
)

REQUEST_DURATION = Histogram(
    "deploy_agent_http_request_duration_seconds",
    "HTTP request duration",
    ["method"],
)


def setup_error_handling(app: FastAPI) -> None:
    """Render errors as plain text for operators reading the response body."""

    @app.exception_handler(DeployAgentError)
    async def deploy_agent_error_handler(request: Request, exc: DeployAgentError) -> PlainTextResponse:
        return PlainTextResponse(
            str(exc),
            status_code=exc.status_code,
            headers={ERROR_KIND_HEADER: exc.code},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> PlainTextResponse:
        return PlainTextResponse(str(exc.detail), status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unexpected error", exc_info=exc)
        return PlainTextResponse(
            f"Unexpected error: {exc}",
            status_code=500,
            headers={ERROR_KIND_HEADER: "InternalError"},
        )


def setup_logging_middleware(app: FastAPI) -> None:
    """Setup request logging middleware."""

    @app.middleware("http")
    async def log_requests(request: Request, call_next: Callable) -> Response:
        """Log all requests."""
        request_id = str(uuid.uuid4())

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            client=request.client.host if request.client else None,
        )
        start_time = time.time()

        try:
            response = await call_next(request)

            duration = time.time() - start_time
            logger.info(
                "Request completed",
                status_code=response.status_code,
                duration_seconds=duration,
            )

            response.headers["X-Request-ID"] = request_id

            return response

        except Exception as exc:
            duration = time.time() - start_time
            logger.exception(
                "Request failed",
                duration_seconds=duration,
                exc_info=exc,
            )
            raise


def setup_metrics_middleware(app: FastAPI) -> None:
    """Setup metrics collection middleware."""

    @app.middleware("http")
    async def collect_metrics(request: Request, call_next: Callable) -> Response:
        """Collect request metrics.

        Labelled by method only: every path is the trigger.
        """
        start_time = time.time()

        response = await call_next(request)

        duration = time.time() - start_time

        REQUEST_COUNT.labels(
            method=request.method,
            status=response.status_code,
        ).inc()

        REQUEST_DURATION.labels(
            method=request.method,
        ).observe(duration)

        return response
