"""Trigger endpoint: any path, any method, authenticated by the Password header."""

from __future__ import annotations

import structlog
from fastapi import Request, Response
from starlette.routing import Route

from deploy_agent.deploy.coordinator import UpdateCoordinator


logger = structlog.get_logger()

PASSWORD_HEADER = "Password"


def get_coordinator(request: Request) -> UpdateCoordinator:
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        raise RuntimeError("UpdateCoordinator not initialized")
    return coordinator


# Declared sync so it runs in the worker thread pool: the caller blocks
# until the update has finished or failed.
def trigger_update(request: Request) -> Response:
    coordinator = get_coordinator(request)
    coordinator.authenticate(request.headers.get(PASSWORD_HEADER))

    logger.info("Update triggered", trigger_path=request.url.path)
    result = coordinator.attempt_update()
    logger.info("Update request served", attempt_id=result.attempt_id, steps=result.steps_completed)
    return Response(status_code=200)


# A plain Starlette route with ``methods=None`` matches every HTTP method,
# including ones FastAPI's method-bound routes would answer with 405.
trigger_route = Route("/{path:path}", trigger_update, methods=None, name="trigger_update")
