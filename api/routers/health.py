"""Health check endpoints."""

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Request
from sqlalchemy.exc import SQLAlchemyError

router = APIRouter()


@router.get("/health")
async def health_check(request: Request) -> dict[str, Any]:
    """
    Health check endpoint.

    Returns status of all system components.
    """
    app_state = request.app.state.app_state

    components = app_state.get_health_status()
    is_healthy = components.get("initialized", False)

    return {
        "status": "healthy" if is_healthy else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "components": components,
    }


@router.get("/health/ready")
def readiness_check(request: Request) -> dict[str, Any]:
    """
    Kubernetes-style readiness probe.

    Ready once components are initialized and the database answers.
    """
    app_state = request.app.state.app_state

    database = False
    if app_state.repository is not None:
        try:
            database = app_state.repository.ping()
        except SQLAlchemyError:
            database = False

    return {
        "ready": app_state.is_initialized and database,
        "database": database,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/live")
async def liveness_check() -> dict[str, Any]:
    """
    Kubernetes-style liveness probe.

    Returns 200 if the service is alive (even if not fully ready).
    """
    return {
        "alive": True,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
