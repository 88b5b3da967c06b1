"""Health check endpoints."""

import logging

from fastapi import APIRouter, Response, status
from pydantic import BaseModel

from propel_api import __version__
from propel_api.db.redis_client import check_redis
from propel_api.db.session import check_database

router = APIRouter()
logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    services: dict[str, str]


def _collect_services() -> dict[str, str]:
    services = {
        "api": "up",
        "database": check_database(),
        "redis": check_redis(),
    }
    for name, svc_status in services.items():
        if svc_status.startswith("down"):
            logger.error("HEALTH_DEPENDENCY_DOWN", extra={"service": name, "status": svc_status})
    return services


@router.get("/health", response_model=HealthResponse)
def health_check() -> HealthResponse:
    """
    Liveness endpoint.

    Always returns 200 OK (use /readyz for dependency gating).
    """
    return HealthResponse(status="healthy", version=__version__, services=_collect_services())


@router.get("/readyz", response_model=HealthResponse)
def readiness_check(response: Response) -> HealthResponse:
    """
    Readiness endpoint.

    Returns 503 if the database or a configured Redis is down. Redis that is
    not configured reports "disabled" and does not block readiness.
    """
    services = _collect_services()
    any_down = any(svc_status.startswith("down") for svc_status in services.values())

    if any_down:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", version=__version__, services=services)

    return HealthResponse(status="ready", version=__version__, services=services)
