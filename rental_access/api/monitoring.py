"""Monitoring endpoints."""
import logging
import os

from fastapi import APIRouter, status
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest
from sqlalchemy import text
from starlette.responses import JSONResponse, Response

from rental_access.config import settings
from rental_access.infrastructure.database import get_session_factory

logger = logging.getLogger(__name__)

router = APIRouter(tags=["monitoring"])


@router.get("/health")
async def health() -> dict:
    """Liveness: the process answers."""
    return {"status": "healthy", "service": settings.app_name}


@router.get("/ready")
async def ready() -> Response:
    """Readiness: database reachable and access point root writable."""
    checks = {"database": True, "access_points": os.access(settings.access_points_root, os.W_OK)}
    try:
        async with get_session_factory()() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Readiness database check failed: {e}")
        checks["database"] = False

    code = status.HTTP_200_OK if all(checks.values()) else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=code, content={"ready": code == status.HTTP_200_OK, "checks": checks})


@router.get("/metrics")
async def metrics() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type=CONTENT_TYPE_LATEST,
    )
