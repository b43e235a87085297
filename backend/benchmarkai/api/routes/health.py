"""Liveness and readiness checks."""

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from benchmarkai.db.base import ping_db

logger = structlog.get_logger(__name__)

router = APIRouter()

SERVICE_NAME = "benchmarkai-backend"


@router.get("/health")
async def health_check(request: Request):
    """Liveness. Answers 503 once SIGTERM was received so the load balancer drains us."""
    if getattr(request.app.state, "shutting_down", False):
        return JSONResponse(status_code=503, content={"status": "shutting_down", "service": SERVICE_NAME})
    return {"status": "healthy", "service": SERVICE_NAME}


@router.get("/ready")
async def readiness_check():
    """Readiness: the report store must answer before we take traffic."""
    try:
        await ping_db()
    except Exception as exc:
        logger.error("readiness_database_unreachable", error=str(exc), error_type=type(exc).__name__)
        return JSONResponse(status_code=503, content={"status": "degraded", "checks": {"database": False}})
    return {"status": "ready", "checks": {"database": True}}
