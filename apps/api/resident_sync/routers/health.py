"""Liveness and dependency health checks."""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from resident_sync.core.config import settings
from resident_sync.db.session import engine

router = APIRouter(tags=["health"])
logger = logging.getLogger(__name__)


@router.get("/health")
def health():
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}


@router.get("/health/deps")
def health_deps():
    """
    Database connectivity plus configuration of the downstream systems.

    Returns 503 when the database is unreachable.
    """
    checks: dict[str, dict] = {}
    healthy = True
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        checks["database"] = {"ok": True}
    except SQLAlchemyError as e:
        logger.error("Database health check failed: %s", type(e).__name__)
        checks["database"] = {"ok": False, "error": type(e).__name__}
        healthy = False

    checks["caspio"] = {"configured": settings.caspio_configured}
    checks["alis"] = {"base_url": settings.ALIS_API_BASE}

    return JSONResponse(
        status_code=200 if healthy else 503,
        content={"status": "ok" if healthy else "degraded", "checks": checks},
    )
