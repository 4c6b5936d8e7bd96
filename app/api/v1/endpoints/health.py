"""
Health check endpoints
"""

from typing import Any
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.redis import get_redis
from app.core.security import Principal, require_admin
from app.config import settings
from app.models.analytics import AnalyticsEvent
from app.schemas.response import HealthResponse

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/live")
async def liveness() -> Any:
    """
    Kubernetes liveness probe
    """
    return {"status": "alive", "service": "marketlive-analytics"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session)
) -> Any:
    """
    Kubernetes readiness probe - checks the event store and Redis
    """
    checks = {
        "database": False,
        "redis": False,
        "api": True
    }

    # Check database
    try:
        result = await db.execute(text("SELECT 1"))
        checks["database"] = result.scalar() == 1
    except Exception as e:
        logger.warning(f"Readiness: database check failed: {e}")

    # Check Redis
    try:
        redis_client = await get_redis()
        await redis_client.ping()
        checks["redis"] = True
    except Exception as e:
        logger.warning(f"Readiness: redis check failed: {e}")

    all_healthy = all(checks.values())
    body = HealthResponse(
        status="ready" if all_healthy else "not ready",
        checks=checks,
        version=settings.APP_VERSION
    )
    return JSONResponse(
        status_code=200 if all_healthy else 503,
        content=body.model_dump(mode="json")
    )


@router.get("/status")
async def system_status(
    db: AsyncSession = Depends(get_session),
    admin: Principal = Depends(require_admin)
) -> Any:
    """
    Event store statistics (Admin only)
    """
    total = await db.execute(select(func.count(AnalyticsEvent.id)))
    latest = await db.execute(select(func.max(AnalyticsEvent.created_at)))
    latest_at = latest.scalar()

    return {
        "status": "operational",
        "environment": settings.APP_ENV,
        "version": settings.APP_VERSION,
        "statistics": {
            "total_events": total.scalar() or 0,
            "latest_event_at": latest_at.isoformat() if latest_at else None
        }
    }
