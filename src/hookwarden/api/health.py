"""Health check endpoint.

Learn: Reports database and Redis reachability, plus whether the webhook
callback URL is configured — without it no hook can ever be created, so
the service is up but degraded.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from hookwarden import __version__
from hookwarden.config import ConfigurationError, settings
from hookwarden.db.engine import get_db

router = APIRouter()


@router.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    try:
        settings.webhook_url
        checks["webhook_url"] = "ok"
    except ConfigurationError as e:
        checks["webhook_url"] = f"error: {e}"

    # Redis is optional: only reported, never degrades status
    try:
        from hookwarden.realtime.pubsub import get_redis

        await get_redis().ping()
        redis_status = "ok"
    except Exception as e:
        redis_status = f"unavailable: {e}"

    status = "healthy" if all(
        v == "ok" for k, v in checks.items() if k != "version"
    ) else "degraded"

    return {"status": status, **checks, "redis": redis_status}
