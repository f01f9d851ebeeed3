"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown (Redis, the reconcile worker,
the database engine).
"""

import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from hookwarden import __version__
from hookwarden.api import api_router
from hookwarden.api.hooks import router as hooks_router
from hookwarden.config import ConfigurationError, settings

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info(
        "hookwarden.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    try:
        settings.webhook_url
    except ConfigurationError as e:
        # Reads still work; every hook creation will fail until fixed
        logger.warning("hookwarden.webhook_url_missing", error=str(e))

    from hookwarden.realtime.pubsub import close_redis, init_redis
    try:
        await init_redis()
        logger.info("hookwarden.redis_connected", url=settings.redis_url)
    except Exception as e:
        logger.warning("hookwarden.redis_unavailable", error=str(e))

    worker = None
    worker_task = None
    if settings.reconcile_interval_seconds > 0:
        from hookwarden.services.reconcile_worker import ReconcileWorker
        worker = ReconcileWorker(interval=settings.reconcile_interval_seconds)
        worker_task = asyncio.create_task(worker.run_loop())
        logger.info("hookwarden.reconcile_worker_started")

    yield

    logger.info("hookwarden.shutdown")

    if worker and worker_task:
        worker.stop()
        worker_task.cancel()
        try:
            await worker_task
        except (asyncio.CancelledError, ConfigurationError):
            pass

    await close_redis()

    from hookwarden.db.engine import engine
    await engine.dispose()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="hookwarden",
        description="Keeps GitHub organization webhooks active",
        version=__version__,
        lifespan=lifespan,
    )

    app.include_router(api_router)
    # GitHub delivers to the bare callback path, outside /api/v1
    app.include_router(hooks_router, tags=["github"])

    return app


# Default app instance (used by uvicorn: hookwarden.main:app)
app = create_app()
