"""Async SQLAlchemy engine and session factory for hookwarden.

Two kinds of callers share the factory: API routes get one session per
request through get_db, and ReconcileWorker opens one session per
organization webhook record so a failing record never poisons the sweep.
Tests build their own aiosqlite engine and override get_db instead.
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from hookwarden.config import settings

# A session stays checked out across at most one GitHub round trip.
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=5,
    max_overflow=10,
)

# Routes serialize the OrganizationWebhook after ensure_webhook_is_active
# has committed its new github_id, so attributes must survive the commit.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncSession:
    """Per-request session; reconciliation commits inside the service."""
    async with async_session_factory() as session:
        yield session
