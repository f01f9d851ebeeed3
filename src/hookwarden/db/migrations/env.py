"""Alembic environment for the hookwarden schema.

The schema is small: organizations, users and their memberships, the
organization_webhooks table (nullable unique github_id, version_id for
optimistic locking) and the append-only events log. Revisions live in
versions/ and are rendered from script.py.mako beside this file.

The URL comes from HOOKWARDEN_DATABASE_URL, not alembic.ini, so migrations
and the running service always target the same database. Online runs go
through the async engine with run_sync, so asyncpg is the only driver.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config

from hookwarden.config import settings
from hookwarden.db.models import Base

config = context.config
# alembic.ini leaves sqlalchemy.url empty.
config.set_main_option("sqlalchemy.url", settings.database_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Emit the DDL as SQL, e.g. for a DBA to apply by hand."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection):
    # github ids are BIGINT; autogenerate must notice a column type change.
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
