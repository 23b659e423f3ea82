"""
Alembic Migration Environment

1. Load application settings (database URL)
2. Import all models so their tables are registered on Base.metadata
3. Run migrations offline (emit SQL) or online (async engine)
"""

import asyncio
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from alembic import context

from content_ingestion.core.config import settings
from content_ingestion.db.base import Base

# Register every table on Base.metadata
from content_ingestion.models import (  # noqa: F401
    ContentChunk,
    ContentItem,
    IngestionJob,
)

# ================================
# Alembic Config Object
# ================================

config = context.config

# DATABASE_URL from settings replaces the placeholder in alembic.ini
config.set_main_option("sqlalchemy.url", settings.DATABASE_URL)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def include_object(object, name, type_, reflected, compare_to):
    """The HNSW index is created with raw SQL; keep autogenerate from dropping it."""
    if type_ == "index" and name == "ix_content_chunks_embedding_hnsw":
        return False
    return True


def run_migrations_offline() -> None:
    """
    Run migrations in 'offline' mode: emit SQL to the script output
    instead of connecting to the database.
    """
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=True,
        include_object=include_object,
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        compare_server_default=True,
        include_object=include_object,
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """Create an async engine (asyncpg) and run migrations through run_sync."""
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,  # No pooling for migrations
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


def run_migrations_online() -> None:
    asyncio.run(run_async_migrations())


# ================================
# Main Execution
# ================================

if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
