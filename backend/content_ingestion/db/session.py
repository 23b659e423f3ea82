"""
Database Session Management

Engine and session factory for the API process and for Celery workers.

Architecture Flow:
------------------
Process start -> create engine -> connection pool ready
API request / pipeline stage -> session -> queries -> commit/rollback -> close
Process shutdown -> dispose engine

Pipeline components never import ``AsyncSessionLocal`` themselves: the
container hands them a session factory, which lets tests swap in their own.
"""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool, NullPool

from content_ingestion.core.config import settings
from content_ingestion.core.logging import get_logger

logger = get_logger(__name__)


# ================================
# Database Engine Configuration
# ================================

def get_engine_config() -> dict[str, Any]:
    """
    Engine options per environment.

    - development / production: queue pool sized from DB_POOL_SIZE and
      DB_MAX_OVERFLOW, pre-ping, hourly (2h in production) recycling
    - staging / testing: NullPool, one connection per checkout
    """
    config: dict[str, Any] = {
        "echo": settings.DB_ECHO,
        "pool_pre_ping": True,
    }

    if settings.DATABASE_URL.startswith("postgresql"):
        config["connect_args"] = {
            "server_settings": {
                "application_name": settings.APP_NAME,
            }
        }

    if settings.is_development or settings.is_production:
        logger.info(
            "configuring_database_engine",
            environment=settings.APP_ENV,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
        )
        config.update({
            "poolclass": AsyncAdaptedQueuePool,
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
            "pool_timeout": 30,
            "pool_recycle": 7200 if settings.is_production else 3600,
        })
    else:
        logger.info(
            "configuring_database_engine",
            environment=settings.APP_ENV,
            pool_type="NullPool",
        )
        config["poolclass"] = NullPool

    return config


def create_engine() -> AsyncEngine:
    """Create the async database engine from settings."""
    engine_config = get_engine_config()

    engine = create_async_engine(
        settings.DATABASE_URL,
        **engine_config
    )

    logger.info(
        "database_engine_created",
        driver=engine.dialect.driver,
        pool_size=engine_config.get("pool_size", "NullPool"),
    )

    return engine


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Session factory used by the API and the pipeline.

    expire_on_commit=False keeps loaded attributes readable after a commit,
    which the pipeline relies on between stages.
    """
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )


# ================================
# Global Engine Instance
# ================================

engine: AsyncEngine = create_engine()

AsyncSessionLocal = create_session_factory(engine)


# ================================
# Session Lifecycle Functions
# ================================

async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Yield a session for one request; roll back if the handler raises.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception as e:
            logger.error(
                "database_session_error",
                error=str(e),
                error_type=type(e).__name__,
            )
            await session.rollback()
            raise


async def init_db() -> None:
    """
    Verify connectivity at startup; create tables in development.

    Production schemas are managed by Alembic.
    """
    logger.info("initializing_database")

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))

        logger.info("database_connection_successful")

        if settings.is_development:
            from content_ingestion.db.base import Base
            import content_ingestion.models  # noqa: F401

            async with engine.begin() as conn:
                if engine.dialect.name == "postgresql":
                    await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
                await conn.run_sync(Base.metadata.create_all)

            logger.info("database_tables_created")

    except Exception as e:
        logger.error(
            "database_initialization_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise


async def close_db() -> None:
    """Dispose the connection pool on shutdown."""
    logger.info("closing_database_connections")

    try:
        await engine.dispose()
        logger.info("database_connections_closed")

    except Exception as e:
        # Shutting down anyway
        logger.error(
            "database_closure_failed",
            error=str(e),
            error_type=type(e).__name__,
        )


# ================================
# Database Health Check
# ================================

async def check_db_health() -> bool:
    """Return True when a trivial query succeeds."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    except Exception as e:
        logger.error(
            "database_health_check_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        return False
