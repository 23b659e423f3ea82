"""
Database Dependencies for FastAPI Routes

Routes declare the session they need and FastAPI provides it:

    @router.get("/content/{content_id}")
    async def get_content(content_id: int, db: DBSession):
        ...

Tests replace ``get_db`` through ``app.dependency_overrides`` with a session
bound to their own in-memory database.
"""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from content_ingestion.db.session import get_session


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session.

    Each request gets its own session. Changes must be committed explicitly
    by the service layer; the session is rolled back if the route raises.
    """
    async for session in get_session():
        yield session


# Type alias for cleaner route signatures
DBSession = Annotated[AsyncSession, Depends(get_db)]
