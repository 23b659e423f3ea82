"""Database utilities and session management."""

from content_ingestion.db.base import (
    Base,
    BaseModel,
    EmbeddingVector,
    JSONColumn,
    String50,
    String100,
    String255,
    String500,
)
from content_ingestion.db.deps import DBSession, get_db
from content_ingestion.db.session import (
    AsyncSessionLocal,
    check_db_health,
    close_db,
    create_session_factory,
    engine,
    get_session,
    init_db,
)

__all__ = [
    # Base classes
    "Base",
    "BaseModel",
    # Column types
    "EmbeddingVector",
    "JSONColumn",
    "String50",
    "String100",
    "String255",
    "String500",
    # Session management
    "engine",
    "AsyncSessionLocal",
    "create_session_factory",
    "get_session",
    "init_db",
    "close_db",
    "check_db_health",
    # Dependencies
    "get_db",
    "DBSession",
]
