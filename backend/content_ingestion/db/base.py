"""
Database Base Classes and Common Column Types

Foundation for every model in the service.

Key Pieces:
-----------
1. Base: DeclarativeBase bound to a metadata object with a naming convention
2. CommonTableAttributes: id / created_at / updated_at shared by all tables
3. JSONColumn: JSONB on PostgreSQL, plain JSON everywhere else
4. EmbeddingVector: pgvector ``vector(n)`` on PostgreSQL, JSON list elsewhere

The portable types keep the models usable against SQLite, which the test
suite runs on, while production stays on PostgreSQL + pgvector.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pgvector.sqlalchemy import Vector
from sqlalchemy import JSON, DateTime, MetaData, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, registry
from sqlalchemy.types import TypeDecorator


# ================================
# Naming Convention
# ================================

convention = {
    "ix": "ix_%(column_0_label)s",  # Index
    "uq": "uq_%(table_name)s_%(column_0_name)s",  # Unique constraint
    "ck": "ck_%(table_name)s_%(constraint_name)s",  # Check constraint
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",  # Foreign key
    "pk": "pk_%(table_name)s",  # Primary key
}

metadata = MetaData(naming_convention=convention)
orm_registry = registry(metadata=metadata)


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    registry = orm_registry
    metadata = metadata

    __tablename__: str


class CommonTableAttributes:
    """
    Mixin with the columns every table carries.

    - id: auto-incrementing primary key
    - created_at: set once on insert (UTC)
    - updated_at: refreshed on every UPDATE issued through the ORM (UTC)
    """

    id: Mapped[int] = mapped_column(
        primary_key=True,
        autoincrement=True,
        comment="Auto-incrementing primary key"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        comment="Timestamp when record was created (UTC)"
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
        comment="Timestamp when record was last updated (UTC)"
    )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self.id})"

    def dict(self) -> dict[str, Any]:
        """Convert model instance to a column-name keyed dictionary."""
        return {
            column.name: getattr(self, column.name)
            for column in self.__table__.columns
        }


class BaseModel(Base, CommonTableAttributes):
    """Ready-to-use base class: ORM mapping plus id and timestamps."""

    __abstract__ = True


# ================================
# Portable Column Types
# ================================

JSONColumn = JSON().with_variant(JSONB(), "postgresql")


class EmbeddingVector(TypeDecorator):
    """
    Fixed-length float vector.

    PostgreSQL stores it in a pgvector ``vector(dimensions)`` column so the
    downstream retrieval service can index it; other dialects keep a JSON
    array. Values always come back as ``list[float]``.
    """

    # None must stay SQL NULL: unembedded chunks are found with IS NULL
    impl = JSON(none_as_null=True)
    cache_ok = True

    def __init__(self, dimensions: int):
        super().__init__()
        self.dimensions = dimensions

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(Vector(self.dimensions))
        return dialect.type_descriptor(JSON(none_as_null=True))

    def process_bind_param(self, value: Optional[Any], dialect) -> Optional[Any]:
        if value is None:
            return None
        return [float(component) for component in value]

    def process_result_value(self, value: Optional[Any], dialect) -> Optional[list[float]]:
        if value is None:
            return None
        if hasattr(value, "tolist"):
            value = value.tolist()
        return [float(component) for component in value]


# ================================
# Common String Lengths
# ================================

String50 = String(50)
String100 = String(100)
String255 = String(255)
String500 = String(500)
