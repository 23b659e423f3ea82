"""
Content Models

Models Included:
----------------
1. ContentItem - one ingested unit of source material and its pipeline state
2. ContentChunk - one ordered segment of an item's text plus its embedding
3. ContentSourceType (Enum) - where the content came from
4. ProcessingStatus (Enum) - pipeline state machine
5. ExtractionMethod (Enum) - how raw bytes were turned into text

Database Tables:
----------------
- content_items: source reference, payload, pipeline state, versioning
- content_chunks: chunk spans and embedding vectors

Relationships:
--------------
ContentItem (1) -> (Many) ContentChunk via content_chunks.content_item_id.
The link is a plain foreign key; chunks are always loaded with explicit,
ordered queries in ``ContentStore`` rather than through an ORM collection.
"""

import enum
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from content_ingestion.core.config import settings
from content_ingestion.db.base import (
    BaseModel,
    EmbeddingVector,
    JSONColumn,
    String50,
    String100,
    String255,
    String500,
)


# ================================
# Enums
# ================================

class ContentSourceType(str, enum.Enum):
    """
    Enum for content source types.

    Sources and what they hand to the pipeline:
    -------------------------------------------
    1. FILE: an uploaded file id, bytes fetched from the file service
    2. URL: a web page, fetched and parsed at run time
    3. YOUTUBE: a video transcript (text arrives pre-filled)
    4. GITHUB: one repository file per item (text arrives pre-filled)
    5. MANUAL: text typed by a user (text arrives pre-filled)
    """

    FILE = "file"
    URL = "url"
    YOUTUBE = "youtube"
    GITHUB = "github"
    MANUAL = "manual"

    def __str__(self) -> str:
        """Return the string value of the enum."""
        return self.value


class ProcessingStatus(str, enum.Enum):
    """
    Enum for content processing status.

    Status Flow:
    ------------
    PENDING -> EXTRACTING -> PROCESSING -> CHUNKING -> EMBEDDING -> COMPLETED
                    (any non-terminal state) -> FAILED

    Items whose text arrives with the request (manual, GitHub, YouTube) are
    created directly in PROCESSING. Allowed edges live in
    ``services/status_tracker.py``.
    """

    PENDING = "pending"
    EXTRACTING = "extracting"
    PROCESSING = "processing"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        """Return the string value of the enum."""
        return self.value


class ExtractionMethod(str, enum.Enum):
    """Strategy used to turn a binary payload into plain text."""

    AUTO = "auto"
    PDF_JS = "pdf_js"
    OCR = "ocr"
    SPEECH_TO_TEXT = "speech_to_text"
    HTML_PARSER = "html_parser"
    MARKDOWN_PARSER = "markdown_parser"
    PLAIN_TEXT = "plain_text"

    def __str__(self) -> str:
        return self.value


# ================================
# ContentItem Model
# ================================

class ContentItem(BaseModel):
    """
    ContentItem model - one ingested unit of content.

    Table: content_items

    Lifecycle:
    ----------
    - created by the ingestion service from a source adapter draft
    - ``content`` is empty until extraction finishes (or pre-filled)
    - ``processing_metadata`` accumulates durations, token counts,
      extraction confidence, or the last error
    - soft-deleted items (``deleted_at`` set) are invisible to every read path

    Versioning:
    -----------
    Reprocessing with ``create_version`` copies the row as ``version + 1``;
    the new row points at the old one through ``parent_id`` and only the
    newest row has ``is_latest = True``.
    """

    __tablename__ = "content_items"

    # ================================
    # Source Identification
    # ================================

    source_id: Mapped[str] = mapped_column(
        String500,
        nullable=False,
        index=True,
        comment="Origin-system reference (file id, URL, video id, owner/repo:path)"
    )

    source_type: Mapped[ContentSourceType] = mapped_column(
        nullable=False,
        index=True,
        comment="Type of content source"
    )

    source_metadata: Mapped[dict[str, Any]] = mapped_column(
        JSONColumn,
        nullable=False,
        default=dict,
        comment="Source-specific metadata (file info, repo, video stats)"
    )

    # ================================
    # Payload
    # ================================

    title: Mapped[Optional[str]] = mapped_column(
        String500,
        nullable=True,
        comment="Content title"
    )

    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Short description or summary"
    )

    content: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
        comment="Extracted plain text (empty until extraction completes)"
    )

    content_type: Mapped[Optional[str]] = mapped_column(
        String100,
        nullable=True,
        comment="MIME type of the source payload"
    )

    language: Mapped[Optional[str]] = mapped_column(
        String50,
        nullable=True,
        comment="Detected or declared language code"
    )

    # ================================
    # Pipeline State
    # ================================

    processing_status: Mapped[ProcessingStatus] = mapped_column(
        nullable=False,
        default=ProcessingStatus.PENDING,
        index=True,
        comment="Processing pipeline status"
    )

    processing_metadata: Mapped[dict[str, Any]] = mapped_column(
        JSONColumn,
        nullable=False,
        default=dict,
        comment="Durations, token counts, confidence or last error"
    )

    extraction_method: Mapped[Optional[ExtractionMethod]] = mapped_column(
        nullable=True,
        comment="Extraction strategy used for this item"
    )

    total_chunks: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Number of chunks after the last successful run"
    )

    # ================================
    # Classification
    # ================================

    tags: Mapped[list[str]] = mapped_column(
        JSONColumn,
        nullable=False,
        default=list,
    )

    categories: Mapped[list[str]] = mapped_column(
        JSONColumn,
        nullable=False,
        default=list,
    )

    course_id: Mapped[Optional[str]] = mapped_column(
        String255,
        nullable=True,
        index=True,
    )

    module_id: Mapped[Optional[str]] = mapped_column(
        String255,
        nullable=True,
        index=True,
    )

    # ================================
    # Versioning & Lifecycle
    # ================================

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
    )

    parent_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("content_items.id", ondelete="SET NULL"),
        nullable=True,
        comment="Previous version of this content"
    )

    is_latest: Mapped[bool] = mapped_column(
        nullable=False,
        default=True,
    )

    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the last run completed (UTC)"
    )

    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
        comment="Soft-delete marker"
    )

    __table_args__ = (
        Index("ix_content_items_course_module", "course_id", "module_id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        title = (self.title or "")[:30]
        return (
            f"ContentItem(id={self.id}, source_type={self.source_type}, "
            f"title='{title}', status={self.processing_status})"
        )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def has_content(self) -> bool:
        """True once extraction produced (or the source supplied) text."""
        return bool(self.content and self.content.strip())


# ================================
# ContentChunk Model
# ================================

class ContentChunk(BaseModel):
    """
    ContentChunk model - one segment of a ContentItem's text.

    Table: content_chunks

    ``start_position``/``end_position`` are character offsets into the
    parent's ``content``. ``chunk_index`` is contiguous and zero-based per
    item; the unique constraint below makes a half-written chunk set
    impossible to commit twice.

    The embedding columns stay NULL until the embedding coordinator has
    written the batch the chunk belongs to, which is how a failed run knows
    where to resume.
    """

    __tablename__ = "content_chunks"

    content_item_id: Mapped[int] = mapped_column(
        ForeignKey("content_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Foreign key to content_items table"
    )

    chunk_index: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Order of this chunk within the content item (0-indexed)"
    )

    chunk_text: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    tokens: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Approximate token count of chunk_text"
    )

    start_position: Mapped[int] = mapped_column(Integer, nullable=False)

    end_position: Mapped[int] = mapped_column(Integer, nullable=False)

    chunk_metadata: Mapped[dict[str, Any]] = mapped_column(
        JSONColumn,
        nullable=False,
        default=dict,
    )

    # ================================
    # Embedding
    # ================================

    embedding: Mapped[Optional[list[float]]] = mapped_column(
        EmbeddingVector(settings.EMBEDDING_DIMENSION),
        nullable=True,
        comment="Embedding vector, NULL until embedded"
    )

    embedding_model: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )

    embedding_dimensions: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
    )

    embedded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        UniqueConstraint(
            "content_item_id",
            "chunk_index",
            name="uq_content_item_chunk_index"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"ContentChunk(id={self.id}, content_item_id={self.content_item_id}, "
            f"chunk_index={self.chunk_index}, "
            f"span=[{self.start_position}, {self.end_position}))"
        )

    @property
    def is_embedded(self) -> bool:
        return self.embedding is not None
