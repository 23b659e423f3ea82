"""
Pydantic schemas for content read endpoints.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from content_ingestion.models import ContentSourceType, ExtractionMethod, ProcessingStatus


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class ContentItemResponse(BaseModel):
    """A content item as returned by the API (chunks are listed separately)."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    source_id: str
    source_type: ContentSourceType
    source_metadata: dict[str, Any] = Field(default_factory=dict)

    title: Optional[str] = None
    description: Optional[str] = None
    content: str = Field("", description="Extracted plain text")
    content_type: Optional[str] = None
    language: Optional[str] = None

    processing_status: ProcessingStatus
    processing_metadata: dict[str, Any] = Field(default_factory=dict)
    extraction_method: Optional[ExtractionMethod] = None
    total_chunks: int = 0

    tags: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    course_id: Optional[str] = None
    module_id: Optional[str] = None

    version: int = 1
    parent_id: Optional[int] = None
    is_latest: bool = True

    created_at: datetime
    updated_at: datetime
    processed_at: Optional[datetime] = None


class ContentListResponse(BaseModel):
    content: list[ContentItemResponse]
    pagination: Pagination


class ContentChunkResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    content_item_id: int
    chunk_index: int
    chunk_text: str
    tokens: int
    start_position: int
    end_position: int
    chunk_metadata: dict[str, Any] = Field(default_factory=dict)

    embedding: Optional[list[float]] = Field(
        None,
        description="Only included when include_embeddings=true"
    )
    embedding_model: Optional[str] = None
    embedding_dimensions: Optional[int] = None
    embedded_at: Optional[datetime] = None
    created_at: datetime


class ChunkListResponse(BaseModel):
    chunks: list[ContentChunkResponse]
    total_chunks: int
    pagination: Pagination


class JobSummary(BaseModel):
    job_id: int
    job_type: str
    status: str
    attempts: int
    error_message: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


class ContentStatusResponse(BaseModel):
    """Polling view of a content item's pipeline run."""

    content_id: int
    status: ProcessingStatus
    progress: int = Field(..., ge=0, le=100)
    total_chunks: int
    embedded_chunks: int
    processing_metadata: dict[str, Any] = Field(default_factory=dict)
    job: Optional[JobSummary] = None
    processed_at: Optional[datetime] = None
    updated_at: datetime


class ProcessingStatsResponse(BaseModel):
    total_content: int
    status_breakdown: dict[str, int]
    source_type_breakdown: dict[str, int]
    total_chunks: int
    embedded_chunks: int
    total_tokens_processed: int
    average_processing_time_ms: Optional[float] = None


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Body of every non-2xx response."""

    error: ErrorDetail
