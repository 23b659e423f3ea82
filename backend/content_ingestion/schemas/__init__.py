"""
Pydantic schemas for request/response validation.
"""

from content_ingestion.schemas.content import (
    ChunkListResponse,
    ContentChunkResponse,
    ContentItemResponse,
    ContentListResponse,
    ContentStatusResponse,
    ErrorResponse,
    JobSummary,
    Pagination,
    ProcessingStatsResponse,
)
from content_ingestion.schemas.ingestion import (
    BatchIngestionRequest,
    BatchIngestionResponse,
    BatchItemError,
    BatchOptions,
    FileIngestionRequest,
    GitHubIngestionRequest,
    IngestionRequest,
    IngestionResponse,
    ManualContentRequest,
    ReprocessRequest,
    URLIngestionRequest,
    YouTubeIngestionRequest,
)

__all__ = [
    # Ingestion requests
    "FileIngestionRequest",
    "URLIngestionRequest",
    "YouTubeIngestionRequest",
    "GitHubIngestionRequest",
    "ManualContentRequest",
    "IngestionRequest",
    "BatchIngestionRequest",
    "BatchOptions",
    "ReprocessRequest",
    # Ingestion responses
    "IngestionResponse",
    "BatchIngestionResponse",
    "BatchItemError",
    # Content
    "ContentItemResponse",
    "ContentListResponse",
    "ContentChunkResponse",
    "ChunkListResponse",
    "ContentStatusResponse",
    "JobSummary",
    "ProcessingStatsResponse",
    "Pagination",
    "ErrorResponse",
]
