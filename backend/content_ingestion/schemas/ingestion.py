"""
Pydantic schemas for the ingestion endpoints.

Each source type has its own request model. The request class is also the
key the ``SourceAdapterRegistry`` dispatches on, so adding a source means
adding one request model here and one adapter in ``services/sources``.
"""

import re
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from content_ingestion.models import ExtractionMethod, ProcessingStatus

YOUTUBE_VIDEO_ID_PATTERN = r"^[a-zA-Z0-9_-]{11}$"
GITHUB_REPOSITORY_PATTERN = r"^[a-zA-Z0-9._-]+/[a-zA-Z0-9._-]+$"

URL_EXTRACTION_METHODS = (
    ExtractionMethod.AUTO,
    ExtractionMethod.HTML_PARSER,
    ExtractionMethod.PLAIN_TEXT,
)


# ========================================
# Shared Fields
# ========================================

class ClassificationFields(BaseModel):
    """Course binding and labels shared by every ingestion request."""

    course_id: Optional[str] = Field(
        None,
        description="Course the content belongs to",
        max_length=255,
    )

    module_id: Optional[str] = Field(
        None,
        description="Module within the course",
        max_length=255,
    )

    tags: list[str] = Field(
        default_factory=list,
        description="Free-form tags",
        max_length=20,
        examples=[["python", "async"]]
    )

    categories: list[str] = Field(
        default_factory=list,
        description="Content categories",
        max_length=10,
        examples=[["documentation"]]
    )

    @field_validator("tags", "categories")
    @classmethod
    def strip_labels(cls, v: list[str]) -> list[str]:
        """Drop blank labels and surrounding whitespace."""
        return [label.strip() for label in v if label and label.strip()]


# ========================================
# Request Schemas
# ========================================

class FileIngestionRequest(ClassificationFields):
    """Ingest a file previously uploaded to the file service."""

    source_type: Literal["file"] = "file"

    file_id: str = Field(
        ...,
        description="Identifier of the file in the file service",
        min_length=1,
        max_length=255,
        examples=["8c4c5e55-52f2-4c1b-9a6e-6f5d1b2f4a10"]
    )

    title: Optional[str] = Field(None, max_length=500)

    description: Optional[str] = Field(None, max_length=2000)

    priority: int = Field(
        5,
        ge=1,
        le=10,
        description="Job priority (1 = lowest, 10 = highest)"
    )

    extraction_method: ExtractionMethod = Field(
        ExtractionMethod.AUTO,
        description="Extraction strategy; 'auto' resolves it from the MIME type"
    )


class URLIngestionRequest(ClassificationFields):
    """Ingest a web page."""

    source_type: Literal["url"] = "url"

    url: str = Field(
        ...,
        description="Absolute http(s) URL of the page",
        max_length=2048,
        examples=["https://docs.python.org/3/library/asyncio.html"]
    )

    title: Optional[str] = Field(None, max_length=500)

    description: Optional[str] = Field(None, max_length=2000)

    extraction_method: ExtractionMethod = Field(
        ExtractionMethod.AUTO,
        description="auto, html_parser or plain_text"
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip()
        if not re.match(r"^https?://[^\s/$.?#][^\s]*$", v, re.IGNORECASE):
            raise ValueError("URL must be an absolute http(s) URL")
        return v

    @field_validator("extraction_method")
    @classmethod
    def validate_extraction_method(cls, v: ExtractionMethod) -> ExtractionMethod:
        if v not in URL_EXTRACTION_METHODS:
            raise ValueError("Web pages support auto, html_parser or plain_text")
        return v


class YouTubeIngestionRequest(ClassificationFields):
    """Ingest the transcript of a YouTube video."""

    source_type: Literal["youtube"] = "youtube"

    video_id: str = Field(
        ...,
        description="11-character video id or any YouTube video URL",
        min_length=11,
        max_length=500,
        examples=["dQw4w9WgXcQ", "https://www.youtube.com/watch?v=dQw4w9WgXcQ"]
    )

    language: Optional[str] = Field(
        None,
        description="Preferred transcript language (ISO 639-1)",
        pattern=r"^[a-z]{2}$",
        examples=["en"]
    )

    extract_metadata: bool = Field(
        True,
        description="Fetch title/description/statistics from the YouTube Data API"
    )

    @field_validator("video_id")
    @classmethod
    def validate_video_id(cls, v: str) -> str:
        v = v.strip()
        if re.match(YOUTUBE_VIDEO_ID_PATTERN, v):
            return v
        if "youtube.com" in v or "youtu.be" in v:
            return v
        raise ValueError("Expected an 11-character video id or a YouTube URL")


class GitHubIngestionRequest(ClassificationFields):
    """Ingest documentation (and optionally code) files from a repository."""

    source_type: Literal["github"] = "github"

    repository: str = Field(
        ...,
        description="Repository as owner/name",
        pattern=GITHUB_REPOSITORY_PATTERN,
        examples=["encode/httpx"]
    )

    branch: str = Field("main", max_length=100)

    paths: list[str] = Field(
        default_factory=list,
        description="Paths to walk; repository root when empty",
        max_length=50,
    )

    include_code: bool = Field(
        False,
        description="Also ingest source code and config files"
    )


class ManualContentRequest(ClassificationFields):
    """Ingest text typed in by a user."""

    source_type: Literal["manual"] = "manual"

    title: str = Field(..., min_length=1, max_length=500)

    content: str = Field(..., min_length=10, max_length=1_000_000)

    content_type: str = Field("text/plain", max_length=100)

    language: str = Field("en", pattern=r"^[a-z]{2}$")


IngestionRequest = Annotated[
    Union[
        FileIngestionRequest,
        URLIngestionRequest,
        YouTubeIngestionRequest,
        GitHubIngestionRequest,
        ManualContentRequest,
    ],
    Field(discriminator="source_type"),
]


class BatchOptions(BaseModel):
    concurrency: int = Field(3, ge=1, le=10)
    stop_on_error: bool = False


class BatchIngestionRequest(BaseModel):
    """
    Several ingestion requests in one call.

    Every item must carry its ``source_type`` so it can be routed.
    """

    items: list[IngestionRequest] = Field(..., min_length=1, max_length=50)
    batch_options: BatchOptions = Field(default_factory=BatchOptions)


class ReprocessRequest(BaseModel):
    """Rerun chunking and/or embedding for an already extracted item."""

    steps: list[Literal["chunking", "embedding"]] = Field(
        default_factory=lambda: ["chunking", "embedding"],
        min_length=1,
    )

    create_version: bool = Field(
        False,
        description="Keep the current row as history and process a new version"
    )


# ========================================
# Response Schemas
# ========================================

class IngestionResponse(BaseModel):
    """Acceptance contract returned before any processing happens."""

    content_id: int = Field(..., description="First (or only) created item")

    content_ids: list[int] = Field(
        default_factory=list,
        description="All created items; GitHub requests can create several"
    )

    job_ids: list[int] = Field(default_factory=list)

    status: ProcessingStatus = Field(
        ...,
        description="pending, processing or completed"
    )

    estimated_duration_ms: int

    message: str


class BatchItemError(BaseModel):
    index: int
    error: str
    code: Optional[str] = None


class BatchIngestionResponse(BaseModel):
    batch_id: str
    results: list[IngestionResponse]
    errors: list[BatchItemError]
