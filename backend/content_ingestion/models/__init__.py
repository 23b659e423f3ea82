"""
Database Models

Import models from this module so they are registered on ``Base.metadata``
before Alembic or ``create_all`` inspect it:

    from content_ingestion.models import ContentItem, ContentChunk, IngestionJob
"""

from content_ingestion.models.content import (
    ContentChunk,
    ContentItem,
    ContentSourceType,
    ExtractionMethod,
    ProcessingStatus,
)
from content_ingestion.models.jobs import (
    UNFINISHED_JOB_STATUSES,
    IngestionJob,
    JobStatus,
    JobType,
)

__all__ = [
    # Content models
    "ContentItem",
    "ContentChunk",
    # Job models
    "IngestionJob",
    # Enums
    "ContentSourceType",
    "ProcessingStatus",
    "ExtractionMethod",
    "JobStatus",
    "JobType",
    "UNFINISHED_JOB_STATUSES",
]
