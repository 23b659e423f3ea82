"""
Source Adapter Interface

Every source type (file, URL, YouTube, GitHub, manual text) is one
``SourceAdapter`` subclass. The ingestion service never branches on the
source type: it looks the adapter up in the ``SourceAdapterRegistry`` by
the request's class and calls the same two methods on all of them.

    ingest(request)     -> list[DraftContentItem]   (request time, synchronous)
    fetch_payload(item) -> RawPayload               (run time, sources needing extraction)

Adapters whose source already carries text (YouTube transcript, GitHub
file, manual entry) return drafts with ``content`` filled in; those items
skip extraction and start at PROCESSING.
"""

import abc
from dataclasses import dataclass, field
from typing import Any, ClassVar, Generic, Optional, TypeVar

from pydantic import BaseModel

from content_ingestion.core.exceptions import ExtractionError
from content_ingestion.models import (
    ContentItem,
    ContentSourceType,
    ExtractionMethod,
    ProcessingStatus,
)


@dataclass
class DraftContentItem:
    """A normalised, not yet persisted content item."""

    source_id: str
    source_type: ContentSourceType
    source_metadata: dict[str, Any] = field(default_factory=dict)
    title: Optional[str] = None
    description: Optional[str] = None
    content: str = ""
    content_type: Optional[str] = None
    language: Optional[str] = None
    extraction_method: Optional[ExtractionMethod] = None
    tags: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    course_id: Optional[str] = None
    module_id: Optional[str] = None
    priority: int = 5
    # Bytes (or best guess) used for the duration estimate
    estimated_size: int = 0

    @property
    def is_prefilled(self) -> bool:
        return bool(self.content and self.content.strip())

    @property
    def initial_status(self) -> ProcessingStatus:
        """Items that already carry text skip extraction."""
        return ProcessingStatus.PROCESSING if self.is_prefilled else ProcessingStatus.PENDING

    def to_model(self) -> ContentItem:
        return ContentItem(
            source_id=self.source_id,
            source_type=self.source_type,
            source_metadata=dict(self.source_metadata),
            title=self.title,
            description=self.description,
            content=self.content,
            content_type=self.content_type,
            language=self.language,
            extraction_method=self.extraction_method,
            processing_status=self.initial_status,
            processing_metadata={},
            tags=list(self.tags),
            categories=list(self.categories),
            course_id=self.course_id,
            module_id=self.module_id,
        )


@dataclass
class RawPayload:
    """Bytes handed to the extraction coordinator."""

    name: str
    mime_type: str
    size: int
    content: bytes


RequestT = TypeVar("RequestT", bound=BaseModel)


class SourceAdapter(abc.ABC, Generic[RequestT]):
    """Base class for source adapters."""

    source_type: ClassVar[ContentSourceType]
    request_type: ClassVar[type[BaseModel]]

    @abc.abstractmethod
    async def ingest(self, request: RequestT) -> list[DraftContentItem]:
        """
        Validate and normalise a request into draft items.

        Raises:
            ContentValidationError: request rejected, nothing is created
            ExtractionError: source unreachable or yields no text
        """

    async def fetch_payload(self, item: ContentItem) -> RawPayload:
        """Raw bytes for items that still need extraction."""
        raise ExtractionError(
            f"{self.source_type} content has no raw payload to extract",
            details={"content_id": item.id},
        )

    async def close(self) -> None:
        """Release HTTP clients, if any."""


def classification_fields(request: BaseModel) -> dict[str, Any]:
    """Course binding and labels every request carries."""
    return {
        "course_id": getattr(request, "course_id", None),
        "module_id": getattr(request, "module_id", None),
        "tags": list(getattr(request, "tags", []) or []),
        "categories": list(getattr(request, "categories", []) or []),
    }
