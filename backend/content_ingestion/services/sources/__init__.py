"""Source adapters: one per content source type."""

from content_ingestion.services.sources.base import (
    DraftContentItem,
    RawPayload,
    SourceAdapter,
)
from content_ingestion.services.sources.file import FileSourceAdapter
from content_ingestion.services.sources.github import GitHubSourceAdapter
from content_ingestion.services.sources.manual import ManualSourceAdapter
from content_ingestion.services.sources.registry import SourceAdapterRegistry
from content_ingestion.services.sources.url import URLSourceAdapter
from content_ingestion.services.sources.youtube import YouTubeSourceAdapter

__all__ = [
    "DraftContentItem",
    "RawPayload",
    "SourceAdapter",
    "SourceAdapterRegistry",
    "FileSourceAdapter",
    "URLSourceAdapter",
    "YouTubeSourceAdapter",
    "GitHubSourceAdapter",
    "ManualSourceAdapter",
]
