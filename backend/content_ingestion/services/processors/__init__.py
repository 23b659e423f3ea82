"""Pipeline stages: extraction, chunking, embedding."""

from content_ingestion.services.processors.chunker import ContentChunker, TextChunk
from content_ingestion.services.processors.embedding_coordinator import (
    EmbeddingCoordinator,
    EmbeddingSummary,
)
from content_ingestion.services.processors.extractor import (
    ExtractionCoordinator,
    ExtractionOutcome,
    resolve_method,
)

__all__ = [
    "ContentChunker",
    "TextChunk",
    "EmbeddingCoordinator",
    "EmbeddingSummary",
    "ExtractionCoordinator",
    "ExtractionOutcome",
    "resolve_method",
]
