"""Clients for the collaborators the pipeline depends on."""

from content_ingestion.services.clients.embedding_provider import (
    EmbeddingProvider,
    EmbeddingProviderError,
    GatewayEmbeddingProvider,
    SentenceTransformerProvider,
    create_embedding_provider,
)
from content_ingestion.services.clients.extraction_engine import (
    ExtractionEngine,
    ExtractionResult,
    LocalExtractionEngine,
    RemoteExtractionEngine,
    clean_text,
)
from content_ingestion.services.clients.file_service import FileServiceClient, StoredFile

__all__ = [
    "EmbeddingProvider",
    "EmbeddingProviderError",
    "GatewayEmbeddingProvider",
    "SentenceTransformerProvider",
    "create_embedding_provider",
    "ExtractionEngine",
    "ExtractionResult",
    "LocalExtractionEngine",
    "RemoteExtractionEngine",
    "clean_text",
    "FileServiceClient",
    "StoredFile",
]
