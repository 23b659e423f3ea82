"""
File source adapter.

Uploaded files live in the file service. At request time only the file's
metadata is checked (exists, MIME type allowed, size within limit); the
bytes are downloaded when the pipeline run reaches extraction.
"""

from typing import Optional

from content_ingestion.core.config import ExtractionConfig
from content_ingestion.core.exceptions import ContentValidationError, ExtractionError
from content_ingestion.core.logging import get_logger
from content_ingestion.models import ContentItem, ContentSourceType, ExtractionMethod
from content_ingestion.schemas.ingestion import FileIngestionRequest
from content_ingestion.services.clients.file_service import FileServiceClient
from content_ingestion.services.sources.base import (
    DraftContentItem,
    RawPayload,
    SourceAdapter,
    classification_fields,
)

logger = get_logger(__name__)


class FileSourceAdapter(SourceAdapter[FileIngestionRequest]):
    source_type = ContentSourceType.FILE
    request_type = FileIngestionRequest

    def __init__(self, file_service: FileServiceClient, config: Optional[ExtractionConfig] = None):
        self.file_service = file_service
        self.config = config or ExtractionConfig()

    async def ingest(self, request: FileIngestionRequest) -> list[DraftContentItem]:
        stored = await self.file_service.get_file(request.file_id)

        if not self.config.is_mime_type_allowed(stored.mime_type):
            raise ContentValidationError(
                f"Unsupported file type: {stored.mime_type}",
                code="UNSUPPORTED_MIME_TYPE",
                details={"file_id": request.file_id, "mime_type": stored.mime_type},
            )

        if stored.size > self.config.max_file_size:
            raise ContentValidationError(
                f"File too large: {stored.size} bytes (limit {self.config.max_file_size})",
                code="FILE_TOO_LARGE",
                details={"file_id": request.file_id, "size": stored.size},
            )

        logger.info(
            "file_source_accepted",
            file_id=request.file_id,
            mime_type=stored.mime_type,
            size=stored.size,
        )

        method = request.extraction_method
        return [
            DraftContentItem(
                source_id=stored.file_id,
                source_type=self.source_type,
                source_metadata={
                    "file_id": stored.file_id,
                    "original_name": stored.original_name,
                    "mime_type": stored.mime_type,
                    "size": stored.size,
                },
                title=request.title,
                description=request.description,
                content_type=stored.mime_type,
                extraction_method=None if method == ExtractionMethod.AUTO else method,
                priority=request.priority,
                estimated_size=stored.size,
                **classification_fields(request),
            )
        ]

    async def fetch_payload(self, item: ContentItem) -> RawPayload:
        file_id = (item.source_metadata or {}).get("file_id") or item.source_id
        stored = await self.file_service.get_file(file_id, include_content=True)

        if not stored.content:
            raise ExtractionError(
                f"File {file_id} is empty",
                code="EMPTY_FILE",
                details={"file_id": file_id},
            )

        return RawPayload(
            name=stored.original_name,
            mime_type=stored.mime_type,
            size=stored.size,
            content=stored.content,
        )

    async def close(self) -> None:
        await self.file_service.close()
