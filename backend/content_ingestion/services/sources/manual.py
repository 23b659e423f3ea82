"""Manual source adapter: text typed in by a user."""

from content_ingestion.core.exceptions import ContentValidationError
from content_ingestion.db.base import utcnow
from content_ingestion.models import ContentSourceType, ExtractionMethod
from content_ingestion.schemas.ingestion import ManualContentRequest
from content_ingestion.services.sources.base import (
    DraftContentItem,
    SourceAdapter,
    classification_fields,
)


class ManualSourceAdapter(SourceAdapter[ManualContentRequest]):
    source_type = ContentSourceType.MANUAL
    request_type = ManualContentRequest

    async def ingest(self, request: ManualContentRequest) -> list[DraftContentItem]:
        if not request.content.strip():
            raise ContentValidationError("Content must not be blank", code="EMPTY_CONTENT")

        timestamp = int(utcnow().timestamp() * 1000)
        return [
            DraftContentItem(
                source_id=f"manual_{timestamp}",
                source_type=self.source_type,
                source_metadata={"entered_at": timestamp},
                title=request.title,
                description="Manually entered content",
                content=request.content,
                content_type=request.content_type,
                language=request.language,
                extraction_method=ExtractionMethod.PLAIN_TEXT,
                estimated_size=len(request.content.encode("utf-8")),
                **classification_fields(request),
            )
        ]
