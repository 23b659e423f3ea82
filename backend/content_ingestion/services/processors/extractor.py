"""
Extraction Coordinator

Turns the raw payload of a persisted item into plain text:

1. Resolve the extraction method (explicit, or from the MIME type)
2. Run the extraction engine under a timeout
3. Copy the result onto the item without overwriting caller-supplied
   title/description
4. Record confidence and duration in ``processing_metadata``

Low confidence is recorded, never fatal. Timeouts, engine failures and
empty output raise ``ExtractionError``.
"""

import asyncio
import time
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Optional

from content_ingestion.core.config import ExtractionConfig
from content_ingestion.core.exceptions import ContentIngestionError, ExtractionError
from content_ingestion.core.logging import get_logger
from content_ingestion.models import ContentItem, ExtractionMethod
from content_ingestion.services.clients.extraction_engine import ExtractionEngine, ExtractionResult
from content_ingestion.services.sources.base import RawPayload

logger = get_logger(__name__)


def resolve_method(
    mime_type: Optional[str],
    requested: Optional[ExtractionMethod] = None,
) -> ExtractionMethod:
    """Pick an extraction method; explicit requests win over ``auto``."""
    if requested is not None and requested != ExtractionMethod.AUTO:
        return requested

    mime_type = (mime_type or "").split(";")[0].strip().lower()

    if mime_type == "application/pdf":
        return ExtractionMethod.PDF_JS
    if mime_type.startswith("image/"):
        return ExtractionMethod.OCR
    if mime_type.startswith(("audio/", "video/")):
        return ExtractionMethod.SPEECH_TO_TEXT
    if mime_type in ("text/html", "application/xhtml+xml"):
        return ExtractionMethod.HTML_PARSER
    if mime_type in ("text/markdown", "text/x-markdown"):
        return ExtractionMethod.MARKDOWN_PARSER
    return ExtractionMethod.PLAIN_TEXT


@dataclass
class ExtractionOutcome:
    method: ExtractionMethod
    confidence: float
    low_confidence: bool
    duration_ms: int
    content_length: int


class ExtractionCoordinator:
    """Runs one extraction for one content item."""

    def __init__(self, engine: ExtractionEngine, config: Optional[ExtractionConfig] = None):
        self.engine = engine
        self.config = config or ExtractionConfig()

    async def extract(
        self,
        item: ContentItem,
        payload: RawPayload,
        method: Optional[ExtractionMethod] = None,
    ) -> ExtractionOutcome:
        """
        Extract ``payload`` into ``item`` (in memory; the caller persists).

        Raises:
            ExtractionError: engine failure, timeout, or no text extracted
        """
        resolved = resolve_method(payload.mime_type, method or item.extraction_method)
        started = time.monotonic()

        logger.info(
            "extraction_started",
            content_item_id=item.id,
            method=str(resolved),
            mime_type=payload.mime_type,
            size=payload.size,
        )

        try:
            result: ExtractionResult = await asyncio.wait_for(
                self.engine.extract(payload.content, payload.mime_type, resolved),
                timeout=self.config.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise ExtractionError(
                f"Extraction timed out after {self.config.timeout_seconds:g}s",
                code="EXTRACTION_TIMEOUT",
                details={"method": str(resolved), "mime_type": payload.mime_type},
            ) from e
        except ContentIngestionError:
            raise
        except Exception as e:
            raise ExtractionError(
                f"Failed to extract text: {e}",
                details={"method": str(resolved), "mime_type": payload.mime_type},
            ) from e

        duration_ms = int((time.monotonic() - started) * 1000)

        if not result.content or not result.content.strip():
            raise ExtractionError(
                "No text could be extracted from the source",
                code="EMPTY_EXTRACTION",
                details={"method": str(resolved), "mime_type": payload.mime_type},
            )

        self._apply_result(item, result, payload)
        item.extraction_method = resolved

        low_confidence = result.confidence < self.config.confidence_threshold
        item.processing_metadata = {
            **(item.processing_metadata or {}),
            "extraction_duration_ms": duration_ms,
            "extraction_confidence": result.confidence,
            "low_confidence": low_confidence,
            "extraction_details": result.metadata,
        }

        if low_confidence:
            logger.warning(
                "extraction_low_confidence",
                content_item_id=item.id,
                confidence=result.confidence,
                threshold=self.config.confidence_threshold,
            )

        logger.info(
            "extraction_completed",
            content_item_id=item.id,
            method=str(resolved),
            duration_ms=duration_ms,
            content_length=len(item.content),
        )

        return ExtractionOutcome(
            method=resolved,
            confidence=result.confidence,
            low_confidence=low_confidence,
            duration_ms=duration_ms,
            content_length=len(item.content),
        )

    @staticmethod
    def _apply_result(item: ContentItem, result: ExtractionResult, payload: RawPayload) -> None:
        item.content = result.content

        if not item.title and result.title:
            item.title = result.title[:500]
        if not item.description and result.description:
            item.description = result.description
        if result.content_type:
            item.content_type = result.content_type
        if result.language:
            item.language = result.language

        if not item.title and payload.name:
            item.title = PurePosixPath(payload.name).stem or payload.name
