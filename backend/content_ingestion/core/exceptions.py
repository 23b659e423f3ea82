"""
Error taxonomy for content ingestion.

Every error raised by the pipeline carries a machine-readable ``code`` and
the HTTP status the API layer answers with. Errors raised after a request
has been accepted never reach a caller directly: they end up in the item's
``processing_metadata["error"]`` (see ``StatusTracker.mark_failed``).
"""

from typing import Any, Optional


class ContentIngestionError(Exception):
    """Base exception for the ingestion service."""

    code = "CONTENT_INGESTION_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serializable form used for API responses and processing metadata."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ExtractionError(ContentIngestionError):
    """Source unreadable, unsupported format, or extraction engine timeout."""

    code = "EXTRACTION_ERROR"
    status_code = 422


class ProcessingError(ContentIngestionError):
    """Persistence or pipeline bookkeeping failure."""

    code = "PROCESSING_ERROR"
    status_code = 500


class EmbeddingError(ContentIngestionError):
    """Embedding provider failed after all batch retries."""

    code = "EMBEDDING_ERROR"
    status_code = 502


class ContentValidationError(ContentIngestionError):
    """Request rejected before any content item is created."""

    code = "VALIDATION_ERROR"
    status_code = 400


class ContentNotFoundError(ContentIngestionError):
    code = "CONTENT_NOT_FOUND"
    status_code = 404

    def __init__(self, content_id: int):
        super().__init__(
            f"Content {content_id} not found",
            details={"content_id": content_id},
        )


class RunInProgressError(ContentIngestionError):
    """A content item already has an active or queued pipeline run."""

    code = "RUN_IN_PROGRESS"
    status_code = 409


class InvalidStatusTransition(ProcessingError):
    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, current: Any, target: Any):
        super().__init__(
            f"Cannot move from {current} to {target}",
            details={"from": str(current), "to": str(target)},
        )


class RunSupersededError(ProcessingError):
    """
    The run lost ownership of its item: its job is no longer ACTIVE, or the
    item's status changed underneath it. Nothing from the current stage is
    written.
    """

    code = "RUN_SUPERSEDED"
    status_code = 409
