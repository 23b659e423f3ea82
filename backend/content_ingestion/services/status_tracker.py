"""
Status Tracker

Owns every change to ``ContentItem.processing_status``.

State Machine:
--------------
PENDING    -> EXTRACTING | FAILED
EXTRACTING -> PROCESSING | FAILED
PROCESSING -> CHUNKING   | FAILED
CHUNKING   -> EMBEDDING  | FAILED
EMBEDDING  -> COMPLETED  | FAILED
COMPLETED, FAILED: terminal

The only way back from a terminal state is ``begin_reprocessing``. Each
transition is committed immediately so pollers see it, and is written as
a compare-and-set on the status the tracker last saw: a run whose item
was moved on by someone else (stall recovery, reprocessing) gets
``RunSupersededError`` instead of overwriting the newer status. A tracker
built with a ``RunLease`` also renews it in the same transaction.
"""

import traceback
from typing import Any, Iterable, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from content_ingestion.core.exceptions import (
    ContentIngestionError,
    InvalidStatusTransition,
    ProcessingError,
    RunSupersededError,
)
from content_ingestion.core.logging import get_logger
from content_ingestion.db.base import utcnow
from content_ingestion.models import ContentItem, ProcessingStatus
from content_ingestion.services.job_queue import RunLease

logger = get_logger(__name__)


ALLOWED_TRANSITIONS: dict[ProcessingStatus, frozenset[ProcessingStatus]] = {
    ProcessingStatus.PENDING: frozenset({ProcessingStatus.EXTRACTING, ProcessingStatus.FAILED}),
    ProcessingStatus.EXTRACTING: frozenset({ProcessingStatus.PROCESSING, ProcessingStatus.FAILED}),
    ProcessingStatus.PROCESSING: frozenset({ProcessingStatus.CHUNKING, ProcessingStatus.FAILED}),
    ProcessingStatus.CHUNKING: frozenset({ProcessingStatus.EMBEDDING, ProcessingStatus.FAILED}),
    ProcessingStatus.EMBEDDING: frozenset({ProcessingStatus.COMPLETED, ProcessingStatus.FAILED}),
    ProcessingStatus.COMPLETED: frozenset(),
    ProcessingStatus.FAILED: frozenset(),
}

TERMINAL_STATUSES = frozenset({ProcessingStatus.COMPLETED, ProcessingStatus.FAILED})

ACTIVE_STATUSES = frozenset(set(ProcessingStatus) - TERMINAL_STATUSES)

STATUS_PROGRESS: dict[ProcessingStatus, int] = {
    ProcessingStatus.PENDING: 0,
    ProcessingStatus.EXTRACTING: 20,
    ProcessingStatus.PROCESSING: 40,
    ProcessingStatus.CHUNKING: 60,
    ProcessingStatus.EMBEDDING: 80,
    ProcessingStatus.COMPLETED: 100,
    ProcessingStatus.FAILED: 0,
}

REPROCESS_STEPS = ("chunking", "embedding")


def can_transition(current: ProcessingStatus, target: ProcessingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def progress_for(status: ProcessingStatus) -> int:
    return STATUS_PROGRESS[status]


class StatusTracker:
    """Validated, persisted status changes for content items."""

    def __init__(self, db: AsyncSession, lease: Optional[RunLease] = None):
        self.db = db
        self.lease = lease

    async def transition(
        self,
        item: ContentItem,
        target: ProcessingStatus,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ContentItem:
        """
        Move ``item`` to ``target`` and commit.

        Raises:
            InvalidStatusTransition: edge not in the state machine
        """
        current = item.processing_status
        if not can_transition(current, target):
            raise InvalidStatusTransition(current, target)

        await self._compare_and_set(item, current, target)
        item.processing_status = target
        item.updated_at = utcnow()
        if metadata:
            item.processing_metadata = {**(item.processing_metadata or {}), **metadata}

        await self._commit(item, target)

        logger.info(
            "content_status_changed",
            content_item_id=item.id,
            from_status=str(current),
            to_status=str(target),
        )
        return item

    async def mark_failed(self, item: ContentItem, error: BaseException) -> ContentItem:
        """
        Move a non-terminal item to FAILED and record the error.

        ``processing_metadata["error"]`` gets the code, message, type, any
        structured details and the formatted stack.
        """
        current = item.processing_status
        if current in TERMINAL_STATUSES:
            raise InvalidStatusTransition(current, ProcessingStatus.FAILED)

        if isinstance(error, ContentIngestionError):
            code, message, details = error.code, error.message, error.details
        else:
            code, message, details = "INTERNAL_ERROR", str(error), {}

        error_record = {
            "code": code,
            "message": message,
            "type": type(error).__name__,
            "details": details,
            "failed_status": str(current),
            "failed_at": utcnow().isoformat(),
            "stack": "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            ),
        }

        await self._compare_and_set(item, current, ProcessingStatus.FAILED)
        item.processing_status = ProcessingStatus.FAILED
        item.updated_at = utcnow()
        item.processing_metadata = {**(item.processing_metadata or {}), "error": error_record}

        await self._commit(item, ProcessingStatus.FAILED)

        logger.warning(
            "content_processing_failed",
            content_item_id=item.id,
            from_status=str(current),
            error_code=code,
            error=message,
        )
        return item

    async def begin_reprocessing(self, item: ContentItem, steps: Iterable[str]) -> ContentItem:
        """
        Re-open a finished item for another run.

        COMPLETED|FAILED -> PROCESSING when chunking is rerun (chunks are
        rebuilt), -> EMBEDDING when only embedding is rerun. The previous
        error is cleared. Does not commit: the caller commits together with
        the new job record.
        """
        steps = list(steps)
        unknown = [step for step in steps if step not in REPROCESS_STEPS]
        if unknown or not steps:
            raise ProcessingError(
                f"Unknown reprocessing steps: {unknown or steps}",
                code="INVALID_REPROCESS_STEPS",
                status_code=400,
            )

        current = item.processing_status
        if current not in TERMINAL_STATUSES:
            raise InvalidStatusTransition(current, "reprocessing")

        target = ProcessingStatus.PROCESSING if "chunking" in steps else ProcessingStatus.EMBEDDING

        metadata = dict(item.processing_metadata or {})
        previous_error = metadata.pop("error", None)
        if previous_error:
            metadata["previous_error"] = {
                key: previous_error.get(key) for key in ("code", "message", "failed_at")
            }
        metadata["reprocess_steps"] = steps

        item.processing_status = target
        item.updated_at = utcnow()
        item.processing_metadata = metadata
        self.db.add(item)

        logger.info(
            "content_reprocessing_started",
            content_item_id=item.id,
            from_status=str(current),
            to_status=str(target),
            steps=steps,
        )
        return item

    async def _compare_and_set(
        self,
        item: ContentItem,
        current: ProcessingStatus,
        target: ProcessingStatus,
    ) -> None:
        """
        Write ``target`` only if the stored status is still ``current``.

        The row stays locked until ``_commit``. On a mismatch the
        transaction is rolled back and ``RunSupersededError`` raised.
        """
        if self.lease is not None:
            await self.lease.renew()

        result = await self.db.execute(
            update(ContentItem)
            .where(
                ContentItem.id == item.id,
                ContentItem.processing_status == current,
            )
            .values(processing_status=target, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            logger.warning(
                "content_status_superseded",
                content_item_id=item.id,
                expected_status=str(current),
                target_status=str(target),
            )
            raise RunSupersededError(
                f"Content item {item.id} is no longer {current}",
                details={"content_item_id": item.id, "expected_status": str(current)},
            )
        set_committed_value(item, "processing_status", target)

    async def _commit(self, item: ContentItem, target: ProcessingStatus) -> None:
        self.db.add(item)
        try:
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            raise ProcessingError(
                f"Failed to persist status {target}: {e}",
                details={"content_item_id": item.id, "status": str(target)},
            ) from e
