"""
Ingestion Service

Request-time side of the pipeline. Accepting a request means:

1. The source adapter validates and normalises it into drafts
   (validation failures create nothing)
2. Drafts and one PENDING job per draft are committed together
3. Each job id is handed to the dispatcher; the caller gets the
   acceptance contract back immediately

Reprocessing, deletion and the read paths used by the API live here too.
"""

import asyncio
import math
import secrets
import time
from typing import Any, Optional, Sequence

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from content_ingestion.core.config import JobConfig
from content_ingestion.core.exceptions import (
    ContentIngestionError,
    ContentValidationError,
    RunInProgressError,
)
from content_ingestion.core.logging import get_logger
from content_ingestion.models import (
    ContentChunk,
    ContentItem,
    ContentSourceType,
    IngestionJob,
    JobStatus,
    JobType,
    ProcessingStatus,
)
from content_ingestion.schemas import (
    BatchIngestionRequest,
    BatchIngestionResponse,
    BatchItemError,
    ContentStatusResponse,
    IngestionResponse,
    JobSummary,
    Pagination,
)
from content_ingestion.services.content_store import ContentStore
from content_ingestion.services.job_queue import JobDispatcher, JobStore
from content_ingestion.services.sources import DraftContentItem, SourceAdapterRegistry
from content_ingestion.services.status_tracker import (
    ACTIVE_STATUSES,
    REPROCESS_STEPS,
    StatusTracker,
    progress_for,
)

logger = get_logger(__name__)

MIN_ESTIMATE_MS = 5_000
MAX_ESTIMATE_MS = 300_000
GITHUB_FILE_ESTIMATE_MS = 30_000


def estimate_duration_ms(size: int, mime_type: Optional[str]) -> int:
    """
    Rough processing time: ``(size / 1024) * base``, clamped to 5 s..300 s.

    Base per KiB: 200 ms for PDF, 500 ms for images, 1000 ms for audio and
    video, 100 ms for everything else.
    """
    mime_type = (mime_type or "").lower()
    if mime_type == "application/pdf":
        base = 200
    elif mime_type.startswith("image/"):
        base = 500
    elif mime_type.startswith(("audio/", "video/")):
        base = 1000
    else:
        base = 100

    estimate = int((max(size, 0) / 1024) * base)
    return max(MIN_ESTIMATE_MS, min(MAX_ESTIMATE_MS, estimate))


def estimate_for_drafts(drafts: Sequence[DraftContentItem]) -> int:
    if drafts and drafts[0].source_type == ContentSourceType.GITHUB:
        return GITHUB_FILE_ESTIMATE_MS * len(drafts)
    return sum(estimate_duration_ms(draft.estimated_size, draft.content_type) for draft in drafts)


def new_batch_id() -> str:
    return f"batch_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class IngestionService:
    """Per-request service; one instance per database session."""

    def __init__(
        self,
        db: AsyncSession,
        registry: SourceAdapterRegistry,
        dispatcher: JobDispatcher,
        job_config: Optional[JobConfig] = None,
    ):
        self.db = db
        self.registry = registry
        self.dispatcher = dispatcher
        self.store = ContentStore(db)
        self.jobs = JobStore(db, job_config)
        self.tracker = StatusTracker(db)

    # ========================================
    # Ingestion
    # ========================================

    async def ingest(self, request: BaseModel) -> IngestionResponse:
        """
        Accept one ingestion request.

        Raises:
            ContentValidationError: request rejected
            ExtractionError: source unreachable or without text
        """
        adapter = self.registry.for_request(request)
        drafts = await adapter.ingest(request)
        return await self._accept(drafts)

    async def ingest_batch(self, batch: BatchIngestionRequest) -> BatchIngestionResponse:
        """
        Accept several requests.

        Adapters run ``concurrency`` at a time; items are persisted in
        request order. With ``stop_on_error`` nothing after the first failed
        item is accepted.
        """
        batch_id = new_batch_id()
        options = batch.batch_options
        results: list[IngestionResponse] = []
        errors: list[BatchItemError] = []

        indexed = list(enumerate(batch.items))
        for start in range(0, len(indexed), options.concurrency):
            group = indexed[start:start + options.concurrency]
            outcomes = await asyncio.gather(
                *(self.registry.for_request(request).ingest(request) for _, request in group),
                return_exceptions=True,
            )

            for (index, _), outcome in zip(group, outcomes):
                if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                    raise outcome

                if isinstance(outcome, ContentIngestionError):
                    errors.append(BatchItemError(index=index, error=outcome.message, code=outcome.code))
                elif isinstance(outcome, Exception):
                    logger.error("batch_item_failed", batch_id=batch_id, index=index, error=str(outcome))
                    errors.append(BatchItemError(index=index, error=str(outcome), code="INTERNAL_ERROR"))
                else:
                    try:
                        results.append(await self._accept(outcome))
                    except ContentIngestionError as e:
                        await self.db.rollback()
                        errors.append(BatchItemError(index=index, error=e.message, code=e.code))

                if errors and options.stop_on_error:
                    break

            if errors and options.stop_on_error:
                break

        logger.info(
            "batch_ingestion_accepted",
            batch_id=batch_id,
            items=len(batch.items),
            accepted=len(results),
            failed=len(errors),
        )
        return BatchIngestionResponse(batch_id=batch_id, results=results, errors=errors)

    async def _accept(self, drafts: Sequence[DraftContentItem]) -> IngestionResponse:
        items = await self.store.add_items(drafts)

        jobs: list[IngestionJob] = []
        for item, draft in zip(items, drafts):
            jobs.append(await self.jobs.create_job(
                item.id,
                JobType.CONTENT_PROCESSING,
                input_data={
                    "source_type": str(draft.source_type),
                    "extraction_method": str(draft.extraction_method) if draft.extraction_method else None,
                },
                priority=draft.priority,
            ))

        content_ids = [item.id for item in items]
        await self.store.commit("ingestion", content_ids=content_ids)

        for job in jobs:
            self._dispatch(job)

        first = items[0]
        message = (
            f"{len(items)} items accepted for processing"
            if len(items) > 1
            else "Content accepted for processing"
        )

        logger.info(
            "content_accepted",
            source_type=str(first.source_type),
            content_ids=content_ids,
            status=str(first.processing_status),
        )

        return IngestionResponse(
            content_id=first.id,
            content_ids=content_ids,
            job_ids=[job.id for job in jobs],
            status=first.processing_status,
            estimated_duration_ms=estimate_for_drafts(drafts),
            message=message,
        )

    def _dispatch(self, job: IngestionJob) -> None:
        """A lost dispatch leaves the job PENDING; the beat re-dispatcher sends it later."""
        try:
            self.dispatcher.dispatch(job.id, priority=job.priority)
        except Exception as e:
            logger.warning("job_dispatch_failed", job_id=job.id, error=str(e))

    # ========================================
    # Reprocessing and Deletion
    # ========================================

    async def reprocess(
        self,
        content_id: int,
        steps: Sequence[str] = REPROCESS_STEPS,
        create_version: bool = False,
    ) -> IngestionResponse:
        """
        Queue another run of chunking and/or embedding.

        Rerunning chunking always re-embeds (the chunk set is replaced). A
        new version is processed from chunking whatever steps were asked.

        Raises:
            RunInProgressError: item is mid-run or has a queued job
            ContentValidationError: no extracted content, or embedding
                requested without chunks
        """
        # Row lock until commit; the unfinished-job index backs it up
        item = await self.store.require_item(content_id, for_update=True)
        steps = list(dict.fromkeys(steps))

        if item.processing_status in ACTIVE_STATUSES or await self.jobs.has_unfinished_job(item.id):
            raise RunInProgressError(
                f"Content {content_id} is already being processed",
                details={"content_id": content_id, "status": str(item.processing_status)},
            )

        if not item.has_content:
            raise ContentValidationError(
                f"Content {content_id} has no extracted text to reprocess",
                code="CONTENT_NOT_EXTRACTED",
                details={"content_id": content_id},
            )

        reset_embeddings = False
        if create_version:
            steps = list(REPROCESS_STEPS)
        elif "chunking" not in steps and await self.store.count_chunks(item.id) == 0:
            raise ContentValidationError(
                f"Content {content_id} has no chunks to embed",
                code="CHUNKS_MISSING",
                details={"content_id": content_id},
            )

        if create_version:
            target = await self.store.create_version(item)
            target.processing_metadata = {"reprocess_steps": steps, "parent_version": item.version}
        else:
            reset_embeddings = "chunking" not in steps and item.processing_status == ProcessingStatus.COMPLETED
            target = await self.tracker.begin_reprocessing(item, steps)

        try:
            job = await self.jobs.create_job(
                target.id,
                JobType.CONTENT_REPROCESSING,
                input_data={
                    "steps": steps,
                    "create_version": create_version,
                    "reset_embeddings": reset_embeddings,
                },
            )
        except IntegrityError as e:
            await self.db.rollback()
            raise RunInProgressError(
                f"Content {content_id} is already being processed",
                details={"content_id": content_id},
            ) from e
        await self.store.commit("reprocess", content_item_id=target.id)
        self._dispatch(job)

        total_chunks = target.total_chunks or math.ceil(len(target.content) / 450)
        return IngestionResponse(
            content_id=target.id,
            content_ids=[target.id],
            job_ids=[job.id],
            status=target.processing_status,
            estimated_duration_ms=max(MIN_ESTIMATE_MS, min(MAX_ESTIMATE_MS, total_chunks * 200)),
            message=f"Reprocessing queued: {', '.join(steps)}",
        )

    async def delete(self, content_id: int) -> None:
        """
        Soft delete. Queued jobs of the item are cancelled; an item whose
        run is executing right now cannot be deleted.
        """
        item = await self.store.require_item(content_id)

        active_jobs = await self.jobs.jobs_for_item(item.id, statuses=[JobStatus.ACTIVE])
        if active_jobs:
            raise RunInProgressError(
                f"Content {content_id} is being processed and cannot be deleted",
                details={"content_id": content_id, "job_id": active_jobs[0].id},
            )

        cancelled = await self.jobs.cancel_pending(item.id)
        await self.store.soft_delete(item)

        logger.info("content_deleted", content_item_id=item.id, cancelled_jobs=cancelled)

    # ========================================
    # Reads
    # ========================================

    async def get(self, content_id: int) -> ContentItem:
        return await self.store.require_item(content_id)

    async def list_content(
        self,
        page: int = 1,
        limit: int = 20,
        **filters: Any,
    ) -> tuple[list[ContentItem], Pagination]:
        items, total = await self.store.list_items(page=page, limit=limit, **filters)
        return items, self._pagination(page, limit, total)

    async def list_chunks(
        self,
        content_id: int,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[ContentChunk], Pagination]:
        chunks, total = await self.store.list_chunks(content_id, page=page, limit=limit)
        return chunks, self._pagination(page, limit, total)

    async def get_status(self, content_id: int) -> ContentStatusResponse:
        item = await self.store.require_item(content_id)
        embedded = await self.store.count_chunks(item.id, embedded_only=True)
        job = await self.jobs.latest_job(item.id)

        progress = progress_for(item.processing_status)
        if item.processing_status == ProcessingStatus.EMBEDDING and item.total_chunks:
            progress += int(19 * embedded / item.total_chunks)

        return ContentStatusResponse(
            content_id=item.id,
            status=item.processing_status,
            progress=progress,
            total_chunks=item.total_chunks,
            embedded_chunks=embedded,
            processing_metadata=item.processing_metadata or {},
            job=JobSummary(**job.summary()) if job else None,
            processed_at=item.processed_at,
            updated_at=item.updated_at,
        )

    async def stats(self, course_id: Optional[str] = None) -> dict[str, Any]:
        return await self.store.processing_stats(course_id=course_id)

    @staticmethod
    def _pagination(page: int, limit: int, total: int) -> Pagination:
        return Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit) if limit else 0,
        )
