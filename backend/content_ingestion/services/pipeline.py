"""
Pipeline Runner

Executes one pipeline run per ``IngestionJob``. The run is driven by the
item's current status, so the same code serves first runs and reprocessing:

    PENDING     fetch payload, extract          -> EXTRACTING -> PROCESSING
    PROCESSING  chunk, replace chunk set        -> CHUNKING   -> EMBEDDING
    EMBEDDING   embed unembedded chunks         -> COMPLETED

A failure at any point marks the item FAILED (error recorded in its
processing metadata) and the job failed. Work committed by earlier stages
or batches is kept.

Every stage and batch commit renews the job's heartbeat through a
``RunLease``. Once stall recovery has failed the job, the next write of the
old run raises ``RunSupersededError`` and the run is abandoned without
touching the item, which by then may belong to a newer job.

Also hosts the two maintenance operations scheduled by Celery beat:
re-dispatching jobs whose message was lost and failing stalled runs.
"""

import time
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from content_ingestion.core.config import JobConfig
from content_ingestion.core.exceptions import (
    ContentIngestionError,
    InvalidStatusTransition,
    ProcessingError,
    RunSupersededError,
)
from content_ingestion.core.logging import get_logger
from content_ingestion.models import (
    ContentItem,
    ExtractionMethod,
    IngestionJob,
    JobStatus,
    ProcessingStatus,
)
from content_ingestion.services.content_store import ContentStore
from content_ingestion.services.job_queue import JobDispatcher, JobStore
from content_ingestion.services.processors import (
    ContentChunker,
    EmbeddingCoordinator,
    ExtractionCoordinator,
)
from content_ingestion.services.sources import SourceAdapterRegistry
from content_ingestion.services.status_tracker import ACTIVE_STATUSES, StatusTracker

logger = get_logger(__name__)


@dataclass
class RunResult:
    job_id: int
    outcome: str  # completed, failed, delayed, cancelled, skipped, abandoned
    content_item_id: Optional[int] = None
    status: Optional[ProcessingStatus] = None
    error: Optional[str] = None


class PipelineRunner:
    """Runs pipeline jobs against a session factory."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: SourceAdapterRegistry,
        extractor: ExtractionCoordinator,
        chunker: ContentChunker,
        embedder: EmbeddingCoordinator,
        dispatcher: JobDispatcher,
        job_config: Optional[JobConfig] = None,
    ):
        self.session_factory = session_factory
        self.registry = registry
        self.extractor = extractor
        self.chunker = chunker
        self.embedder = embedder
        self.dispatcher = dispatcher
        self.job_config = job_config or JobConfig()

    # ========================================
    # Job Execution
    # ========================================

    async def process_job(self, job_id: int) -> RunResult:
        """
        Claim and run one job.

        Not admitted by the gate -> the job is parked as DELAYED and
        dispatched again after ``retry_delay_seconds``.
        """
        async with self.session_factory() as db:
            jobs = JobStore(db, self.job_config)
            store = ContentStore(db)

            job = await jobs.get_job(job_id)
            if job is None:
                logger.warning("job_not_found", job_id=job_id)
                return RunResult(job_id=job_id, outcome="skipped")
            if job.status not in (JobStatus.PENDING, JobStatus.DELAYED):
                logger.info("job_already_handled", job_id=job_id, status=str(job.status))
                return RunResult(job_id=job_id, outcome="skipped", content_item_id=job.content_item_id)

            item = await store.get_item(job.content_item_id)
            if item is None:
                await jobs.cancel(job, "Content deleted")
                logger.info("job_cancelled_item_deleted", job_id=job_id, content_item_id=job.content_item_id)
                return RunResult(job_id=job_id, outcome="cancelled", content_item_id=job.content_item_id)

            if not await jobs.claim(job_id):
                return await self._not_admitted(jobs, job_id)

            job = await jobs.get_job(job_id)
            await db.refresh(item)
            return await self._run(db, job, item)

    async def _not_admitted(self, jobs: JobStore, job_id: int) -> RunResult:
        job = await jobs.get_job(job_id)
        if job is None or job.status not in (JobStatus.PENDING, JobStatus.DELAYED):
            return RunResult(job_id=job_id, outcome="skipped")

        if job.attempts >= job.max_attempts:
            await jobs.fail(job, f"Gave up after {job.attempts} attempts")
            return RunResult(job_id=job_id, outcome="failed", content_item_id=job.content_item_id)

        await jobs.delay(job)
        self.dispatcher.dispatch(job_id, delay_seconds=self.job_config.retry_delay_seconds, priority=job.priority)
        logger.info(
            "job_delayed",
            job_id=job_id,
            retry_in_seconds=self.job_config.retry_delay_seconds,
        )
        return RunResult(job_id=job_id, outcome="delayed", content_item_id=job.content_item_id)

    async def _run(self, db: AsyncSession, job: IngestionJob, item: ContentItem) -> RunResult:
        jobs = JobStore(db, self.job_config)
        lease = jobs.lease(job)
        store = ContentStore(db, lease)
        tracker = StatusTracker(db, lease)

        logger.info(
            "pipeline_run_started",
            job_id=job.id,
            content_item_id=item.id,
            status=str(item.processing_status),
            attempt=job.attempts,
        )

        try:
            summary = await self._run_stages(store, tracker, item, job)
            await jobs.complete(job, summary)
        except Exception as e:
            return await self._fail(db, tracker, jobs, job, item, e)

        logger.info("pipeline_run_completed", job_id=job.id, **summary)
        return RunResult(
            job_id=job.id,
            outcome="completed",
            content_item_id=item.id,
            status=item.processing_status,
        )

    async def _run_stages(
        self,
        store: ContentStore,
        tracker: StatusTracker,
        item: ContentItem,
        job: IngestionJob,
    ) -> dict[str, Any]:
        started = time.monotonic()
        run_metadata: dict[str, Any] = {}

        if item.processing_status == ProcessingStatus.PENDING:
            await self._extract(store, tracker, item, job)

        if item.processing_status == ProcessingStatus.PROCESSING:
            await tracker.transition(item, ProcessingStatus.CHUNKING)
            chunks = self.chunker.chunk(
                item.content,
                metadata={"source_type": str(item.source_type), "content_type": item.content_type},
            )
            if not chunks:
                raise ProcessingError(
                    "Content produced no chunks",
                    code="EMPTY_CONTENT",
                    details={"content_item_id": item.id},
                )
            await store.replace_chunks(item, chunks)
            run_metadata["chunk_stats"] = ContentChunker.get_chunk_stats(chunks)
            await tracker.transition(item, ProcessingStatus.EMBEDDING)

        if item.processing_status != ProcessingStatus.EMBEDDING:
            raise InvalidStatusTransition(item.processing_status, ProcessingStatus.EMBEDDING)

        if "chunk_stats" not in run_metadata and (job.input_data or {}).get("reset_embeddings"):
            await store.clear_embeddings(item.id)

        embedding = await self.embedder.embed_item(store, item)

        chunks = await store.get_chunks(item.id)
        total_duration_ms = int((time.monotonic() - started) * 1000)
        run_metadata.update({
            "total_duration_ms": total_duration_ms,
            "total_tokens": sum(chunk.tokens for chunk in chunks),
            "embedding": {
                "model": embedding.model,
                "dimensions": embedding.dimensions,
                "embedded_chunks": embedding.embedded_chunks,
                "batches": embedding.batches,
                "retries": embedding.retries,
                "duration_ms": embedding.duration_ms,
                "resumed": embedding.resumed,
            },
        })

        await store.finalize(item, len(chunks), run_metadata)
        await tracker.transition(item, ProcessingStatus.COMPLETED)

        return {
            "content_item_id": item.id,
            "total_chunks": len(chunks),
            "embedded_chunks": embedding.embedded_chunks,
            "total_duration_ms": total_duration_ms,
        }

    async def _extract(
        self,
        store: ContentStore,
        tracker: StatusTracker,
        item: ContentItem,
        job: IngestionJob,
    ) -> None:
        await tracker.transition(item, ProcessingStatus.EXTRACTING)

        adapter = self.registry.for_source_type(item.source_type)
        payload = await adapter.fetch_payload(item)

        requested = (job.input_data or {}).get("extraction_method")
        await self.extractor.extract(item, payload, ExtractionMethod(requested) if requested else None)

        await store.save_item(item, "extracted content")
        await tracker.transition(item, ProcessingStatus.PROCESSING)

    async def _fail(
        self,
        db: AsyncSession,
        tracker: StatusTracker,
        jobs: JobStore,
        job: IngestionJob,
        item: ContentItem,
        error: Exception,
    ) -> RunResult:
        # Uncommitted stage state is discarded; reload what was committed
        await db.rollback()
        await db.refresh(item)
        await db.refresh(job)

        if isinstance(error, RunSupersededError) or job.status != JobStatus.ACTIVE:
            return self._abandoned(job, item, error)
        if item.processing_status in ACTIVE_STATUSES:
            try:
                await tracker.mark_failed(item, error)
            except RunSupersededError as e:
                return self._abandoned(job, item, e)

        code = error.code if isinstance(error, ContentIngestionError) else "INTERNAL_ERROR"
        message = error.message if isinstance(error, ContentIngestionError) else str(error)
        await jobs.fail(job, message, output={"content_item_id": item.id, "error_code": code})

        logger.error(
            "pipeline_run_failed",
            job_id=job.id,
            content_item_id=item.id,
            error_code=code,
            error=message,
            exc_info=not isinstance(error, ContentIngestionError),
        )
        return RunResult(
            job_id=job.id,
            outcome="failed",
            content_item_id=item.id,
            status=item.processing_status,
            error=message,
        )

    def _abandoned(self, job: IngestionJob, item: ContentItem, error: Exception) -> RunResult:
        logger.warning(
            "pipeline_run_abandoned",
            job_id=job.id,
            content_item_id=item.id,
            job_status=str(job.status),
            status=str(item.processing_status),
            error=str(error),
        )
        return RunResult(
            job_id=job.id,
            outcome="abandoned",
            content_item_id=item.id,
            status=item.processing_status,
            error=str(error),
        )

    # ========================================
    # Maintenance
    # ========================================

    async def dispatch_pending_jobs(self, min_age_seconds: int = 60) -> int:
        """Re-send PENDING/DELAYED jobs whose original dispatch was lost."""
        async with self.session_factory() as db:
            jobs = await JobStore(db, self.job_config).dispatchable_jobs(min_age_seconds=min_age_seconds)

        for job in jobs:
            self.dispatcher.dispatch(job.id, priority=job.priority)

        if jobs:
            logger.info("pending_jobs_dispatched", count=len(jobs))
        return len(jobs)

    async def recover_stalled_runs(self) -> int:
        """
        Fail ACTIVE jobs without a heartbeat for ``stale_after_seconds`` and
        their items. The job is failed first, so a run that is merely slow
        loses its lease and cannot write over the recovered item.
        """
        recovered = 0
        async with self.session_factory() as db:
            jobs = JobStore(db, self.job_config)
            store = ContentStore(db)
            tracker = StatusTracker(db)

            stalled = [(job.id, job.content_item_id) for job in await jobs.stale_active_jobs()]
            for job_id, content_item_id in stalled:
                error = ProcessingError(
                    f"Run stalled: no heartbeat for {self.job_config.stale_after_seconds}s",
                    code="RUN_STALLED",
                    details={"job_id": job_id},
                )

                if not await jobs.fail_stalled(job_id, error.message):
                    logger.info("stalled_run_resumed", job_id=job_id)
                    continue

                item = await store.get_item(content_item_id, for_update=True)
                try:
                    if item is not None and item.processing_status in ACTIVE_STATUSES:
                        await tracker.mark_failed(item, error)
                    else:
                        await store.commit("stalled run", job_id=job_id)
                except RunSupersededError:
                    # Rolled back with the job; the next sweep retries
                    continue

                recovered += 1
                logger.warning("stalled_run_recovered", job_id=job_id, content_item_id=content_item_id)

        return recovered
