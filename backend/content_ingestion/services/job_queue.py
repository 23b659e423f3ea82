"""
Job Queue

Persisted pipeline jobs plus the hand-off to Celery.

Lifecycle:
----------
1. The ingestion service creates a PENDING job in the same transaction as
   its content item, commits, then dispatches the job id.
2. A worker claims the job through the admission gate (one conditional
   UPDATE). If the gate is full the job becomes DELAYED and is dispatched
   again after ``retry_delay_seconds``.
3. The worker runs the pipeline under a ``RunLease``: every stage and
   batch commit renews ``heartbeat_at`` in the same transaction and aborts
   when the job is no longer ACTIVE. The job ends COMPLETED or FAILED.

A partial unique index allows one unfinished job per content item. Beat
tasks re-dispatch PENDING/DELAYED jobs whose message was lost and fail
ACTIVE jobs whose heartbeat stopped (worker killed or hung mid-run).
"""

import abc
from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

from sqlalchemy import and_, func, or_, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from content_ingestion.core.config import JobConfig
from content_ingestion.core.exceptions import RunSupersededError
from content_ingestion.core.logging import get_logger
from content_ingestion.db.base import utcnow
from content_ingestion.models import (
    UNFINISHED_JOB_STATUSES,
    ContentItem,
    IngestionJob,
    JobStatus,
    JobType,
)

logger = get_logger(__name__)

# pg_advisory_xact_lock key serialising admission decisions
CLAIM_LOCK_KEY = 7_104_513


# ========================================
# Dispatch
# ========================================

class JobDispatcher(abc.ABC):
    """Hands a committed job id to the worker pool."""

    @abc.abstractmethod
    def dispatch(self, job_id: int, delay_seconds: float = 0, priority: Optional[int] = None) -> None:
        ...


class CeleryJobDispatcher(JobDispatcher):
    """Sends ``pipeline.process_job`` to the ``pipeline`` queue."""

    TASK_NAME = "pipeline.process_job"

    def __init__(self, celery_app):
        self.celery_app = celery_app

    def dispatch(self, job_id: int, delay_seconds: float = 0, priority: Optional[int] = None) -> None:
        options: dict[str, Any] = {"queue": "pipeline"}
        if delay_seconds:
            options["countdown"] = delay_seconds
        if priority is not None:
            # Redis transport: 0 is the highest priority
            options["priority"] = max(0, min(9, 10 - priority))

        self.celery_app.send_task(self.TASK_NAME, args=[job_id], **options)
        logger.info("job_dispatched", job_id=job_id, delay_seconds=delay_seconds)


# ========================================
# Run Lease
# ========================================

class RunLease:
    """
    Ownership of a content item for the duration of one ACTIVE job.

    ``renew`` runs inside the transaction of each stage or batch write, so
    the write commits only while the job is still ACTIVE. It also takes the
    job row lock, which makes stall recovery wait for the write in flight.
    """

    def __init__(self, db: AsyncSession, job_id: int):
        self.db = db
        self.job_id = job_id

    async def renew(self) -> None:
        """
        Raises:
            RunSupersededError: the job was failed or cancelled meanwhile
        """
        result = await self.db.execute(
            update(IngestionJob)
            .where(
                IngestionJob.id == self.job_id,
                IngestionJob.status == JobStatus.ACTIVE,
            )
            .values(heartbeat_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning("run_lease_lost", job_id=self.job_id)
            raise RunSupersededError(
                f"Job {self.job_id} is no longer active",
                details={"job_id": self.job_id},
            )


# ========================================
# Job Store
# ========================================

class JobStore:
    """Reads and writes ``ingestion_jobs``."""

    def __init__(self, db: AsyncSession, config: Optional[JobConfig] = None):
        self.db = db
        self.config = config or JobConfig()

    async def create_job(
        self,
        content_item_id: int,
        job_type: JobType = JobType.CONTENT_PROCESSING,
        input_data: Optional[dict[str, Any]] = None,
        priority: int = 5,
    ) -> IngestionJob:
        """Add a PENDING job (flush only; committed with its content item)."""
        job = IngestionJob(
            content_item_id=content_item_id,
            job_type=job_type,
            status=JobStatus.PENDING,
            priority=priority,
            attempts=0,
            max_attempts=self.config.max_attempts,
            input_data=input_data or {},
        )
        self.db.add(job)
        await self.db.flush()
        return job

    async def get_job(self, job_id: int) -> Optional[IngestionJob]:
        result = await self.db.execute(
            select(IngestionJob)
            .where(IngestionJob.id == job_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def latest_job(self, content_item_id: int) -> Optional[IngestionJob]:
        result = await self.db.execute(
            select(IngestionJob)
            .where(IngestionJob.content_item_id == content_item_id)
            .order_by(IngestionJob.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def has_unfinished_job(self, content_item_id: int) -> bool:
        count = await self.db.scalar(
            select(func.count())
            .select_from(IngestionJob)
            .where(
                IngestionJob.content_item_id == content_item_id,
                IngestionJob.status.in_(UNFINISHED_JOB_STATUSES),
            )
        )
        return bool(count)

    async def count_active(self) -> int:
        return int(await self.db.scalar(
            select(func.count())
            .select_from(IngestionJob)
            .where(IngestionJob.status == JobStatus.ACTIVE)
        ) or 0)

    # ========================================
    # Admission Gate
    # ========================================

    async def claim(self, job_id: int) -> bool:
        """
        Atomically move a job to ACTIVE if it may run now.

        Admitted only when the job is still PENDING/DELAYED, has attempts
        left, its content item is not deleted, fewer than
        ``max_concurrent_jobs`` jobs are ACTIVE, and no other job for the
        same content item is ACTIVE. Commits either way.

        On PostgreSQL a transaction-scoped advisory lock serialises claims,
        so the ACTIVE count read by the UPDATE includes every admission
        committed before it.
        """
        if self.db.get_bind().dialect.name == "postgresql":
            await self.db.execute(
                text("SELECT pg_advisory_xact_lock(:key)"),
                {"key": CLAIM_LOCK_KEY},
            )

        running = aliased(IngestionJob)
        active_count = (
            select(func.count(running.id))
            .where(running.status == JobStatus.ACTIVE)
            .scalar_subquery()
        )

        sibling = aliased(IngestionJob)
        item_busy = (
            select(sibling.id)
            .where(
                sibling.content_item_id == IngestionJob.content_item_id,
                sibling.status == JobStatus.ACTIVE,
                sibling.id != IngestionJob.id,
            )
            .correlate(IngestionJob)
            .exists()
        )

        item_live = (
            select(ContentItem.id)
            .where(
                ContentItem.id == IngestionJob.content_item_id,
                ContentItem.deleted_at.is_(None),
            )
            .correlate(IngestionJob)
            .exists()
        )

        now = utcnow()
        result = await self.db.execute(
            update(IngestionJob)
            .where(
                IngestionJob.id == job_id,
                IngestionJob.status.in_([JobStatus.PENDING, JobStatus.DELAYED]),
                IngestionJob.attempts < IngestionJob.max_attempts,
                active_count < self.config.max_concurrent_jobs,
                ~item_busy,
                item_live,
            )
            .values(
                status=JobStatus.ACTIVE,
                started_at=now,
                updated_at=now,
                heartbeat_at=now,
                next_retry_at=None,
                attempts=IngestionJob.attempts + 1,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        admitted = result.rowcount == 1
        logger.info("job_claim", job_id=job_id, admitted=admitted)
        return admitted

    # ========================================
    # Outcomes
    # ========================================

    async def delay(self, job: IngestionJob) -> datetime:
        """Park a job that was not admitted; returns when to try again."""
        next_retry_at = utcnow() + timedelta(seconds=self.config.retry_delay_seconds)
        job.status = JobStatus.DELAYED
        job.next_retry_at = next_retry_at
        self.db.add(job)
        await self.db.commit()
        return next_retry_at

    def lease(self, job: IngestionJob) -> RunLease:
        return RunLease(self.db, job.id)

    async def complete(self, job: IngestionJob, output: Optional[dict[str, Any]] = None) -> None:
        """
        ACTIVE -> COMPLETED, only if the job is still ACTIVE.

        Raises:
            RunSupersededError: the job was failed or cancelled meanwhile
        """
        completed_at = utcnow()
        output = output or {}
        result = await self.db.execute(
            update(IngestionJob)
            .where(IngestionJob.id == job.id, IngestionJob.status == JobStatus.ACTIVE)
            .values(
                status=JobStatus.COMPLETED,
                completed_at=completed_at,
                updated_at=completed_at,
                output_data=output,
                error_message=None,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise RunSupersededError(
                f"Job {job.id} is no longer active",
                details={"job_id": job.id},
            )
        await self.db.commit()

        job.status = JobStatus.COMPLETED
        job.completed_at = completed_at
        job.output_data = output
        job.error_message = None

    async def fail(self, job: IngestionJob, message: str, output: Optional[dict[str, Any]] = None) -> None:
        job.status = JobStatus.FAILED
        job.completed_at = utcnow()
        job.error_message = message
        if output is not None:
            job.output_data = output
        self.db.add(job)
        await self.db.commit()

    async def cancel(self, job: IngestionJob, reason: str) -> None:
        job.status = JobStatus.CANCELLED
        job.completed_at = utcnow()
        job.error_message = reason
        self.db.add(job)
        await self.db.commit()

    async def cancel_pending(self, content_item_id: int, reason: str = "Content deleted") -> int:
        """Cancel queued jobs of an item (does not commit)."""
        result = await self.db.execute(
            update(IngestionJob)
            .where(
                IngestionJob.content_item_id == content_item_id,
                IngestionJob.status.in_([JobStatus.PENDING, JobStatus.DELAYED]),
            )
            .values(
                status=JobStatus.CANCELLED,
                completed_at=utcnow(),
                error_message=reason,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    # ========================================
    # Maintenance Queries
    # ========================================

    async def dispatchable_jobs(self, min_age_seconds: int = 60, limit: int = 100) -> list[IngestionJob]:
        """
        PENDING jobs older than ``min_age_seconds`` and DELAYED jobs whose
        retry time has passed, highest priority first.
        """
        now = utcnow()
        result = await self.db.execute(
            select(IngestionJob)
            .where(
                or_(
                    and_(
                        IngestionJob.status == JobStatus.PENDING,
                        IngestionJob.created_at < now - timedelta(seconds=min_age_seconds),
                    ),
                    and_(
                        IngestionJob.status == JobStatus.DELAYED,
                        or_(
                            IngestionJob.next_retry_at.is_(None),
                            IngestionJob.next_retry_at <= now,
                        ),
                    ),
                )
            )
            .order_by(IngestionJob.priority.desc(), IngestionJob.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    def stale_cutoff(self) -> datetime:
        return utcnow() - timedelta(seconds=self.config.stale_after_seconds)

    async def stale_active_jobs(self) -> list[IngestionJob]:
        """ACTIVE jobs whose last heartbeat is older than ``stale_after_seconds``."""
        result = await self.db.execute(
            select(IngestionJob).where(
                IngestionJob.status == JobStatus.ACTIVE,
                func.coalesce(IngestionJob.heartbeat_at, IngestionJob.started_at) < self.stale_cutoff(),
            )
        )
        return list(result.scalars().all())

    async def fail_stalled(self, job_id: int, message: str) -> bool:
        """
        Fail the job if it is still ACTIVE and its heartbeat is still stale
        (does not commit). False when the run reported progress meanwhile.
        """
        now = utcnow()
        result = await self.db.execute(
            update(IngestionJob)
            .where(
                IngestionJob.id == job_id,
                IngestionJob.status == JobStatus.ACTIVE,
                func.coalesce(IngestionJob.heartbeat_at, IngestionJob.started_at) < self.stale_cutoff(),
            )
            .values(
                status=JobStatus.FAILED,
                completed_at=now,
                updated_at=now,
                error_message=message,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def jobs_for_item(self, content_item_id: int, statuses: Optional[Sequence[JobStatus]] = None) -> list[IngestionJob]:
        query = select(IngestionJob).where(IngestionJob.content_item_id == content_item_id)
        if statuses:
            query = query.where(IngestionJob.status.in_(list(statuses)))
        result = await self.db.execute(query.order_by(IngestionJob.id))
        return list(result.scalars().all())
