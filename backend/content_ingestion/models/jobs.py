"""
Ingestion Job Model

A persisted record for every pipeline run. Workers pick jobs up by id,
claim them through the admission gate in ``services/job_queue.py`` and
write the outcome back, so progress survives worker restarts and can be
inspected without any in-process state.

Job Status Flow:
----------------
PENDING -> ACTIVE -> COMPLETED | FAILED
PENDING -> DELAYED (admission gate full) -> ACTIVE ...
PENDING | DELAYED -> CANCELLED (content deleted before the run started)
"""

import enum
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from content_ingestion.db.base import BaseModel, JSONColumn


class JobType(str, enum.Enum):
    CONTENT_PROCESSING = "content_processing"
    CONTENT_REPROCESSING = "content_reprocessing"

    def __str__(self) -> str:
        return self.value


class JobStatus(str, enum.Enum):
    """Lifecycle of a persisted pipeline job."""

    PENDING = "pending"
    ACTIVE = "active"
    DELAYED = "delayed"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value


# Jobs that still hold (or wait for) a run on their content item
UNFINISHED_JOB_STATUSES = (JobStatus.PENDING, JobStatus.DELAYED, JobStatus.ACTIVE)

# Enum columns store member names
UNFINISHED_JOB_CONDITION = "status IN ('PENDING', 'DELAYED', 'ACTIVE')"


class IngestionJob(BaseModel):
    """
    IngestionJob model - one queued or executed pipeline run.

    Table: ingestion_jobs

    ``input_data`` carries run options (e.g. reprocessing steps);
    ``output_data`` carries the run summary (chunk count, durations).
    ``attempts`` counts admissions, not embedding retries.
    """

    __tablename__ = "ingestion_jobs"

    content_item_id: Mapped[int] = mapped_column(
        ForeignKey("content_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    job_type: Mapped[JobType] = mapped_column(
        nullable=False,
        default=JobType.CONTENT_PROCESSING,
    )

    status: Mapped[JobStatus] = mapped_column(
        nullable=False,
        default=JobStatus.PENDING,
        index=True,
    )

    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=5)

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)

    input_data: Mapped[dict[str, Any]] = mapped_column(
        JSONColumn,
        nullable=False,
        default=dict,
    )

    output_data: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONColumn,
        nullable=True,
    )

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    next_retry_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    # Renewed by the running worker with every stage and batch commit
    heartbeat_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        Index("ix_ingestion_jobs_item_status", "content_item_id", "status"),
        # At most one queued or running job per content item
        Index(
            "uq_ingestion_jobs_unfinished_item",
            "content_item_id",
            unique=True,
            postgresql_where=text(UNFINISHED_JOB_CONDITION),
            sqlite_where=text(UNFINISHED_JOB_CONDITION),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"IngestionJob(id={self.id}, content_item_id={self.content_item_id}, "
            f"type={self.job_type}, status={self.status}, attempts={self.attempts})"
        )

    @property
    def is_finished(self) -> bool:
        return self.status not in UNFINISHED_JOB_STATUSES

    def summary(self) -> dict[str, Any]:
        """Compact view used by the status endpoint."""
        return {
            "job_id": self.id,
            "job_type": str(self.job_type),
            "status": str(self.status),
            "attempts": self.attempts,
            "error_message": self.error_message,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
