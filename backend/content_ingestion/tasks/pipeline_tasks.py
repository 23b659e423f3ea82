"""
Celery tasks for the content processing pipeline.

- pipeline.process_job: claim and run one ingestion job
- pipeline.dispatch_pending_jobs: re-send jobs whose message was lost (beat)
- pipeline.recover_stalled_runs: fail runs that stopped making progress (beat)

Failures inside a run are recorded on the content item and the job by the
runner, so these tasks never auto-retry.
"""

import asyncio
import concurrent.futures
import logging
from typing import Any, Optional

from celery import Task

from content_ingestion.services.container import PipelineContainer, build_container
from content_ingestion.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


# ========================================
# Async Helper
# ========================================

_worker_loop: Optional[asyncio.AbstractEventLoop] = None


def _get_worker_loop() -> asyncio.AbstractEventLoop:
    """One event loop per worker process; the DB pool and HTTP clients are bound to it."""
    global _worker_loop
    if _worker_loop is None or _worker_loop.is_closed():
        _worker_loop = asyncio.new_event_loop()
        asyncio.set_event_loop(_worker_loop)
    return _worker_loop


def run_async(coro):
    """
    Run async coroutine, handling both event loop and no event loop scenarios.

    - Celery worker (no running loop): the process-wide worker loop
    - Called from inside a running loop (tests): a fresh loop in a thread
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return _get_worker_loop().run_until_complete(coro)

    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as executor:
        return executor.submit(asyncio.run, coro).result()


# ========================================
# Container
# ========================================

_container: Optional[PipelineContainer] = None


def get_container() -> PipelineContainer:
    """Build the pipeline once per worker process."""
    global _container
    if _container is None:
        _container = build_container()
    return _container


# ========================================
# Base Task Class
# ========================================

class PipelineTask(Task):
    """Base task class: no automatic retries, failures are logged."""

    max_retries = 0

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error(f"Task {self.name}[{task_id}] failed with args {args}: {exc}")


# ========================================
# Tasks
# ========================================

@celery_app.task(
    base=PipelineTask,
    name='pipeline.process_job',
    bind=True,
)
def process_job(self, job_id: int) -> dict[str, Any]:
    """
    Run the pipeline for one job.

    Returns:
        {'job_id', 'outcome', 'content_item_id', 'status', 'error'}
        where outcome is completed, failed, delayed, cancelled, skipped or
        abandoned (the run lost its job to stall recovery)
    """
    logger.info(f"Processing job {job_id} (task {self.request.id})")

    result = run_async(get_container().runner.process_job(job_id))

    return {
        'job_id': result.job_id,
        'outcome': result.outcome,
        'content_item_id': result.content_item_id,
        'status': str(result.status) if result.status else None,
        'error': result.error,
    }


@celery_app.task(base=PipelineTask, name='pipeline.dispatch_pending_jobs')
def dispatch_pending_jobs(min_age_seconds: int = 60) -> dict[str, int]:
    """Re-dispatch PENDING jobs older than ``min_age_seconds`` and due DELAYED jobs."""
    dispatched = run_async(get_container().runner.dispatch_pending_jobs(min_age_seconds=min_age_seconds))
    return {'dispatched': dispatched}


@celery_app.task(base=PipelineTask, name='pipeline.recover_stalled_runs')
def recover_stalled_runs() -> dict[str, int]:
    """Fail ACTIVE jobs past the stale threshold and mark their items FAILED."""
    recovered = run_async(get_container().runner.recover_stalled_runs())
    if recovered:
        logger.warning(f"Recovered {recovered} stalled pipeline runs")
    return {'recovered': recovered}
