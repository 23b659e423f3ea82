"""
Tests for PipelineRunner.

Requests are accepted through the ingestion service (like the API does),
then the recorded job ids are run the way a Celery worker would run them.
Results are always read back through a fresh session.
"""

from datetime import timedelta

import pytest

from content_ingestion.db.base import utcnow
from content_ingestion.models import ExtractionMethod, JobStatus, ProcessingStatus
from content_ingestion.schemas import FileIngestionRequest, ManualContentRequest
from content_ingestion.services.content_store import ContentStore
from content_ingestion.services.job_queue import JobStore


async def load_state(session_factory, content_id: int) -> dict:
    async with session_factory() as db:
        store = ContentStore(db)
        item = await store.get_item(content_id, include_deleted=True)
        return {
            "item": item,
            "jobs": await JobStore(db).jobs_for_item(content_id),
            "chunks": await store.count_chunks(content_id),
            "embedded": await store.count_chunks(content_id, embedded_only=True),
        }


async def accept_manual(container, db_session, content: str):
    service = container.ingestion_service(db_session)
    return await service.ingest(ManualContentRequest(title="Cell biology", content=content))


class TestSuccessfulRuns:
    @pytest.mark.asyncio
    async def test_manual_item_completes(self, container, db_session, session_factory, dispatcher, long_text):
        accepted = await accept_manual(container, db_session, long_text)
        assert accepted.status == ProcessingStatus.PROCESSING
        assert dispatcher.job_ids == accepted.job_ids

        result = await container.runner.process_job(accepted.job_ids[0])

        assert result.outcome == "completed"
        assert result.status == ProcessingStatus.COMPLETED

        state = await load_state(session_factory, accepted.content_id)
        item = state["item"]
        assert item.processing_status == ProcessingStatus.COMPLETED
        assert item.total_chunks == 4
        assert state["chunks"] == 4
        assert state["embedded"] == 4
        assert item.processed_at is not None
        assert item.processing_metadata["embedding"]["embedded_chunks"] == 4
        assert "total_duration_ms" in item.processing_metadata

        job = state["jobs"][0]
        assert job.status == JobStatus.COMPLETED
        assert job.attempts == 1
        assert job.output_data["total_chunks"] == 4

    @pytest.mark.asyncio
    async def test_file_item_is_extracted(self, container, db_session, session_factory):
        service = container.ingestion_service(db_session)
        accepted = await service.ingest(FileIngestionRequest(file_id="file-notes", course_id="bio-101"))
        assert accepted.status == ProcessingStatus.PENDING

        result = await container.runner.process_job(accepted.job_ids[0])

        assert result.outcome == "completed"
        state = await load_state(session_factory, accepted.content_id)
        item = state["item"]
        assert item.processing_status == ProcessingStatus.COMPLETED
        assert item.content.startswith("Photosynthesis converts light energy")
        assert item.extraction_method == ExtractionMethod.PLAIN_TEXT
        assert item.title == "lecture-notes"
        assert item.course_id == "bio-101"
        assert item.processing_metadata["extraction_confidence"] == 1.0
        assert state["embedded"] == state["chunks"] > 0

    @pytest.mark.asyncio
    async def test_job_runs_once(self, container, db_session, long_text):
        accepted = await accept_manual(container, db_session, long_text)
        job_id = accepted.job_ids[0]

        assert (await container.runner.process_job(job_id)).outcome == "completed"
        assert (await container.runner.process_job(job_id)).outcome == "skipped"

    @pytest.mark.asyncio
    async def test_unknown_job(self, container):
        assert (await container.runner.process_job(4242)).outcome == "skipped"


class TestFailedRuns:
    @pytest.mark.asyncio
    async def test_empty_file_fails_extraction(self, container, db_session, session_factory):
        service = container.ingestion_service(db_session)
        accepted = await service.ingest(FileIngestionRequest(file_id="file-empty"))

        result = await container.runner.process_job(accepted.job_ids[0])

        assert result.outcome == "failed"
        state = await load_state(session_factory, accepted.content_id)
        item = state["item"]
        assert item.processing_status == ProcessingStatus.FAILED
        assert item.processing_metadata["error"]["code"] == "EMPTY_FILE"
        assert item.processing_metadata["error"]["failed_status"] == "extracting"
        assert state["jobs"][0].status == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_embedding_failure_keeps_chunks(
        self, container, db_session, session_factory, embedding_provider, long_text
    ):
        embedding_provider.fail_when = lambda texts: True
        accepted = await accept_manual(container, db_session, long_text)

        result = await container.runner.process_job(accepted.job_ids[0])

        assert result.outcome == "failed"
        assert len(embedding_provider.calls) == 3
        state = await load_state(session_factory, accepted.content_id)
        assert state["item"].processing_status == ProcessingStatus.FAILED
        assert state["item"].processing_metadata["error"]["code"] == "EMBEDDING_ERROR"
        assert state["chunks"] == 4
        assert state["embedded"] == 0
        assert state["jobs"][0].status == JobStatus.FAILED
        assert state["jobs"][0].output_data["error_code"] == "EMBEDDING_ERROR"

    @pytest.mark.asyncio
    async def test_partial_embedding_then_resume(
        self, container, db_session, session_factory, embedding_provider
    ):
        content = "abcdefghij" * 1100
        assert len(container.runner.chunker.chunk(content)) == 25

        # First batch succeeds, every later call fails
        embedding_provider.fail_when = lambda texts: len(embedding_provider.calls) > 1
        accepted = await accept_manual(container, db_session, content)

        await container.runner.process_job(accepted.job_ids[0])

        state = await load_state(session_factory, accepted.content_id)
        error = state["item"].processing_metadata["error"]
        assert state["item"].processing_status == ProcessingStatus.FAILED
        assert state["embedded"] == 10
        assert error["details"]["failed_batch"] == 1
        assert error["details"]["unembedded_chunk_indices"] == list(range(10, 25))

        embedding_provider.fail_when = None
        embedding_provider.calls.clear()
        async with session_factory() as db:
            reprocess = await container.ingestion_service(db).reprocess(accepted.content_id, steps=["embedding"])
        assert reprocess.status == ProcessingStatus.EMBEDDING

        result = await container.runner.process_job(reprocess.job_ids[0])

        assert result.outcome == "completed"
        assert sum(len(call) for call in embedding_provider.calls) == 15
        state = await load_state(session_factory, accepted.content_id)
        assert state["item"].processing_status == ProcessingStatus.COMPLETED
        assert state["embedded"] == 25
        assert state["item"].processing_metadata["embedding"]["resumed"] is True
        assert "error" not in state["item"].processing_metadata


class TestAdmission:
    @pytest.mark.asyncio
    async def test_full_gate_delays_job(self, container, db_session, session_factory, dispatcher, long_text):
        accepted = [await accept_manual(container, db_session, long_text) for _ in range(3)]
        jobs = JobStore(db_session, container.config.jobs)
        for response in accepted[:2]:
            assert await jobs.claim(response.job_ids[0])
        dispatcher.dispatched.clear()

        job_id = accepted[2].job_ids[0]
        result = await container.runner.process_job(job_id)

        assert result.outcome == "delayed"
        assert dispatcher.dispatched == [{"job_id": job_id, "delay_seconds": 5, "priority": 5}]
        async with session_factory() as db:
            job = await JobStore(db).get_job(job_id)
        assert job.status == JobStatus.DELAYED
        assert job.next_retry_at is not None

    @pytest.mark.asyncio
    async def test_deleted_item_cancels_job(self, container, db_session, session_factory, long_text):
        accepted = await accept_manual(container, db_session, long_text)
        store = ContentStore(db_session)
        await store.soft_delete(await store.get_item(accepted.content_id))

        result = await container.runner.process_job(accepted.job_ids[0])

        assert result.outcome == "cancelled"
        state = await load_state(session_factory, accepted.content_id)
        assert state["jobs"][0].status == JobStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_exhausted_job_gives_up(self, container, db_session, session_factory, long_text):
        accepted = await accept_manual(container, db_session, long_text)
        job = await JobStore(db_session).get_job(accepted.job_ids[0])
        job.attempts = job.max_attempts
        await db_session.commit()

        result = await container.runner.process_job(job.id)

        assert result.outcome == "failed"
        state = await load_state(session_factory, accepted.content_id)
        assert state["jobs"][0].status == JobStatus.FAILED
        assert "Gave up" in state["jobs"][0].error_message


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_recover_stalled_runs(self, container, db_session, session_factory, long_text):
        accepted = await accept_manual(container, db_session, long_text)
        jobs = JobStore(db_session)
        assert await jobs.claim(accepted.job_ids[0])
        job = await jobs.get_job(accepted.job_ids[0])
        job.started_at = utcnow() - timedelta(hours=2)
        job.heartbeat_at = utcnow() - timedelta(hours=2)
        item = await ContentStore(db_session).get_item(accepted.content_id)
        item.processing_status = ProcessingStatus.CHUNKING
        await db_session.commit()

        recovered = await container.runner.recover_stalled_runs()

        assert recovered == 1
        state = await load_state(session_factory, accepted.content_id)
        assert state["item"].processing_status == ProcessingStatus.FAILED
        assert state["item"].processing_metadata["error"]["code"] == "RUN_STALLED"
        assert state["jobs"][0].status == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_long_run_with_heartbeat_not_recovered(self, container, db_session, session_factory, long_text):
        accepted = await accept_manual(container, db_session, long_text)
        jobs = JobStore(db_session)
        assert await jobs.claim(accepted.job_ids[0])
        job = await jobs.get_job(accepted.job_ids[0])
        job.started_at = utcnow() - timedelta(hours=2)
        await db_session.commit()

        assert await container.runner.recover_stalled_runs() == 0

        state = await load_state(session_factory, accepted.content_id)
        assert state["item"].processing_status == ProcessingStatus.PROCESSING
        assert state["jobs"][0].status == JobStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_recovered_run_cannot_overwrite_newer_run(
        self, container, db_session, session_factory, embedding_provider
    ):
        content = "abcdefghij" * 1100
        accepted = await accept_manual(container, db_session, content)
        first_job_id = accepted.job_ids[0]
        reprocessed = []

        async def stall_during_second_batch(call_number):
            if call_number != 2:
                return
            async with session_factory() as db:
                job = await JobStore(db).get_job(first_job_id)
                job.heartbeat_at = utcnow() - timedelta(hours=2)
                await db.commit()
            assert await container.runner.recover_stalled_runs() == 1
            async with session_factory() as db:
                service = container.ingestion_service(db)
                reprocessed.append(await service.reprocess(accepted.content_id, steps=["embedding"]))

        embedding_provider.before_call = stall_during_second_batch

        result = await container.runner.process_job(first_job_id)

        assert result.outcome == "abandoned"
        state = await load_state(session_factory, accepted.content_id)
        assert state["item"].processing_status == ProcessingStatus.EMBEDDING
        assert state["embedded"] == 10
        statuses = [job.status for job in state["jobs"]]
        assert statuses == [JobStatus.FAILED, JobStatus.PENDING]
        assert "no heartbeat" in state["jobs"][0].error_message

        embedding_provider.before_call = None
        second = await container.runner.process_job(reprocessed[0].job_ids[0])

        assert second.outcome == "completed"
        state = await load_state(session_factory, accepted.content_id)
        assert state["item"].processing_status == ProcessingStatus.COMPLETED
        assert state["embedded"] == 25
        assert [job.status for job in state["jobs"]] == [JobStatus.FAILED, JobStatus.COMPLETED]

    @pytest.mark.asyncio
    async def test_dispatch_pending_jobs(self, container, db_session, dispatcher, long_text):
        accepted = await accept_manual(container, db_session, long_text)
        job = await JobStore(db_session).get_job(accepted.job_ids[0])
        job.created_at = utcnow() - timedelta(minutes=5)
        await db_session.commit()

        dispatched = await container.runner.dispatch_pending_jobs(min_age_seconds=60)

        assert dispatched == 1
        assert dispatcher.job_ids == [job.id, job.id]

    @pytest.mark.asyncio
    async def test_recent_jobs_not_redispatched(self, container, db_session, dispatcher, long_text):
        await accept_manual(container, db_session, long_text)

        assert await container.runner.dispatch_pending_jobs(min_age_seconds=60) == 0
        assert len(dispatcher.job_ids) == 1
