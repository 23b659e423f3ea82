"""
Tests for the content and job models.

This test module verifies:
1. Enum values and their string form
2. JSON and embedding columns round-trip through the database
3. Unique chunk index per content item
4. Model helper properties
"""

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from content_ingestion.db.base import utcnow
from content_ingestion.models import (
    UNFINISHED_JOB_STATUSES,
    ContentChunk,
    ContentItem,
    ContentSourceType,
    IngestionJob,
    JobStatus,
    JobType,
    ProcessingStatus,
)


def chunk(item_id: int, index: int, **overrides) -> ContentChunk:
    values = {
        "content_item_id": item_id,
        "chunk_index": index,
        "chunk_text": f"chunk {index}",
        "tokens": 2,
        "start_position": index * 10,
        "end_position": index * 10 + 7,
    }
    values.update(overrides)
    return ContentChunk(**values)


class TestEnums:
    def test_string_form_is_value(self):
        assert str(ContentSourceType.GITHUB) == "github"
        assert str(ProcessingStatus.EMBEDDING) == "embedding"
        assert str(JobStatus.DELAYED) == "delayed"
        assert f"{JobType.CONTENT_REPROCESSING}" == "content_reprocessing"

    def test_lookup_by_value(self):
        assert ProcessingStatus("completed") is ProcessingStatus.COMPLETED
        assert ContentSourceType("url") == "url"

    def test_unfinished_statuses(self):
        assert set(UNFINISHED_JOB_STATUSES) == {JobStatus.PENDING, JobStatus.DELAYED, JobStatus.ACTIVE}


class TestContentItem:
    @pytest.mark.asyncio
    async def test_defaults(self, db_session):
        item = ContentItem(source_id="file-1", source_type=ContentSourceType.FILE)
        db_session.add(item)
        await db_session.commit()
        await db_session.refresh(item)

        assert item.processing_status == ProcessingStatus.PENDING
        assert item.content == ""
        assert item.source_metadata == {}
        assert item.tags == []
        assert item.total_chunks == 0
        assert item.version == 1
        assert item.is_latest is True
        assert item.created_at is not None
        assert not item.is_deleted

    @pytest.mark.asyncio
    async def test_json_columns_round_trip(self, make_item, session_factory):
        item = await make_item(
            source_metadata={"repository": "acme/docs", "repo_info": {"stars": 12}},
            processing_metadata={"error": {"code": "EMPTY_FILE"}},
            tags=["biology", "cells"],
        )

        async with session_factory() as fresh:
            loaded = await fresh.get(ContentItem, item.id)

        assert loaded.source_metadata["repo_info"] == {"stars": 12}
        assert loaded.processing_metadata["error"]["code"] == "EMPTY_FILE"
        assert loaded.tags == ["biology", "cells"]
        assert loaded.source_type == ContentSourceType.MANUAL

    @pytest.mark.parametrize(
        "content,expected",
        [("", False), ("  \n\t", False), ("Some text", True)],
    )
    def test_has_content(self, content, expected):
        assert ContentItem(content=content).has_content is expected

    def test_is_deleted(self):
        assert ContentItem(deleted_at=utcnow()).is_deleted

    def test_repr(self):
        item = ContentItem(
            source_type=ContentSourceType.URL,
            title="A very long title that keeps going on and on",
            processing_status=ProcessingStatus.FAILED,
        )

        assert "title='A very long title that keeps g'" in repr(item)
        assert "status=failed" in repr(item)


class TestContentChunk:
    @pytest.mark.asyncio
    async def test_embedding_round_trip(self, make_item, db_session, session_factory):
        item = await make_item(content="Some text")
        db_session.add(chunk(item.id, 0, embedding=[1, 2.5, 3], embedding_model="m", embedding_dimensions=3))
        db_session.add(chunk(item.id, 1))
        await db_session.commit()

        async with session_factory() as fresh:
            result = await fresh.execute(
                select(ContentChunk).where(ContentChunk.content_item_id == item.id).order_by(ContentChunk.chunk_index)
            )
            first, second = result.scalars().all()

        assert first.embedding == [1.0, 2.5, 3.0]
        assert first.is_embedded
        assert second.embedding is None
        assert not second.is_embedded

    @pytest.mark.asyncio
    async def test_unembedded_chunks_are_sql_null(self, make_item, db_session):
        item = await make_item(content="Some text")
        db_session.add_all([chunk(item.id, 0, embedding=[0.0] * 3), chunk(item.id, 1), chunk(item.id, 2)])
        await db_session.commit()

        result = await db_session.execute(select(ContentChunk.chunk_index).where(ContentChunk.embedding.is_(None)))

        assert sorted(result.scalars().all()) == [1, 2]

    @pytest.mark.asyncio
    async def test_chunk_index_unique_per_item(self, make_item, db_session):
        item = await make_item(content="Some text")
        db_session.add_all([chunk(item.id, 0), chunk(item.id, 0)])

        with pytest.raises(IntegrityError):
            await db_session.commit()


class TestIngestionJob:
    def test_is_finished(self):
        assert not IngestionJob(status=JobStatus.ACTIVE).is_finished
        assert not IngestionJob(status=JobStatus.DELAYED).is_finished
        assert IngestionJob(status=JobStatus.CANCELLED).is_finished

    def test_summary_formats_timestamps(self):
        started = utcnow() - timedelta(seconds=30)
        job = IngestionJob(
            id=3,
            job_type=JobType.CONTENT_PROCESSING,
            status=JobStatus.COMPLETED,
            attempts=1,
            started_at=started,
            completed_at=started + timedelta(seconds=30),
        )

        summary = job.summary()

        assert summary["job_id"] == 3
        assert summary["status"] == "completed"
        assert summary["started_at"] == started.isoformat()
        assert summary["error_message"] is None
