"""
Content Store

All reads and writes of ``content_items`` and ``content_chunks`` go through
this class. Each write that ends a pipeline stage commits on its own, so a
crash can lose at most the stage in progress. A store built with a
``RunLease`` renews it inside every such commit, which is the heartbeat
stall recovery watches, and refuses to commit once the run has lost its job:

- replace_chunks: old chunk set deleted and new one inserted in one commit
- save_embeddings: one commit per embedding batch
- soft_delete: chunk rows (and their vectors) removed with the marker

Soft-deleted items are filtered out of every read.
"""

from typing import Any, Optional, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from content_ingestion.core.exceptions import ContentNotFoundError, ProcessingError
from content_ingestion.core.logging import get_logger
from content_ingestion.db.base import utcnow
from content_ingestion.models import (
    ContentChunk,
    ContentItem,
    ContentSourceType,
    ProcessingStatus,
)
from content_ingestion.services.job_queue import RunLease
from content_ingestion.services.processors.chunker import TextChunk
from content_ingestion.services.sources.base import DraftContentItem

logger = get_logger(__name__)


class ContentStore:
    """Persistence for content items and their chunks."""

    def __init__(self, db: AsyncSession, lease: Optional[RunLease] = None):
        self.db = db
        self.lease = lease

    async def commit(self, operation: str, **context: Any) -> None:
        """
        Commit, turning database failures into ``ProcessingError``.

        Raises ``RunSupersededError`` (nothing written) when the lease is lost.
        """
        if self.lease is not None:
            await self.lease.renew()
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("database_write_failed", operation=operation, error=str(e), **context)
            raise ProcessingError(
                f"Failed to persist {operation}: {e}",
                details={"operation": operation, **context},
            ) from e

    # ========================================
    # Content Items
    # ========================================

    async def add_items(self, drafts: Sequence[DraftContentItem]) -> list[ContentItem]:
        """Insert drafts (flush only; the caller commits with its jobs)."""
        items = [draft.to_model() for draft in drafts]
        self.db.add_all(items)
        await self.db.flush()
        return items

    async def get_item(
        self,
        content_id: int,
        include_deleted: bool = False,
        for_update: bool = False,
    ) -> Optional[ContentItem]:
        query = select(ContentItem).where(ContentItem.id == content_id)
        if not include_deleted:
            query = query.where(ContentItem.deleted_at.is_(None))
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)

        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def require_item(self, content_id: int, for_update: bool = False) -> ContentItem:
        """Load a live item; ``for_update`` locks its row until commit."""
        item = await self.get_item(content_id, for_update=for_update)
        if item is None:
            raise ContentNotFoundError(content_id)
        return item

    async def list_items(
        self,
        course_id: Optional[str] = None,
        module_id: Optional[str] = None,
        status: Optional[ProcessingStatus] = None,
        source_type: Optional[ContentSourceType] = None,
        source_id: Optional[str] = None,
        include_history: bool = False,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[ContentItem], int]:
        """Filtered page of items, newest first, with the total count."""
        conditions = [ContentItem.deleted_at.is_(None)]
        if not include_history:
            conditions.append(ContentItem.is_latest.is_(True))
        if course_id:
            conditions.append(ContentItem.course_id == course_id)
        if module_id:
            conditions.append(ContentItem.module_id == module_id)
        if status:
            conditions.append(ContentItem.processing_status == status)
        if source_type:
            conditions.append(ContentItem.source_type == source_type)
        if source_id:
            conditions.append(ContentItem.source_id == source_id)

        total = await self.db.scalar(
            select(func.count()).select_from(ContentItem).where(*conditions)
        )

        result = await self.db.execute(
            select(ContentItem)
            .where(*conditions)
            .order_by(ContentItem.created_at.desc(), ContentItem.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), int(total or 0)

    async def create_version(self, item: ContentItem) -> ContentItem:
        """
        Copy ``item`` as the next version (flush only).

        The copy keeps the extracted content; chunks are rebuilt by the run
        that processes the new version.
        """
        new_item = ContentItem(
            source_id=item.source_id,
            source_type=item.source_type,
            source_metadata=dict(item.source_metadata or {}),
            title=item.title,
            description=item.description,
            content=item.content,
            content_type=item.content_type,
            language=item.language,
            processing_status=ProcessingStatus.PROCESSING,
            processing_metadata={},
            extraction_method=item.extraction_method,
            tags=list(item.tags or []),
            categories=list(item.categories or []),
            course_id=item.course_id,
            module_id=item.module_id,
            version=item.version + 1,
            parent_id=item.id,
            is_latest=True,
        )
        item.is_latest = False
        self.db.add(new_item)
        await self.db.flush()

        logger.info(
            "content_version_created",
            content_item_id=new_item.id,
            parent_id=item.id,
            version=new_item.version,
        )
        return new_item

    async def save_item(self, item: ContentItem, operation: str = "content item") -> None:
        self.db.add(item)
        await self.commit(operation, content_item_id=item.id)

    async def finalize(self, item: ContentItem, total_chunks: int, summary: dict[str, Any]) -> None:
        """Record the outcome of a successful run (status is set by the tracker)."""
        item.total_chunks = total_chunks
        item.processed_at = utcnow()
        item.processing_metadata = {**(item.processing_metadata or {}), **summary}
        await self.save_item(item, "run summary")

    async def soft_delete(self, item: ContentItem) -> None:
        """Mark deleted and drop chunks with their embeddings in one commit."""
        await self.db.execute(
            delete(ContentChunk).where(ContentChunk.content_item_id == item.id)
        )
        item.deleted_at = utcnow()
        item.total_chunks = 0
        self.db.add(item)
        await self.commit("soft delete", content_item_id=item.id)

        logger.info("content_soft_deleted", content_item_id=item.id)

    # ========================================
    # Chunks
    # ========================================

    async def replace_chunks(self, item: ContentItem, chunks: Sequence[TextChunk]) -> list[ContentChunk]:
        """Swap the item's whole chunk set for ``chunks`` in one transaction."""
        await self.db.execute(
            delete(ContentChunk).where(ContentChunk.content_item_id == item.id)
        )

        rows = [
            ContentChunk(
                content_item_id=item.id,
                chunk_index=chunk.index,
                chunk_text=chunk.text,
                tokens=chunk.tokens,
                start_position=chunk.start_position,
                end_position=chunk.end_position,
                chunk_metadata=dict(chunk.metadata),
            )
            for chunk in chunks
        ]
        self.db.add_all(rows)
        item.total_chunks = len(rows)
        self.db.add(item)
        await self.commit("chunks", content_item_id=item.id, chunk_count=len(rows))

        logger.info("chunks_replaced", content_item_id=item.id, chunk_count=len(rows))
        return rows

    async def get_chunks(self, content_id: int) -> list[ContentChunk]:
        result = await self.db.execute(
            select(ContentChunk)
            .where(ContentChunk.content_item_id == content_id)
            .order_by(ContentChunk.chunk_index)
        )
        return list(result.scalars().all())

    async def unembedded_chunks(self, content_id: int) -> list[ContentChunk]:
        """Chunks still waiting for a vector, in index order."""
        result = await self.db.execute(
            select(ContentChunk)
            .where(
                ContentChunk.content_item_id == content_id,
                ContentChunk.embedding.is_(None),
            )
            .order_by(ContentChunk.chunk_index)
        )
        return list(result.scalars().all())

    async def embedded_models(self, content_id: int) -> set[str]:
        """Distinct models that produced the item's stored vectors."""
        result = await self.db.execute(
            select(ContentChunk.embedding_model)
            .where(
                ContentChunk.content_item_id == content_id,
                ContentChunk.embedding_model.is_not(None),
            )
            .distinct()
        )
        return {model for model in result.scalars().all()}

    async def clear_embeddings(self, content_id: int) -> None:
        await self.db.execute(
            update(ContentChunk)
            .where(ContentChunk.content_item_id == content_id)
            .values(
                embedding=None,
                embedding_model=None,
                embedding_dimensions=None,
                embedded_at=None,
            )
        )
        await self.commit("embedding reset", content_item_id=content_id)

    async def save_embeddings(
        self,
        chunks: Sequence[ContentChunk],
        vectors: Sequence[Sequence[float]],
        model: str,
        dimensions: int,
    ) -> None:
        """Attach ``vectors[i]`` to ``chunks[i]`` and commit the batch."""
        if len(chunks) != len(vectors):
            raise ProcessingError(
                "Chunk and vector counts differ",
                details={"chunks": len(chunks), "vectors": len(vectors)},
            )

        embedded_at = utcnow()
        for chunk, vector in zip(chunks, vectors):
            chunk.embedding = [float(component) for component in vector]
            chunk.embedding_model = model
            chunk.embedding_dimensions = dimensions
            chunk.embedded_at = embedded_at
            self.db.add(chunk)

        content_id = chunks[0].content_item_id if chunks else None
        await self.commit("embedding batch", content_item_id=content_id, batch_size=len(chunks))

    async def list_chunks(
        self,
        content_id: int,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[ContentChunk], int]:
        """Ordered page of chunks for a (visible) item."""
        await self.require_item(content_id)

        total = await self.count_chunks(content_id)
        result = await self.db.execute(
            select(ContentChunk)
            .where(ContentChunk.content_item_id == content_id)
            .order_by(ContentChunk.chunk_index)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def count_chunks(self, content_id: int, embedded_only: bool = False) -> int:
        query = (
            select(func.count())
            .select_from(ContentChunk)
            .where(ContentChunk.content_item_id == content_id)
        )
        if embedded_only:
            query = query.where(ContentChunk.embedding.is_not(None))
        return int(await self.db.scalar(query) or 0)

    # ========================================
    # Statistics
    # ========================================

    async def processing_stats(self, course_id: Optional[str] = None) -> dict[str, Any]:
        """Counts per status and source type plus chunk totals."""
        conditions = [ContentItem.deleted_at.is_(None), ContentItem.is_latest.is_(True)]
        if course_id:
            conditions.append(ContentItem.course_id == course_id)

        status_rows = await self.db.execute(
            select(ContentItem.processing_status, func.count())
            .where(*conditions)
            .group_by(ContentItem.processing_status)
        )
        status_breakdown = {str(status): 0 for status in ProcessingStatus}
        for status, count in status_rows.all():
            status_breakdown[str(status)] = count

        source_rows = await self.db.execute(
            select(ContentItem.source_type, func.count())
            .where(*conditions)
            .group_by(ContentItem.source_type)
        )
        source_type_breakdown = {str(source): 0 for source in ContentSourceType}
        for source, count in source_rows.all():
            source_type_breakdown[str(source)] = count

        visible_items = select(ContentItem.id).where(*conditions)
        chunk_totals = await self.db.execute(
            select(
                func.count(ContentChunk.id),
                func.count(ContentChunk.embedded_at),
                func.coalesce(func.sum(ContentChunk.tokens), 0),
            ).where(ContentChunk.content_item_id.in_(visible_items))
        )
        total_chunks, embedded_chunks, total_tokens = chunk_totals.one()

        durations_result = await self.db.execute(
            select(ContentItem.processing_metadata).where(
                *conditions,
                ContentItem.processing_status == ProcessingStatus.COMPLETED,
            )
        )
        durations = [
            metadata["total_duration_ms"]
            for metadata in durations_result.scalars().all()
            if metadata and isinstance(metadata.get("total_duration_ms"), (int, float))
        ]

        return {
            "total_content": sum(status_breakdown.values()),
            "status_breakdown": status_breakdown,
            "source_type_breakdown": source_type_breakdown,
            "total_chunks": int(total_chunks or 0),
            "embedded_chunks": int(embedded_chunks or 0),
            "total_tokens_processed": int(total_tokens or 0),
            "average_processing_time_ms": (
                round(sum(durations) / len(durations), 1) if durations else None
            ),
        }
