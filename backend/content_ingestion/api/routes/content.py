"""
Content API endpoints.

Read access to content items, their chunks and processing status, plus
reprocessing and (soft) deletion.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query, Response, status

from content_ingestion.api.deps import Ingestion
from content_ingestion.models import ContentChunk, ContentSourceType, ProcessingStatus
from content_ingestion.schemas import (
    ChunkListResponse,
    ContentChunkResponse,
    ContentItemResponse,
    ContentListResponse,
    ContentStatusResponse,
    ErrorResponse,
    IngestionResponse,
    ProcessingStatsResponse,
    ReprocessRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/content", tags=["Content"])


# ========================================
# Helper Functions
# ========================================

def _chunk_to_response(chunk: ContentChunk, include_embeddings: bool) -> ContentChunkResponse:
    """Convert a chunk to its schema; vectors are only sent when asked for."""
    embedding = None
    if include_embeddings and chunk.embedding is not None:
        embedding = [float(value) for value in chunk.embedding]

    return ContentChunkResponse(
        id=chunk.id,
        content_item_id=chunk.content_item_id,
        chunk_index=chunk.chunk_index,
        chunk_text=chunk.chunk_text,
        tokens=chunk.tokens,
        start_position=chunk.start_position,
        end_position=chunk.end_position,
        chunk_metadata=chunk.chunk_metadata or {},
        embedding=embedding,
        embedding_model=chunk.embedding_model,
        embedding_dimensions=chunk.embedding_dimensions,
        embedded_at=chunk.embedded_at,
        created_at=chunk.created_at,
    )


# ========================================
# Endpoints
# ========================================

@router.get(
    "",
    response_model=ContentListResponse,
    summary="List content items",
    description="Newest first. Only the latest version of each item unless include_history is set.",
)
async def list_content(
    service: Ingestion,
    course_id: Optional[str] = Query(None),
    module_id: Optional[str] = Query(None),
    status_filter: Optional[ProcessingStatus] = Query(None, alias="status"),
    source_type: Optional[ContentSourceType] = Query(None),
    source_id: Optional[str] = Query(None, description="Find items ingested from the same source"),
    include_history: bool = Query(False),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
) -> ContentListResponse:
    items, pagination = await service.list_content(
        page=page,
        limit=limit,
        course_id=course_id,
        module_id=module_id,
        status=status_filter,
        source_type=source_type,
        source_id=source_id,
        include_history=include_history,
    )
    return ContentListResponse(
        content=[ContentItemResponse.model_validate(item) for item in items],
        pagination=pagination,
    )


@router.get(
    "/stats",
    response_model=ProcessingStatsResponse,
    summary="Processing statistics",
)
async def get_stats(
    service: Ingestion,
    course_id: Optional[str] = Query(None),
) -> ProcessingStatsResponse:
    return ProcessingStatsResponse(**await service.stats(course_id=course_id))


@router.get(
    "/{content_id}",
    response_model=ContentItemResponse,
    summary="Get a content item",
    responses={404: {"model": ErrorResponse}},
)
async def get_content(content_id: int, service: Ingestion) -> ContentItemResponse:
    return ContentItemResponse.model_validate(await service.get(content_id))


@router.get(
    "/{content_id}/chunks",
    response_model=ChunkListResponse,
    summary="List the chunks of a content item",
    responses={404: {"model": ErrorResponse}},
)
async def list_chunks(
    content_id: int,
    service: Ingestion,
    include_embeddings: bool = Query(False),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
) -> ChunkListResponse:
    chunks, pagination = await service.list_chunks(content_id, page=page, limit=limit)
    return ChunkListResponse(
        chunks=[_chunk_to_response(chunk, include_embeddings) for chunk in chunks],
        total_chunks=pagination.total,
        pagination=pagination,
    )


@router.get(
    "/{content_id}/status",
    response_model=ContentStatusResponse,
    summary="Processing status of a content item",
    responses={404: {"model": ErrorResponse}},
)
async def get_status(content_id: int, service: Ingestion) -> ContentStatusResponse:
    return await service.get_status(content_id)


@router.post(
    "/{content_id}/reprocess",
    response_model=IngestionResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Reprocess a content item",
    description=(
        "Rerun chunking and/or embedding. Rerunning chunking always re-embeds. "
        "With create_version the item is copied as a new version first."
    ),
    responses={
        400: {"model": ErrorResponse, "description": "Nothing to reprocess"},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "A run is already active or queued"},
    },
)
async def reprocess_content(
    content_id: int,
    service: Ingestion,
    request: Optional[ReprocessRequest] = None,
) -> IngestionResponse:
    request = request or ReprocessRequest()
    logger.info(f"Reprocess requested for content {content_id}: {request.steps}")
    return await service.reprocess(
        content_id,
        steps=request.steps,
        create_version=request.create_version,
    )


@router.delete(
    "/{content_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a content item",
    description="Soft delete; queued jobs of the item are cancelled.",
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "The item is being processed"},
    },
)
async def delete_content(content_id: int, service: Ingestion) -> Response:
    await service.delete(content_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
