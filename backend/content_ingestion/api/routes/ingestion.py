"""
Ingestion API endpoints.

Every endpoint validates the request, persists the new content items with
one pending job each and answers 202 straight away. Processing happens in
the Celery workers; progress is read from ``GET /content/{id}/status``.
"""

import logging

from fastapi import APIRouter, status

from content_ingestion.api.deps import Ingestion
from content_ingestion.schemas import (
    BatchIngestionRequest,
    BatchIngestionResponse,
    FileIngestionRequest,
    GitHubIngestionRequest,
    IngestionResponse,
    ManualContentRequest,
    URLIngestionRequest,
    YouTubeIngestionRequest,
)
from content_ingestion.schemas.content import ErrorResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ingest", tags=["Ingestion"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Request rejected"},
    422: {"model": ErrorResponse, "description": "Source could not be read"},
}


# ========================================
# Single Source Endpoints
# ========================================

@router.post(
    "/file",
    response_model=IngestionResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Ingest an uploaded file",
    description="Queue a file held by the file service for extraction, chunking and embedding.",
    responses=ERROR_RESPONSES,
)
async def ingest_file(request: FileIngestionRequest, service: Ingestion) -> IngestionResponse:
    return await service.ingest(request)


@router.post(
    "/url",
    response_model=IngestionResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Ingest a web page",
    responses=ERROR_RESPONSES,
)
async def ingest_url(request: URLIngestionRequest, service: Ingestion) -> IngestionResponse:
    return await service.ingest(request)


@router.post(
    "/youtube",
    response_model=IngestionResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Ingest a YouTube video transcript",
    description=(
        "Fetch the transcript (manual captions preferred over generated ones) "
        "and, when configured, the video metadata. The item is created with "
        "its text already extracted."
    ),
    responses=ERROR_RESPONSES,
)
async def ingest_youtube(request: YouTubeIngestionRequest, service: Ingestion) -> IngestionResponse:
    return await service.ingest(request)


@router.post(
    "/github",
    response_model=IngestionResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Ingest files from a GitHub repository",
    description="Creates one content item per selected repository file.",
    responses=ERROR_RESPONSES,
)
async def ingest_github(request: GitHubIngestionRequest, service: Ingestion) -> IngestionResponse:
    return await service.ingest(request)


@router.post(
    "/manual",
    response_model=IngestionResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Ingest text entered by hand",
    responses=ERROR_RESPONSES,
)
async def ingest_manual(request: ManualContentRequest, service: Ingestion) -> IngestionResponse:
    return await service.ingest(request)


# ========================================
# Batch Endpoint
# ========================================

@router.post(
    "/batch",
    response_model=BatchIngestionResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Ingest several sources at once",
    description=(
        "Items of any source type. Per-item failures are reported in "
        "`errors` with the item's index; with `stop_on_error` nothing after "
        "the first failure is accepted."
    ),
)
async def ingest_batch(request: BatchIngestionRequest, service: Ingestion) -> BatchIngestionResponse:
    response = await service.ingest_batch(request)
    if response.errors:
        logger.warning(
            f"Batch {response.batch_id}: {len(response.errors)} of {len(request.items)} items rejected"
        )
    return response
