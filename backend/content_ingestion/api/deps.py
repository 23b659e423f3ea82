"""
API dependencies.

The pipeline container is built once in the application lifespan and kept
on ``app.state``; each request gets an ``IngestionService`` bound to its own
database session:

    @router.get("/content/{content_id}")
    async def get_content(content_id: int, service: Ingestion):
        ...
"""

from typing import Annotated

from fastapi import Depends, Request

from content_ingestion.db.deps import DBSession
from content_ingestion.services.container import PipelineContainer
from content_ingestion.services.ingestion import IngestionService


def get_container(request: Request) -> PipelineContainer:
    return request.app.state.container


def get_ingestion_service(
    db: DBSession,
    container: Annotated[PipelineContainer, Depends(get_container)],
) -> IngestionService:
    return container.ingestion_service(db)


Ingestion = Annotated[IngestionService, Depends(get_ingestion_service)]
