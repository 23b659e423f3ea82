"""
Composition root.

``build_container`` turns ``Settings`` into ``PipelineConfig`` once and
wires every collaborator with the struct it needs. The API process and the
Celery worker each build one container; tests build theirs with fakes:

    container = build_container(
        session_factory=create_session_factory(test_engine),
        dispatcher=RecordingDispatcher(),
        embedding_provider=FakeProvider(),
    )
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from content_ingestion.core.config import PipelineConfig, Settings, settings as default_settings
from content_ingestion.core.logging import get_logger
from content_ingestion.services.clients.embedding_provider import (
    EmbeddingProvider,
    create_embedding_provider,
)
from content_ingestion.services.clients.extraction_engine import (
    ExtractionEngine,
    LocalExtractionEngine,
    RemoteExtractionEngine,
)
from content_ingestion.services.clients.file_service import FileServiceClient
from content_ingestion.services.ingestion import IngestionService
from content_ingestion.services.job_queue import CeleryJobDispatcher, JobDispatcher
from content_ingestion.services.pipeline import PipelineRunner
from content_ingestion.services.processors import (
    ContentChunker,
    EmbeddingCoordinator,
    ExtractionCoordinator,
)
from content_ingestion.services.sources import (
    FileSourceAdapter,
    GitHubSourceAdapter,
    ManualSourceAdapter,
    SourceAdapter,
    SourceAdapterRegistry,
    URLSourceAdapter,
    YouTubeSourceAdapter,
)

logger = get_logger(__name__)


@dataclass
class PipelineContainer:
    config: PipelineConfig
    session_factory: async_sessionmaker[AsyncSession]
    registry: SourceAdapterRegistry
    dispatcher: JobDispatcher
    extraction_engine: ExtractionEngine
    embedding_provider: EmbeddingProvider
    runner: PipelineRunner

    def ingestion_service(self, db: AsyncSession) -> IngestionService:
        return IngestionService(db, self.registry, self.dispatcher, self.config.jobs)

    async def close(self) -> None:
        await self.registry.close()
        await self.extraction_engine.close()
        await self.embedding_provider.close()


def build_adapters(settings: Settings, config: PipelineConfig) -> list[SourceAdapter]:
    return [
        FileSourceAdapter(
            FileServiceClient(settings.FILE_SERVICE_URL, settings.FILE_SERVICE_TIMEOUT_SECONDS),
            config.extraction,
        ),
        URLSourceAdapter(
            timeout_seconds=settings.URL_FETCH_TIMEOUT_SECONDS,
            respect_robots_txt=settings.URL_RESPECT_ROBOTS_TXT,
            config=config.extraction,
        ),
        YouTubeSourceAdapter(
            api_key=settings.YOUTUBE_API_KEY,
            preferred_languages=settings.YOUTUBE_PREFERRED_TRANSCRIPT_LANGUAGES,
        ),
        GitHubSourceAdapter(
            token=settings.GITHUB_TOKEN,
            api_url=settings.GITHUB_API_URL,
            max_files=settings.GITHUB_MAX_FILES,
            timeout_seconds=settings.GITHUB_REQUEST_TIMEOUT,
        ),
        ManualSourceAdapter(),
    ]


def build_container(
    settings: Optional[Settings] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    dispatcher: Optional[JobDispatcher] = None,
    embedding_provider: Optional[EmbeddingProvider] = None,
    extraction_engine: Optional[ExtractionEngine] = None,
    adapters: Optional[list[SourceAdapter]] = None,
) -> PipelineContainer:
    """Wire the pipeline; every argument left out is built from ``settings``."""
    settings = settings or default_settings
    config = PipelineConfig.from_settings(settings)

    if session_factory is None:
        from content_ingestion.db.session import AsyncSessionLocal
        session_factory = AsyncSessionLocal

    if dispatcher is None:
        from content_ingestion.workers.celery_app import celery_app
        dispatcher = CeleryJobDispatcher(celery_app)

    if extraction_engine is None:
        remote = (
            RemoteExtractionEngine(settings.EXTRACTION_SERVICE_URL, timeout_seconds=settings.EXTRACTION_TIMEOUT_SECONDS)
            if settings.EXTRACTION_SERVICE_URL
            else None
        )
        extraction_engine = LocalExtractionEngine(remote=remote)

    if embedding_provider is None:
        embedding_provider = create_embedding_provider(
            config.embedding,
            settings.LLM_GATEWAY_URL,
            settings.LLM_GATEWAY_API_KEY,
        )

    registry = SourceAdapterRegistry(adapters if adapters is not None else build_adapters(settings, config))

    runner = PipelineRunner(
        session_factory=session_factory,
        registry=registry,
        extractor=ExtractionCoordinator(extraction_engine, config.extraction),
        chunker=ContentChunker(config.chunking),
        embedder=EmbeddingCoordinator(embedding_provider, config.embedding),
        dispatcher=dispatcher,
        job_config=config.jobs,
    )

    logger.info(
        "pipeline_container_built",
        embedding_provider=config.embedding.provider,
        embedding_model=config.embedding.model,
        max_concurrent_jobs=config.jobs.max_concurrent_jobs,
    )

    return PipelineContainer(
        config=config,
        session_factory=session_factory,
        registry=registry,
        dispatcher=dispatcher,
        extraction_engine=extraction_engine,
        embedding_provider=embedding_provider,
        runner=runner,
    )
