"""
Embedding Coordinator

Embeds a content item's chunks in order, one batch at a time.

Batch Flow:
-----------
for each batch of ``batch_size`` chunks (index order):
    call the provider (timeout per call)
    check one vector per chunk, each of the configured dimension
    on failure: wait ``base_delay * attempt`` and retry, at most
                ``max_retries`` attempts in total
    assign vector i to chunk i of the batch and commit the batch
    wait ``inter_batch_delay`` before the next batch

When a batch exhausts its attempts the run stops with ``EmbeddingError``.
Batches committed before it keep their vectors; the error details list
the chunk indices still missing one, which is exactly what the next
reprocessing run will pick up.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Sequence

from content_ingestion.core.config import EmbeddingConfig
from content_ingestion.core.exceptions import EmbeddingError
from content_ingestion.core.logging import get_logger
from content_ingestion.models import ContentChunk, ContentItem
from content_ingestion.services.clients.embedding_provider import EmbeddingProvider

if TYPE_CHECKING:
    from content_ingestion.services.content_store import ContentStore

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class EmbeddingSummary:
    embedded_chunks: int
    batches: int
    retries: int
    duration_ms: int
    model: str
    dimensions: int
    resumed: bool


class EmbeddingCoordinator:
    """Batching, retry and persistence around an ``EmbeddingProvider``."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        config: Optional[EmbeddingConfig] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.provider = provider
        self.config = config or EmbeddingConfig()
        self._sleep = sleep

    @staticmethod
    def make_batches(chunks: Sequence[ContentChunk], batch_size: int) -> list[list[ContentChunk]]:
        return [list(chunks[i:i + batch_size]) for i in range(0, len(chunks), batch_size)]

    async def embed_item(self, store: "ContentStore", item: ContentItem) -> EmbeddingSummary:
        """
        Embed every chunk of ``item`` that has no vector yet.

        If stored vectors came from a different model, all of them are
        discarded first so the item never mixes models.

        Raises:
            EmbeddingError: a batch failed after all retries
        """
        started = time.monotonic()
        model = self.config.model

        stored_models = await store.embedded_models(item.id)
        if stored_models and stored_models != {model}:
            logger.info(
                "embedding_model_changed",
                content_item_id=item.id,
                stored_models=sorted(stored_models),
                model=model,
            )
            await store.clear_embeddings(item.id)

        pending = await store.unembedded_chunks(item.id)
        total_chunks = await store.count_chunks(item.id)
        resumed = len(pending) < total_chunks

        batches = self.make_batches(pending, self.config.batch_size)
        retries = 0

        logger.info(
            "embedding_started",
            content_item_id=item.id,
            pending_chunks=len(pending),
            total_chunks=total_chunks,
            batches=len(batches),
            model=model,
        )

        for batch_number, batch in enumerate(batches):
            try:
                vectors, attempts = await self._embed_with_retry(batch, model)
            except EmbeddingError as e:
                unembedded = [
                    chunk.chunk_index
                    for remaining in batches[batch_number:]
                    for chunk in remaining
                ]
                e.details = {
                    **e.details,
                    "content_item_id": item.id,
                    "failed_batch": batch_number,
                    "unembedded_chunk_indices": unembedded,
                    "embedded_chunks": total_chunks - len(unembedded),
                }
                raise

            retries += attempts - 1
            await store.save_embeddings(batch, vectors, model, self.config.dimensions)

            logger.info(
                "embedding_batch_saved",
                content_item_id=item.id,
                batch=batch_number + 1,
                of=len(batches),
                size=len(batch),
            )

            if batch_number < len(batches) - 1 and self.config.inter_batch_delay_seconds > 0:
                await self._sleep(self.config.inter_batch_delay_seconds)

        return EmbeddingSummary(
            embedded_chunks=len(pending),
            batches=len(batches),
            retries=retries,
            duration_ms=int((time.monotonic() - started) * 1000),
            model=model,
            dimensions=self.config.dimensions,
            resumed=resumed,
        )

    async def _embed_with_retry(
        self,
        batch: Sequence[ContentChunk],
        model: str,
    ) -> tuple[list[list[float]], int]:
        """Return the batch's vectors and the number of attempts it took."""
        texts = [chunk.chunk_text for chunk in batch]
        max_attempts = max(1, self.config.max_retries)
        last_error: Optional[BaseException] = None

        for attempt in range(1, max_attempts + 1):
            try:
                vectors = await asyncio.wait_for(
                    self.provider.embed_batch(texts, model),
                    timeout=self.config.timeout_seconds,
                )
                self._validate_vectors(vectors, len(texts))
                return [list(vector) for vector in vectors], attempt

            except asyncio.TimeoutError:
                last_error = TimeoutError(
                    f"Embedding request timed out after {self.config.timeout_seconds:g}s"
                )
            except Exception as e:
                last_error = e

            logger.warning(
                "embedding_batch_attempt_failed",
                attempt=attempt,
                max_attempts=max_attempts,
                first_chunk_index=batch[0].chunk_index,
                error=str(last_error),
            )

            if attempt < max_attempts:
                await self._sleep(self.config.retry_base_delay_seconds * attempt)

        raise EmbeddingError(
            f"Embedding failed after {max_attempts} attempts: {last_error}",
            details={
                "attempts": max_attempts,
                "model": model,
                "last_error": str(last_error),
            },
        ) from last_error

    def _validate_vectors(self, vectors: object, expected: int) -> None:
        if not isinstance(vectors, (list, tuple)) or len(vectors) != expected:
            count = len(vectors) if isinstance(vectors, (list, tuple)) else type(vectors).__name__
            raise ValueError(f"Provider returned {count} vectors for {expected} texts")

        for position, vector in enumerate(vectors):
            if len(vector) != self.config.dimensions:
                raise ValueError(
                    f"Vector {position} has {len(vector)} dimensions, "
                    f"expected {self.config.dimensions}"
                )
