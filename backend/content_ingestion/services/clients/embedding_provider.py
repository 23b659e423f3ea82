"""
Embedding Providers

Collaborators that turn a list of texts into a same-length, same-order list
of vectors. The embedding coordinator owns batching, retries and
persistence; providers only make one call per batch.

Providers:
----------
- SentenceTransformerProvider: local sentence-transformers model (CPU/CUDA/MPS)
- GatewayEmbeddingProvider: POST to the LLM gateway's embeddings endpoint
"""

import abc
import asyncio
import logging
from typing import Optional

import httpx
import numpy as np
import torch
from sentence_transformers import SentenceTransformer

from content_ingestion.core.config import EmbeddingConfig


logger = logging.getLogger(__name__)


class EmbeddingProviderError(Exception):
    """A single provider call failed (timeout, quota, malformed response)."""


class EmbeddingProvider(abc.ABC):
    """Interface consumed by ``EmbeddingCoordinator``."""

    @abc.abstractmethod
    async def embed_batch(self, texts: list[str], model: str) -> list[list[float]]:
        """Return one vector per text, in input order."""

    async def close(self) -> None:
        """Release model memory or HTTP connections."""


class SentenceTransformerProvider(EmbeddingProvider):
    """
    Local embedding generation with sentence-transformers.

    The model is loaded lazily on the first batch (in a worker thread, it
    is CPU bound) and reused for the life of the process.

    Usage:
    ------
    provider = SentenceTransformerProvider(EmbeddingConfig())
    vectors = await provider.embed_batch(["What are React hooks?"], model)
    """

    def __init__(self, config: EmbeddingConfig, normalize: bool = True):
        self.config = config
        self.device = config.device
        self.normalize = normalize

        self.model: Optional[SentenceTransformer] = None
        self._model_name: Optional[str] = None
        self._lock = asyncio.Lock()

        self._validate_device()

    def _validate_device(self) -> None:
        """Validate and adjust device setting based on availability."""
        if self.device == "cuda" and not torch.cuda.is_available():
            logger.warning("CUDA not available, falling back to CPU")
            self.device = "cpu"
        elif self.device == "mps" and not torch.backends.mps.is_available():
            logger.warning("MPS not available, falling back to CPU")
            self.device = "cpu"

    async def initialize(self, model_name: Optional[str] = None) -> None:
        """
        Load the model if it is not loaded yet (or a different one is asked for).

        Raises:
            Exception: If model loading fails
        """
        model_name = model_name or self.config.model

        async with self._lock:
            if self.model is not None and self._model_name == model_name:
                return

            try:
                logger.info(f"Loading embedding model: {model_name} on {self.device}")

                self.model = await asyncio.to_thread(
                    SentenceTransformer,
                    model_name,
                    device=self.device
                )
                self._model_name = model_name

                logger.info(
                    f"Embedding model loaded successfully. "
                    f"Dimension: {self.model.get_sentence_embedding_dimension()}, "
                    f"Device: {self.device}"
                )
            except Exception as e:
                logger.error(f"Failed to load embedding model: {e}")
                raise

    async def embed_batch(self, texts: list[str], model: str) -> list[list[float]]:
        if not texts:
            return []

        await self.initialize(model)

        embeddings = await asyncio.to_thread(self._encode, texts)
        return [vector.tolist() for vector in embeddings]

    def _encode(self, texts: list[str]) -> np.ndarray:
        """Sync encode, runs in the thread pool."""
        return self.model.encode(
            texts,
            batch_size=len(texts),
            normalize_embeddings=self.normalize,
            show_progress_bar=False,
            convert_to_numpy=True
        )

    async def close(self) -> None:
        if self.model is not None:
            if self.device == "cuda":
                torch.cuda.empty_cache()

            del self.model
            self.model = None
            self._model_name = None

        logger.info("Embedding model unloaded")


class GatewayEmbeddingProvider(EmbeddingProvider):
    """
    Embeddings from the platform's LLM gateway.

    Request:  POST {base_url}/api/v1/embeddings {"texts": [...], "model": "..."}
    Response: {"embeddings": [[...], ...], "model": "...", "usage": {...}}
    """

    def __init__(
        self,
        base_url: str,
        config: EmbeddingConfig,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "content-ingestion-service/0.1",
        }
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self.client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=config.timeout_seconds,
        )

    async def embed_batch(self, texts: list[str], model: str) -> list[list[float]]:
        if not texts:
            return []

        try:
            response = await self.client.post(
                "/api/v1/embeddings",
                json={"texts": texts, "model": model},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise EmbeddingProviderError(
                f"Gateway returned {e.response.status_code}: {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise EmbeddingProviderError(f"Gateway request failed: {e}") from e
        except ValueError as e:
            raise EmbeddingProviderError("Gateway returned invalid JSON") from e

        embeddings = payload.get("embeddings") if isinstance(payload, dict) else None
        if not isinstance(embeddings, list):
            raise EmbeddingProviderError("Gateway response has no 'embeddings' list")

        usage = payload.get("usage") or {}
        logger.debug(
            f"Gateway embedded {len(texts)} texts with {model} "
            f"(tokens: {usage.get('totalTokens')})"
        )
        return embeddings

    async def close(self) -> None:
        await self.client.aclose()


def create_embedding_provider(
    config: EmbeddingConfig,
    gateway_url: str,
    gateway_api_key: Optional[str] = None,
) -> EmbeddingProvider:
    """Pick the provider named by ``EmbeddingConfig.provider``."""
    if config.provider == "gateway":
        return GatewayEmbeddingProvider(gateway_url, config, api_key=gateway_api_key)
    return SentenceTransformerProvider(config)
