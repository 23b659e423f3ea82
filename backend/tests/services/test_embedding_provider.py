"""
Tests for the embedding providers.

The local provider runs against a patched ``SentenceTransformer`` so no
model is downloaded; the gateway provider runs against
``httpx.MockTransport``.
"""

import json
from unittest.mock import Mock, patch

import httpx
import numpy as np
import pytest

from content_ingestion.core.config import EmbeddingConfig
from content_ingestion.services.clients.embedding_provider import (
    EmbeddingProviderError,
    GatewayEmbeddingProvider,
    SentenceTransformerProvider,
    create_embedding_provider,
)

GATEWAY_URL = "http://llm-gateway.test"


def gateway(handler) -> GatewayEmbeddingProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=GATEWAY_URL)
    return GatewayEmbeddingProvider(GATEWAY_URL, EmbeddingConfig(provider="gateway"), client=client)


@pytest.fixture
def sentence_transformer():
    with patch("content_ingestion.services.clients.embedding_provider.SentenceTransformer") as model_class:
        model = model_class.return_value
        model.get_sentence_embedding_dimension.return_value = 3
        model.encode.side_effect = lambda texts, **kwargs: np.ones((len(texts), 3), dtype=np.float32)
        yield model_class


@pytest.mark.asyncio
class TestSentenceTransformerProvider:
    """Local model provider."""

    async def test_embed_batch(self, sentence_transformer):
        provider = SentenceTransformerProvider(EmbeddingConfig())

        vectors = await provider.embed_batch(["a", "b"], "test-model")

        assert vectors == [[1.0, 1.0, 1.0], [1.0, 1.0, 1.0]]
        sentence_transformer.assert_called_once_with("test-model", device="cpu")
        kwargs = sentence_transformer.return_value.encode.call_args.kwargs
        assert kwargs["normalize_embeddings"] is True
        assert kwargs["batch_size"] == 2

    async def test_model_loaded_once(self, sentence_transformer):
        provider = SentenceTransformerProvider(EmbeddingConfig())

        await provider.embed_batch(["a"], "test-model")
        await provider.embed_batch(["b"], "test-model")

        assert sentence_transformer.call_count == 1

    async def test_model_switch_reloads(self, sentence_transformer):
        provider = SentenceTransformerProvider(EmbeddingConfig())

        await provider.embed_batch(["a"], "first-model")
        await provider.embed_batch(["b"], "second-model")

        assert [c.args[0] for c in sentence_transformer.call_args_list] == ["first-model", "second-model"]

    async def test_empty_batch_skips_model(self, sentence_transformer):
        assert await SentenceTransformerProvider(EmbeddingConfig()).embed_batch([], "test-model") == []
        sentence_transformer.assert_not_called()

    async def test_close_unloads_model(self, sentence_transformer):
        provider = SentenceTransformerProvider(EmbeddingConfig())
        await provider.embed_batch(["a"], "test-model")

        await provider.close()

        assert provider.model is None

    async def test_cuda_falls_back_to_cpu(self):
        with patch("content_ingestion.services.clients.embedding_provider.torch") as torch_mock:
            torch_mock.cuda.is_available.return_value = False
            provider = SentenceTransformerProvider(EmbeddingConfig(device="cuda"))

        assert provider.device == "cpu"


@pytest.mark.asyncio
class TestGatewayEmbeddingProvider:
    """LLM gateway provider."""

    async def test_embed_batch(self):
        requests_seen = []

        def handler(request):
            requests_seen.append(json.loads(request.content))
            assert request.url.path == "/api/v1/embeddings"
            return httpx.Response(
                200,
                json={"embeddings": [[0.1, 0.2], [0.3, 0.4]], "model": "m", "usage": {"totalTokens": 4}},
            )

        vectors = await gateway(handler).embed_batch(["a", "b"], "m")

        assert vectors == [[0.1, 0.2], [0.3, 0.4]]
        assert requests_seen == [{"texts": ["a", "b"], "model": "m"}]

    async def test_http_error(self):
        provider = gateway(lambda request: httpx.Response(429, text="quota exceeded"))

        with pytest.raises(EmbeddingProviderError, match="429"):
            await provider.embed_batch(["a"], "m")

    async def test_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(EmbeddingProviderError, match="request failed"):
            await gateway(handler).embed_batch(["a"], "m")

    async def test_invalid_json(self):
        provider = gateway(lambda request: httpx.Response(200, content=b"not json"))

        with pytest.raises(EmbeddingProviderError, match="invalid JSON"):
            await provider.embed_batch(["a"], "m")

    async def test_missing_embeddings(self):
        provider = gateway(lambda request: httpx.Response(200, json={"data": []}))

        with pytest.raises(EmbeddingProviderError, match="no 'embeddings'"):
            await provider.embed_batch(["a"], "m")

    async def test_api_key_header(self):
        provider = GatewayEmbeddingProvider(GATEWAY_URL, EmbeddingConfig(), api_key="secret")

        assert provider.client.headers["Authorization"] == "Bearer secret"
        await provider.close()


class TestCreateEmbeddingProvider:
    def test_gateway(self):
        provider = create_embedding_provider(EmbeddingConfig(provider="gateway"), GATEWAY_URL)

        assert isinstance(provider, GatewayEmbeddingProvider)

    def test_local(self):
        with patch("content_ingestion.services.clients.embedding_provider.SentenceTransformer", Mock()):
            provider = create_embedding_provider(EmbeddingConfig(), GATEWAY_URL)

        assert isinstance(provider, SentenceTransformerProvider)
        assert provider.model is None
