"""
Unit tests for the OpenAI embedding provider.

The AsyncOpenAI client is patched; no network calls are made.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from mnemo.exceptions import EmbeddingProviderError
from mnemo.providers.base import EmbeddingProviderConfig
from mnemo.providers.openai import OpenAIEmbeddingProvider

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/embeddings")


@pytest.fixture
def openai_config():
    """Test OpenAI config."""
    return EmbeddingProviderConfig(api_key="test-api-key", model="text-embedding-3-small")


@pytest.fixture
def mock_openai_client():
    """Mock OpenAI async client."""
    client = MagicMock()
    response = MagicMock()
    response.data = [MagicMock(embedding=[0.1] * 1536)]
    client.embeddings.create = AsyncMock(return_value=response)
    client.close = AsyncMock()
    return client


@pytest.fixture
def provider(openai_config, mock_openai_client):
    with patch("mnemo.providers.openai.AsyncOpenAI", return_value=mock_openai_client):
        yield OpenAIEmbeddingProvider(openai_config)


class TestOpenAIEmbeddingProvider:
    """Tests for OpenAI embeddings."""

    def test_init(self, openai_config):
        """Client is built from the config with client retries off."""
        with patch("mnemo.providers.openai.AsyncOpenAI") as mock_cls:
            provider = OpenAIEmbeddingProvider(openai_config)

        mock_cls.assert_called_once_with(
            api_key="test-api-key", base_url=None, timeout=30.0, max_retries=0
        )
        assert provider.model_name == "text-embedding-3-small"
        assert provider.provider_name == "openai"
        assert provider.dimension == 1536

    def test_default_model(self):
        """An empty model falls back to text-embedding-3-small."""
        with patch("mnemo.providers.openai.AsyncOpenAI"):
            provider = OpenAIEmbeddingProvider(EmbeddingProviderConfig(model="", api_key="k"))
        assert provider.model_name == "text-embedding-3-small"

    def test_unknown_model_dimension(self):
        """Dimension is None for models not in the table."""
        with patch("mnemo.providers.openai.AsyncOpenAI"):
            provider = OpenAIEmbeddingProvider(
                EmbeddingProviderConfig(model="custom-embed", api_key="k")
            )
        assert provider.dimension is None

    @pytest.mark.asyncio
    async def test_embed(self, provider, mock_openai_client):
        """embed() returns the vector from the API response."""
        vector = await provider.embed("Hello world")

        assert len(vector) == 1536
        assert vector[0] == 0.1
        mock_openai_client.embeddings.create.assert_called_once_with(
            model="text-embedding-3-small", input="Hello world"
        )

    @pytest.mark.asyncio
    async def test_empty_response(self, provider, mock_openai_client):
        """No data in the response is an error."""
        mock_openai_client.embeddings.create.return_value = MagicMock(data=[])

        with pytest.raises(EmbeddingProviderError):
            await provider.embed("hi")

    @pytest.mark.asyncio
    async def test_rate_limit(self, provider, mock_openai_client):
        """429s are reported with their status code."""
        mock_openai_client.embeddings.create.side_effect = openai.RateLimitError(
            "slow down", response=httpx.Response(429, request=REQUEST), body=None
        )

        with pytest.raises(EmbeddingProviderError) as exc_info:
            await provider.embed("hi")

        assert exc_info.value.status_code == 429
        assert exc_info.value.provider == "openai"
        assert exc_info.value.recoverable is True

    @pytest.mark.asyncio
    async def test_status_error(self, provider, mock_openai_client):
        """Other HTTP errors keep their status code."""
        mock_openai_client.embeddings.create.side_effect = openai.InternalServerError(
            "boom", response=httpx.Response(500, request=REQUEST), body=None
        )

        with pytest.raises(EmbeddingProviderError) as exc_info:
            await provider.embed("hi")

        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_connection_error(self, provider, mock_openai_client):
        """Connection failures are wrapped without a status code."""
        mock_openai_client.embeddings.create.side_effect = openai.APIConnectionError(
            request=REQUEST
        )

        with pytest.raises(EmbeddingProviderError) as exc_info:
            await provider.embed("hi")

        assert exc_info.value.status_code is None
        assert isinstance(exc_info.value.cause, openai.APIConnectionError)

    @pytest.mark.asyncio
    async def test_context_manager_closes_client(self, provider, mock_openai_client):
        """Leaving the context closes the client."""
        async with provider:
            pass

        mock_openai_client.close.assert_awaited_once()
