"""
Ollama Embedding Provider.

Generates embeddings with a locally hosted Ollama server
(nomic-embed-text by default).
"""

from __future__ import annotations

import logging

import httpx

from ..exceptions import EmbeddingProviderError
from .base import BaseEmbeddingProvider, EmbeddingProviderConfig

logger = logging.getLogger(__name__)


class OllamaEmbeddingProvider(BaseEmbeddingProvider):
    """Ollama local embedding provider implementation.

    Usage:
        config = EmbeddingProviderConfig(
            model="nomic-embed-text",
            base_url="http://localhost:11434",
        )
        async with OllamaEmbeddingProvider(config) as provider:
            vector = await provider.embed("hello")
    """

    provider_name = "ollama"

    DEFAULT_BASE_URL = "http://localhost:11434"
    DEFAULT_EMBEDDING_MODEL = "nomic-embed-text"

    def __init__(self, config: EmbeddingProviderConfig):
        """Initialize the Ollama provider.

        Args:
            config: Provider configuration
        """
        if not config.model:
            config.model = self.DEFAULT_EMBEDDING_MODEL
        super().__init__(config)

        self.base_url = config.base_url or self.DEFAULT_BASE_URL
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=config.timeout,
        )

    async def embed(self, text: str) -> list[float]:
        """Generate an embedding using Ollama.

        Args:
            text: Text to embed

        Returns:
            Embedding vector

        Raises:
            EmbeddingProviderError: If embedding generation fails
        """
        try:
            response = await self.client.post(
                "/api/embeddings",
                json={
                    "model": self.config.model,
                    "prompt": text,
                },
            )
            response.raise_for_status()
            data = response.json()

        except httpx.HTTPStatusError as e:
            raise EmbeddingProviderError(
                f"Ollama embedding API error: {e.response.status_code} - {e.response.text}",
                provider=self.provider_name,
                status_code=e.response.status_code,
                cause=e,
            ) from e

        except httpx.TimeoutException as e:
            raise EmbeddingProviderError(
                f"Ollama embedding timeout: {e}",
                provider=self.provider_name,
                cause=e,
            ) from e

        except httpx.RequestError as e:
            raise EmbeddingProviderError(
                f"Ollama connection error: {e}",
                provider=self.provider_name,
                cause=e,
            ) from e

        except ValueError as e:
            raise EmbeddingProviderError(
                f"Ollama returned invalid JSON: {e}",
                provider=self.provider_name,
                cause=e,
            ) from e

        embedding = data.get("embedding") if isinstance(data, dict) else None
        if not embedding:
            raise EmbeddingProviderError(
                "No embedding returned from Ollama",
                provider=self.provider_name,
            )

        return [float(x) for x in embedding]

    async def close(self) -> None:
        await self.client.aclose()
