"""
OpenAI Embedding Provider.

Generates embeddings with OpenAI's embeddings API
(text-embedding-3-small by default).
"""

from __future__ import annotations

import logging

import openai
from openai import AsyncOpenAI

from ..exceptions import EmbeddingProviderError
from .base import BaseEmbeddingProvider, EmbeddingProviderConfig

logger = logging.getLogger(__name__)


class OpenAIEmbeddingProvider(BaseEmbeddingProvider):
    """OpenAI embedding provider implementation.

    Usage:
        config = EmbeddingProviderConfig(api_key="sk-...", model="text-embedding-3-small")
        async with OpenAIEmbeddingProvider(config) as provider:
            vector = await provider.embed("hello")
    """

    provider_name = "openai"

    DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"

    # Embedding dimensions by model
    EMBEDDING_DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }

    def __init__(self, config: EmbeddingProviderConfig):
        """Initialize the OpenAI provider.

        Args:
            config: Provider configuration
        """
        if not config.model:
            config.model = self.DEFAULT_EMBEDDING_MODEL
        super().__init__(config)

        self.client = AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout,
            max_retries=config.max_retries,
        )

    @property
    def dimension(self) -> int | None:
        """Known output dimension for the model, if any."""
        return self.EMBEDDING_DIMENSIONS.get(self.config.model)

    async def embed(self, text: str) -> list[float]:
        """Generate an embedding for text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector

        Raises:
            EmbeddingProviderError: On API errors or an empty response
        """
        try:
            response = await self.client.embeddings.create(
                model=self.config.model,
                input=text,
            )
        except openai.RateLimitError as e:
            logger.warning(f"Rate limited during embedding: {e}")
            raise EmbeddingProviderError(
                f"Rate limited: {e}",
                provider=self.provider_name,
                status_code=429,
                cause=e,
            ) from e
        except openai.APIStatusError as e:
            logger.error(f"OpenAI embedding error: {e}")
            raise EmbeddingProviderError(
                f"Embedding failed: {e}",
                provider=self.provider_name,
                status_code=e.status_code,
                cause=e,
            ) from e
        except openai.APIError as e:
            logger.error(f"OpenAI embedding error: {e}")
            raise EmbeddingProviderError(
                f"Embedding failed: {e}",
                provider=self.provider_name,
                cause=e,
            ) from e

        if not response.data or not response.data[0].embedding:
            raise EmbeddingProviderError(
                "No embedding returned from OpenAI",
                provider=self.provider_name,
            )

        return list(response.data[0].embedding)

    async def close(self) -> None:
        await self.client.close()
