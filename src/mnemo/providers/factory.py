"""
Embedding provider factory.

Builds the configured provider from MemoryConfig.
"""

from __future__ import annotations

import logging

from ..config import MemoryConfig
from ..exceptions import ConfigurationError
from .base import BaseEmbeddingProvider, EmbeddingProviderConfig
from .ollama import OllamaEmbeddingProvider
from .openai import OpenAIEmbeddingProvider

logger = logging.getLogger(__name__)


def create_embedding_provider(config: MemoryConfig) -> BaseEmbeddingProvider:
    """Create the embedding provider named by config.embedding_provider.

    Raises:
        ConfigurationError: If the provider is unknown or misconfigured
    """
    config.validate()

    if config.embedding_provider == "openai":
        provider: BaseEmbeddingProvider = OpenAIEmbeddingProvider(
            EmbeddingProviderConfig(
                model=config.openai_embedding_model,
                api_key=config.openai_api_key,
                timeout=config.embedding_timeout,
            )
        )
    elif config.embedding_provider == "ollama":
        provider = OllamaEmbeddingProvider(
            EmbeddingProviderConfig(
                model=config.ollama_embedding_model,
                base_url=config.ollama_base_url,
                timeout=config.embedding_timeout,
            )
        )
    else:
        raise ConfigurationError(f"Unknown embedding provider: {config.embedding_provider}")

    logger.info(
        f"Using {config.embedding_provider} embedding provider (model={provider.model_name})"
    )
    return provider
