"""Embedding provider implementations."""

from .base import BaseEmbeddingProvider, EmbeddingProviderConfig
from .factory import create_embedding_provider
from .ollama import OllamaEmbeddingProvider
from .openai import OpenAIEmbeddingProvider

__all__ = [
    "BaseEmbeddingProvider",
    "EmbeddingProviderConfig",
    "OllamaEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "create_embedding_provider",
]
