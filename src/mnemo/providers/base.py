"""
Base Embedding Provider Implementation.

Provides common functionality for all embedding providers.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from ..domain.ports import IEmbeddingProvider

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingProviderConfig:
    """Configuration for embedding providers.

    Attributes:
        model: Embedding model name
        api_key: API key, if the provider needs one
        base_url: Optional custom base URL
        timeout: Request timeout in seconds
        max_retries: Client-level retries. The embedding queue does its own
            retrying, so this defaults to 0.
    """

    model: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    timeout: float = 30.0
    max_retries: int = 0
    extra: dict[str, Any] = field(default_factory=dict)


class BaseEmbeddingProvider(IEmbeddingProvider, ABC):
    """Base class for embedding provider implementations.

    Providers are async context managers; leaving the context releases the
    underlying HTTP client.
    """

    provider_name = "base"

    def __init__(self, config: EmbeddingProviderConfig):
        """Initialize the provider.

        Args:
            config: Provider configuration
        """
        self.config = config

    @property
    def model_name(self) -> str:
        """Return the model name."""
        return self.config.model

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Generate an embedding. Must be implemented by subclasses."""
        pass

    async def close(self) -> None:
        """Release network resources. Subclasses override as needed."""
        pass

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
