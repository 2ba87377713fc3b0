"""
Port interfaces (abstract base classes) for the memory subsystem.

These define the contracts that adapters must implement.
Following the Ports & Adapters (Hexagonal) architecture pattern.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .entities import EmbeddingRecord, JobMetadata, SimilarityMatch


# ============================================
# Vector Store Interface
# ============================================


class IVectorStore(ABC):
    """Interface for embedding record storage.

    Lookups return None or an empty list for unknown keys; they never raise
    for "not found". Storage failures propagate as StorageError.
    """

    @abstractmethod
    async def open(self) -> None:
        """Acquire the backing connection."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the backing connection. Safe to call more than once."""
        pass

    @abstractmethod
    async def migrate(self) -> int:
        """Bring the schema up to date and return its version."""
        pass

    @abstractmethod
    async def insert(self, record: EmbeddingRecord) -> EmbeddingRecord:
        """Insert a record and return it with created_at filled in.

        Raises:
            DuplicateKeyError: If the id or (path, line) is already stored
            DimensionMismatchError: If the vector length differs from the store's
        """
        pass

    @abstractmethod
    async def get_by_id(self, record_id: str) -> Optional[EmbeddingRecord]:
        pass

    @abstractmethod
    async def get_by_path_and_line(
        self, path: str, line: int
    ) -> Optional[EmbeddingRecord]:
        pass

    @abstractmethod
    async def get_by_context_id(self, context_id: str) -> list[EmbeddingRecord]:
        pass

    @abstractmethod
    async def get_all(self) -> list[EmbeddingRecord]:
        pass

    @abstractmethod
    async def get_recent(self, n: int) -> list[EmbeddingRecord]:
        """Return the last n inserted records, oldest first."""
        pass

    @abstractmethod
    async def get_pinned(self) -> list[EmbeddingRecord]:
        pass

    @abstractmethod
    async def update_pinned(self, record_id: str, pinned: bool) -> bool:
        """Set the pinned flag. Returns False if the id is unknown."""
        pass

    @abstractmethod
    async def delete(self, record_id: str) -> int:
        pass

    @abstractmethod
    async def delete_by_context_id(self, context_id: str) -> int:
        pass

    @abstractmethod
    async def count(self) -> int:
        pass

    @abstractmethod
    async def search_similar(
        self,
        query: list[float],
        limit: int = 10,
        exclude_context_id: Optional[str] = None,
    ) -> list[SimilarityMatch]:
        """Return the stored records most similar to the query, best first.

        Implementations may scan linearly or use an index; callers only rely
        on the ordering and the limit.
        """
        pass


# ============================================
# Embedding Provider Interface
# ============================================


class IEmbeddingProvider(ABC):
    """Interface for embedding generation (OpenAI, Ollama, etc.)."""

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the embedding model identifier."""
        pass

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Generate an embedding vector for text.

        Raises:
            EmbeddingProviderError: On any provider failure
        """
        pass


# ============================================
# Embedding Queue Interface
# ============================================


class IEmbeddingQueue(ABC):
    """Interface for the asynchronous embedding job runner."""

    @abstractmethod
    def enqueue(
        self,
        text: str,
        metadata: JobMetadata,
        job_id: Optional[str] = None,
    ) -> str:
        """Add a job and return its id without waiting for it to run."""
        pass
