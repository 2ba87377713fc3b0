"""mnemo: long-term conversational memory.

Append-only turn logs are the source of truth. Turns are embedded through
a retrying queue into a SQLite vector index, ranked with MMR at query time,
and rendered into a token-budgeted context block.
"""

from .config import InjectionConfig, MemoryConfig, QueueConfig, RetrievalConfig
from .exceptions import (
    ConfigurationError,
    DimensionMismatchError,
    DuplicateKeyError,
    EmbeddingProviderError,
    MnemoError,
    StorageError,
    StoreNotOpenError,
)

__version__ = "0.1.0"

__all__ = [
    "InjectionConfig",
    "MemoryConfig",
    "QueueConfig",
    "RetrievalConfig",
    "ConfigurationError",
    "DimensionMismatchError",
    "DuplicateKeyError",
    "EmbeddingProviderError",
    "MnemoError",
    "StorageError",
    "StoreNotOpenError",
]
