"""Domain entities and port interfaces for the memory subsystem."""

from .entities import (
    EmbeddingJob,
    EmbeddingRecord,
    JobMetadata,
    JobStatus,
    LogEntry,
    LogFile,
    MessageReference,
    PinOutcome,
    PinResult,
    ReconciliationError,
    ReconciliationPhase,
    ReconciliationProgress,
    ReconciliationReport,
    ReferenceSource,
    RetrievalResult,
    Role,
    SimilarityMatch,
    format_timestamp,
    parse_timestamp,
)
from .ports import IEmbeddingProvider, IEmbeddingQueue, IVectorStore

__all__ = [
    # Entities
    "EmbeddingJob",
    "EmbeddingRecord",
    "JobMetadata",
    "JobStatus",
    "LogEntry",
    "LogFile",
    "MessageReference",
    "PinOutcome",
    "PinResult",
    "ReconciliationError",
    "ReconciliationPhase",
    "ReconciliationProgress",
    "ReconciliationReport",
    "ReferenceSource",
    "RetrievalResult",
    "Role",
    "SimilarityMatch",
    "format_timestamp",
    "parse_timestamp",
    # Ports
    "IEmbeddingProvider",
    "IEmbeddingQueue",
    "IVectorStore",
]
