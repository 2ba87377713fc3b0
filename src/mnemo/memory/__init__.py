"""Memory system: vector store, embedding queue, retrieval and maintenance.

Provides:
- SQLite vector store with linear cosine search
- Sequential embedding queue with retry and backoff
- MMR retrieval with pinned-first precedence
- Log/index reconciliation and backfill
- Pinned memories via the remember command
- Token-budgeted context injection
"""

from .embedding_queue import (
    EmbeddingQueue,
    QueueEvent,
    calculate_backoff,
    complete_job,
    fail_attempt,
    requeue_job,
    start_attempt,
)
from .indexer import MemoryIndexer
from .injection import MemoryInjector
from .pins import PinsManager, find_by_timestamp_proximity, parse_message_reference
from .reconciliation import ReconciliationJob, run_reconciliation
from .retrieval import MemoryRetriever, RetrievalDetails
from .vector_store import (
    SCHEMA_VERSION,
    SQLiteVectorStore,
    cosine_similarity,
    deserialize_embedding,
    serialize_embedding,
)

__all__ = [
    # Store
    "SCHEMA_VERSION",
    "SQLiteVectorStore",
    "cosine_similarity",
    "deserialize_embedding",
    "serialize_embedding",
    # Queue
    "EmbeddingQueue",
    "QueueEvent",
    "calculate_backoff",
    "complete_job",
    "fail_attempt",
    "requeue_job",
    "start_attempt",
    # Retrieval and injection
    "MemoryRetriever",
    "RetrievalDetails",
    "MemoryInjector",
    # Maintenance
    "MemoryIndexer",
    "ReconciliationJob",
    "run_reconciliation",
    "PinsManager",
    "find_by_timestamp_proximity",
    "parse_message_reference",
]
