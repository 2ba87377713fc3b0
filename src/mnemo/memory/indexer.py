"""
Memory Indexer.

Connects the embedding queue to the vector store: every job that reaches
ok becomes an EmbeddingRecord. Also the entry point for indexing a freshly
logged turn and for backfilling history through reconciliation.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from ..domain.entities import (
    EmbeddingRecord,
    JobMetadata,
    JobStatus,
    ReconciliationReport,
    Role,
)
from ..domain.ports import IVectorStore
from ..exceptions import DuplicateKeyError
from .embedding_queue import EmbeddingQueue, QueueEvent
from .reconciliation import ReconciliationJob

logger = logging.getLogger(__name__)


class MemoryIndexer:
    """Persists completed embedding jobs.

    Usage:
        indexer = MemoryIndexer(store, queue)
        indexer.index_turn("hello", path, line, timestamp, "user", "chan-1")
        await queue.wait_until_idle()
    """

    def __init__(self, store: IVectorStore, queue: EmbeddingQueue):
        self.store = store
        self.queue = queue
        self.indexed_count = 0
        self._unsubscribe = queue.subscribe(self._on_event)

    def close(self) -> None:
        """Stop listening to the queue."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def _on_event(self, event: QueueEvent) -> None:
        if event.status != JobStatus.OK:
            return
        await self.persist_job(event.job.metadata, list(event.job.embedding or ()), event.job_id)

    async def persist_job(
        self, metadata: JobMetadata, embedding: list[float], job_id: Optional[str] = None
    ) -> Optional[EmbeddingRecord]:
        """Insert the record for a finished job.

        A location that is already indexed is skipped. Other storage errors
        propagate.
        """
        record = EmbeddingRecord(
            embedding=embedding,
            path=metadata.path,
            line=metadata.line,
            timestamp=metadata.timestamp,
            role=Role(metadata.role),
            context_id=metadata.context_id,
            pinned=metadata.pinned,
        )
        try:
            stored = await self.store.insert(record)
        except DuplicateKeyError:
            logger.info(
                f"Skipping job {job_id}: {metadata.path}:{metadata.line} already indexed"
            )
            return None

        self.indexed_count += 1
        logger.debug(f"Indexed job {job_id} as record {stored.id}")
        return stored

    def index_turn(
        self,
        text: str,
        path: str,
        line: int,
        timestamp: str,
        role: str,
        context_id: str,
        pinned: bool = False,
    ) -> Optional[str]:
        """Queue a newly logged turn. Returns the job id, or None for tool turns."""
        if not Role.is_embeddable(role):
            logger.debug(f"Not indexing {role} turn at {path}:{line}")
            return None
        if not text or not text.strip():
            logger.debug(f"Not indexing empty turn at {path}:{line}")
            return None

        metadata = JobMetadata(
            path=path,
            line=line,
            timestamp=timestamp,
            role=role,
            context_id=context_id,
            pinned=pinned,
        )
        return self.queue.enqueue(text, metadata)

    async def backfill(
        self, logs_root: Union[str, Path], dry_run: bool = False
    ) -> ReconciliationReport:
        """Embed every logged turn that is missing from the store.

        With dry_run the report lists the missing turns and nothing is queued.
        Otherwise this waits for the queue to drain before returning.
        """
        job = ReconciliationJob(
            self.store,
            logs_root,
            queue=None if dry_run else self.queue,
        )
        report = await job.run()

        if not dry_run and report.entries_enqueued:
            logger.info(f"Backfill waiting on {report.entries_enqueued} embedding jobs")
            await self.queue.wait_until_idle()
            failed = len(self.queue.get_failed_jobs())
            if failed:
                logger.warning(f"Backfill finished with {failed} failed embedding jobs")

        return report
