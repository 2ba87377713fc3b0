"""
Reconciliation between conversation logs and the vector store.

The logs are the source of truth; the store is a projection of them that can
fall behind (a crash between writing a turn and enqueueing it, or memory
being switched on after history already exists). This job walks every log
file, finds user/agent turns with no stored embedding, and optionally
enqueues them.

A failure on one file or one entry is recorded in the report and the scan
moves on.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional, Union

from ..domain.entities import (
    JobMetadata,
    LogEntry,
    ReconciliationError,
    ReconciliationPhase,
    ReconciliationProgress,
    ReconciliationReport,
    Role,
)
from ..domain.ports import IEmbeddingQueue, IVectorStore
from ..logs.reader import find_log_files, read_all_log_entries

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ReconciliationProgress], None]
MissingCallback = Callable[[LogEntry], None]
EnqueuedCallback = Callable[[LogEntry, str], None]
ErrorCallback = Callable[[ReconciliationError, Exception], None]


class ReconciliationJob:
    """Finds log turns that have no embedding yet.

    Usage:
        job = ReconciliationJob(store, logs_root, queue=queue)
        report = await job.run()
    """

    def __init__(
        self,
        store: IVectorStore,
        logs_root: Union[str, Path],
        queue: Optional[IEmbeddingQueue] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_missing_found: Optional[MissingCallback] = None,
        on_enqueued: Optional[EnqueuedCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ):
        self.store = store
        self.logs_root = Path(logs_root)
        self.queue = queue
        self.on_progress = on_progress
        self.on_missing_found = on_missing_found
        self.on_enqueued = on_enqueued
        self.on_error = on_error

    def parse_log_file(self, path: str, context_id: str) -> list[LogEntry]:
        """Parse a log file, keeping only embeddable turns."""
        entries = []
        for entry in read_all_log_entries(path):
            if not Role.is_embeddable(entry.role):
                continue
            entry.context_id = context_id
            entries.append(entry)
        return entries

    async def has_embedding(self, path: str, line: int) -> bool:
        return await self.store.get_by_path_and_line(path, line) is not None

    def _record_error(
        self,
        report: ReconciliationReport,
        phase: ReconciliationPhase,
        path: str,
        error: Exception,
        line: Optional[int] = None,
    ) -> None:
        failure = ReconciliationError(phase=phase, path=path, error=str(error), line=line)
        report.errors.append(failure)
        location = f"{path}:{line}" if line is not None else path
        logger.warning(f"Reconciliation {phase.value} error at {location}: {error}")
        if self.on_error:
            self.on_error(failure, error)

    def _progress(self, progress: ReconciliationProgress) -> None:
        if self.on_progress:
            self.on_progress(progress)

    async def run(self) -> ReconciliationReport:
        """Scan all logs, diff against the store and enqueue what is missing.

        Returns:
            Report of files scanned, entries found, missing and enqueued
        """
        report = ReconciliationReport()
        log_files = find_log_files(self.logs_root)

        logger.info(f"Reconciliation started: {len(log_files)} log files under {self.logs_root}")
        self._progress(
            ReconciliationProgress(phase=ReconciliationPhase.SCANNING, total_files=len(log_files))
        )

        for log_file in log_files:
            report.files_scanned += 1
            self._progress(
                ReconciliationProgress(
                    phase=ReconciliationPhase.SCANNING,
                    total_files=len(log_files),
                    current_file=report.files_scanned,
                    file_path=log_file.path,
                )
            )

            try:
                entries = self.parse_log_file(log_file.path, log_file.context_id)
            except (OSError, UnicodeDecodeError) as e:
                self._record_error(report, ReconciliationPhase.PARSING, log_file.path, e)
                continue

            report.entries_found += len(entries)

            for entry in entries:
                try:
                    found = await self.has_embedding(entry.path, entry.line)
                except Exception as e:
                    self._record_error(
                        report, ReconciliationPhase.CHECKING, entry.path, e, line=entry.line
                    )
                    continue

                if not found:
                    report.entries_missing += 1
                    report.missing_entries.append(entry)
                    logger.debug(f"Missing embedding for {entry.path}:{entry.line}")
                    if self.on_missing_found:
                        self.on_missing_found(entry)

        if self.queue is not None and report.missing_entries:
            self._progress(
                ReconciliationProgress(
                    phase=ReconciliationPhase.ENQUEUEING,
                    total_files=len(log_files),
                    files_scanned=report.files_scanned,
                    entries_found=report.entries_found,
                    entries_missing=report.entries_missing,
                )
            )
            self._enqueue_missing(report)

        self._progress(
            ReconciliationProgress(
                phase=ReconciliationPhase.COMPLETE,
                total_files=len(log_files),
                files_scanned=report.files_scanned,
                entries_found=report.entries_found,
                entries_missing=report.entries_missing,
                entries_enqueued=report.entries_enqueued,
            )
        )
        logger.info(f"Reconciliation complete: {report.summary()}")
        return report

    def _enqueue_missing(self, report: ReconciliationReport) -> None:
        for entry in report.missing_entries:
            metadata = JobMetadata(
                path=entry.path,
                line=entry.line,
                timestamp=entry.timestamp,
                role=entry.role,
                context_id=entry.context_id or "",
                pinned=False,
            )
            try:
                job_id = self.queue.enqueue(entry.text, metadata)
            except Exception as e:
                self._record_error(
                    report, ReconciliationPhase.ENQUEUEING, entry.path, e, line=entry.line
                )
                continue

            report.entries_enqueued += 1
            report.job_ids.append(job_id)
            if self.on_enqueued:
                self.on_enqueued(entry, job_id)


async def run_reconciliation(
    store: IVectorStore,
    logs_root: Union[str, Path],
    queue: Optional[IEmbeddingQueue] = None,
    **callbacks,
) -> ReconciliationReport:
    """Run a one-off reconciliation against an open store."""
    job = ReconciliationJob(store, logs_root, queue=queue, **callbacks)
    return await job.run()
