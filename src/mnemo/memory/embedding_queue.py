"""
In-process Embedding Queue.

Turns log text into vectors by calling an injected embedding function, one
job at a time. Failed calls are retried with capped exponential backoff;
after max_retries attempts the job is marked failed and kept for inspection.

The queue does not touch the vector store. Whoever consumes the ok jobs
(see indexer.MemoryIndexer) persists the results.

Job lifecycle:
    pending -> processing -> ok
                          -> pending (retry, after backoff) -> processing ...
                          -> failed (attempts >= max_retries)

Each arrow is a pure function below that returns a new EmbeddingJob. The
queue only stores the values those functions return.
"""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import logging
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence, Union

from ..config import QueueConfig
from ..domain.entities import EmbeddingJob, JobMetadata, JobStatus
from ..domain.ports import IEmbeddingQueue
from ..exceptions import EmbeddingProviderError

logger = logging.getLogger(__name__)

EmbedFunction = Callable[[str], Awaitable[Sequence[float]]]
JobCallback = Callable[[EmbeddingJob], Union[None, Awaitable[None]]]
StatusCallback = Callable[[str, JobStatus, EmbeddingJob], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class QueueEvent:
    """A job transition, delivered to every subscriber."""

    job_id: str
    status: JobStatus
    job: EmbeddingJob


QueueListener = Callable[[QueueEvent], Union[None, Awaitable[None]]]


# ============================================
# Backoff
# ============================================


def calculate_backoff(attempt: int, config: Optional[QueueConfig] = None) -> float:
    """Delay before retry number ``attempt`` (zero-based).

    min(base_delay * factor ** attempt, max_delay). Attempt 0 waits exactly
    base_delay (unless max_delay is smaller).
    """
    config = config or QueueConfig()
    attempt = max(attempt, 0)
    try:
        delay = config.base_delay * (config.factor ** attempt)
    except OverflowError:
        return config.max_delay
    return min(delay, config.max_delay)


# ============================================
# State Transitions
# ============================================


def start_attempt(job: EmbeddingJob) -> EmbeddingJob:
    if job.status != JobStatus.PENDING:
        raise ValueError(f"Cannot start job {job.id} in status {job.status.value}")
    return dataclasses.replace(job, status=JobStatus.PROCESSING)


def complete_job(job: EmbeddingJob, embedding: Sequence[float]) -> EmbeddingJob:
    if job.status != JobStatus.PROCESSING:
        raise ValueError(f"Cannot complete job {job.id} in status {job.status.value}")
    return dataclasses.replace(
        job,
        status=JobStatus.OK,
        embedding=tuple(float(x) for x in embedding),
        error=None,
    )


def fail_attempt(job: EmbeddingJob, error: str, max_retries: int) -> EmbeddingJob:
    """Record a failed attempt.

    The job goes back to pending while attempts < max_retries, otherwise it
    becomes failed. The error message is kept either way.
    """
    if job.status != JobStatus.PROCESSING:
        raise ValueError(f"Cannot fail job {job.id} in status {job.status.value}")
    attempts = job.attempts + 1
    status = JobStatus.PENDING if attempts < max_retries else JobStatus.FAILED
    return dataclasses.replace(job, status=status, attempts=attempts, error=error)


def requeue_job(job: EmbeddingJob) -> EmbeddingJob:
    """Return an interrupted in-flight job to pending without counting an attempt."""
    if job.status != JobStatus.PROCESSING:
        return job
    return dataclasses.replace(job, status=JobStatus.PENDING)


# ============================================
# Queue
# ============================================


class EmbeddingQueue(IEmbeddingQueue):
    """Sequential single-worker embedding queue.

    Jobs reach a terminal status in the order they were enqueued. The worker
    is an asyncio task started on demand by enqueue() and resume(); it exits
    when nothing is pending or the queue is paused.

    Usage:
        queue = EmbeddingQueue(provider.embed, on_complete=persist)
        job_id = queue.enqueue(text, metadata)
        await queue.wait_until_idle()
    """

    def __init__(
        self,
        embed: EmbedFunction,
        config: Optional[QueueConfig] = None,
        on_status_change: Optional[StatusCallback] = None,
        on_complete: Optional[JobCallback] = None,
        on_error: Optional[JobCallback] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize the queue.

        Args:
            embed: Async function turning text into a vector
            config: Retry settings (defaults read from the environment)
            on_status_change: Called as (job_id, status, job) on every transition
            on_complete: Called with the job when it reaches ok
            on_error: Called once with the job when it reaches failed
            sleep: Backoff sleep, replaceable in tests
        """
        self._embed = embed
        self.config = config or QueueConfig()
        self.on_status_change = on_status_change
        self.on_complete = on_complete
        self.on_error = on_error
        self._sleep = sleep

        self._jobs: dict[str, EmbeddingJob] = {}
        self._pending: deque[str] = deque()
        self._listeners: list[QueueListener] = []
        self._paused = False
        self._worker: Optional[asyncio.Task] = None
        self._callback_tasks: set[asyncio.Task] = set()

    # ----------------------------------------
    # Public API
    # ----------------------------------------

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def calculate_backoff(self, attempt: int) -> float:
        return calculate_backoff(attempt, self.config)

    def enqueue(
        self,
        text: str,
        metadata: JobMetadata,
        job_id: Optional[str] = None,
    ) -> str:
        """Add a pending job and return its id immediately.

        Raises:
            ValueError: If job_id is already in use
        """
        job_id = job_id or str(uuid.uuid4())
        if job_id in self._jobs:
            raise ValueError(f"Job {job_id} already exists")

        job = EmbeddingJob(id=job_id, text=text, metadata=metadata)
        self._jobs[job_id] = job
        self._pending.append(job_id)
        logger.debug(f"Enqueued embedding job {job_id} for {metadata.path}:{metadata.line}")

        self._notify_nowait(job)
        self._ensure_worker()
        return job_id

    def pause(self) -> None:
        """Stop picking up jobs. The in-flight attempt finishes first."""
        if not self._paused:
            self._paused = True
            logger.info("Embedding queue paused")

    def resume(self) -> None:
        if self._paused:
            self._paused = False
            logger.info(f"Embedding queue resumed with {len(self._pending)} pending jobs")
        self._ensure_worker()

    def get_status(self, job_id: str) -> Optional[JobStatus]:
        job = self._jobs.get(job_id)
        return job.status if job else None

    def get_job(self, job_id: str) -> Optional[EmbeddingJob]:
        return self._jobs.get(job_id)

    def get_failed_jobs(self) -> list[EmbeddingJob]:
        return [job for job in self._jobs.values() if job.status == JobStatus.FAILED]

    def get_pending_count(self) -> int:
        return sum(1 for job in self._jobs.values() if job.status == JobStatus.PENDING)

    def get_stats(self) -> dict[str, Any]:
        """Job counts by status, plus queue flags."""
        stats: dict[str, Any] = {status.value: 0 for status in JobStatus}
        for job in self._jobs.values():
            stats[job.status.value] += 1
        stats["total"] = len(self._jobs)
        stats["paused"] = self._paused
        stats["running"] = self.is_running
        return stats

    def clear(self) -> None:
        """Drop every job regardless of status.

        An attempt already in flight finishes, but its result is discarded,
        even if a new job has since been enqueued under the same id.
        """
        dropped = len(self._jobs)
        self._jobs.clear()
        self._pending.clear()
        logger.info(f"Embedding queue cleared ({dropped} jobs dropped)")

    def subscribe(self, listener: QueueListener) -> Callable[[], None]:
        """Register a listener for every job transition.

        Returns:
            A function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def wait_until_idle(self) -> None:
        """Wait until the worker has nothing left to do.

        Returns with jobs still pending if the queue is paused.
        """
        while self.is_running:
            await asyncio.shield(self._worker)

    async def stop(self) -> None:
        """Cancel the worker and pause the queue.

        A job interrupted mid-attempt goes back to pending with its attempt
        count unchanged. Call resume() to start again.
        """
        self._paused = True
        worker = self._worker
        if worker is not None and not worker.done():
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                logger.info("Embedding queue worker cancelled")
        self._worker = None

        for job_id in list(self._pending):
            job = self._jobs.get(job_id)
            if job is not None and job.status == JobStatus.PROCESSING:
                await self._store(requeue_job(job))

    # ----------------------------------------
    # Worker
    # ----------------------------------------

    def _ensure_worker(self) -> None:
        if self._paused or self.is_running or not self._pending:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet; jobs wait for the next enqueue() or resume() inside one.
            return
        self._worker = loop.create_task(self._run())

    async def _run(self) -> None:
        try:
            while self._pending and not self._paused:
                job_id = self._pending[0]
                job = self._jobs.get(job_id)
                if job is None or job.status != JobStatus.PENDING:
                    self._pending.popleft()
                    continue
                await self._process(job_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Embedding queue worker error: {e}")

    async def _process(self, job_id: str) -> None:
        job = self._jobs[job_id]

        while True:
            job = start_attempt(job)
            await self._store(job)

            try:
                vector = await self._embed(job.text)
                if not vector:
                    raise EmbeddingProviderError("Provider returned an empty embedding")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if self._jobs.get(job_id) is not job:
                    return
                job = fail_attempt(job, str(e) or e.__class__.__name__, self.config.max_retries)
                await self._store(job)

                if job.status == JobStatus.FAILED:
                    logger.error(
                        f"Embedding job {job_id} failed after {job.attempts} attempts: {job.error}"
                    )
                    self._drop_pending(job_id)
                    await self._invoke(self.on_error, job)
                    return

                delay = self.calculate_backoff(job.attempts - 1)
                logger.warning(
                    f"Embedding job {job_id} attempt {job.attempts}/{self.config.max_retries} "
                    f"failed, retrying in {delay:.2f}s: {job.error}"
                )
                await self._sleep(delay)

                if self._jobs.get(job_id) is not job:
                    return
                if self._paused:
                    # Stays pending at the head; resume() retries it first.
                    return
                continue

            if self._jobs.get(job_id) is not job:
                return
            job = complete_job(job, vector)
            await self._store(job)
            self._drop_pending(job_id)
            logger.debug(f"Embedding job {job_id} completed ({len(vector)} dimensions)")
            await self._invoke(self.on_complete, job)
            return

    def _drop_pending(self, job_id: str) -> None:
        if self._pending and self._pending[0] == job_id:
            self._pending.popleft()
        elif job_id in self._pending:
            self._pending.remove(job_id)

    async def _store(self, job: EmbeddingJob) -> None:
        """Save a transitioned job and notify observers."""
        if job.id not in self._jobs:
            return
        self._jobs[job.id] = job

        await self._invoke(self.on_status_change, job.id, job.status, job)
        event = QueueEvent(job_id=job.id, status=job.status, job=job)
        for listener in list(self._listeners):
            await self._invoke(listener, event)

    def _notify_nowait(self, job: EmbeddingJob) -> None:
        """Notify observers from synchronous code.

        Coroutine callbacks are scheduled on the running loop ahead of the
        worker, so observers still see transitions in order.
        """
        event = QueueEvent(job_id=job.id, status=job.status, job=job)
        self._call_soon(self.on_status_change, job.id, job.status, job)
        for listener in list(self._listeners):
            self._call_soon(listener, event)

    def _call_soon(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
        except Exception as e:
            logger.exception(f"Embedding queue callback {callback!r} raised: {e}")
            return
        if not inspect.isawaitable(result):
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(result):
                result.close()
            logger.warning(f"Embedding queue callback {callback!r} skipped: no running event loop")
            return
        task = loop.create_task(self._invoke_awaitable(callback, result))
        self._callback_tasks.add(task)
        task.add_done_callback(self._callback_tasks.discard)

    async def _invoke_awaitable(self, callback: Callable[..., Any], result: Awaitable[Any]) -> None:
        try:
            await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Embedding queue callback {callback!r} raised: {e}")

    async def _invoke(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Embedding queue callback {callback!r} raised: {e}")
