"""
Tests for the memory indexer.

A real queue and store with a fake embed function.
"""

from unittest.mock import AsyncMock

import pytest

from mnemo.config import QueueConfig
from mnemo.domain.entities import JobMetadata, JobStatus
from mnemo.memory.embedding_queue import EmbeddingQueue
from mnemo.memory.indexer import MemoryIndexer
from mnemo.memory.reconciliation import ReconciliationJob

TURNS = [
    "- **2025-01-15T10:00:00.000Z** [user] What is the capital of France?",
    "- **2025-01-15T10:00:05.000Z** [agent] Paris.",
    "- **2025-01-15T10:00:06.000Z** [tool] lookup(country=France)",
]


async def fake_embed(text: str) -> list[float]:
    return [float(len(text)), 1.0, 0.0]


@pytest.fixture
def queue():
    return EmbeddingQueue(fake_embed, QueueConfig(max_retries=2), sleep=AsyncMock())


@pytest.fixture
def indexer(store, queue):
    idx = MemoryIndexer(store, queue)
    yield idx
    idx.close()


class TestIndexTurn:
    """Tests for indexing freshly logged turns."""

    @pytest.mark.asyncio
    async def test_turn_is_stored(self, indexer, store, queue):
        """A queued turn lands in the store once the job completes."""
        job_id = indexer.index_turn(
            "hello", "logs/a.md", 5, "2025-01-15T10:00:00.000Z", "user", "ctx-1", pinned=True
        )
        await queue.wait_until_idle()

        record = await store.get_by_path_and_line("logs/a.md", 5)
        assert queue.get_status(job_id) == JobStatus.OK
        assert record.embedding == pytest.approx([5.0, 1.0, 0.0])
        assert record.pinned is True
        assert record.context_id == "ctx-1"
        assert indexer.indexed_count == 1

    @pytest.mark.asyncio
    async def test_tool_and_empty_turns_ignored(self, indexer, queue):
        """Tool turns and blank text are not queued."""
        assert indexer.index_turn("x", "logs/a.md", 5, "2025-01-15T10:00:00.000Z", "tool", "c") is None
        assert indexer.index_turn("  ", "logs/a.md", 6, "2025-01-15T10:00:00.000Z", "user", "c") is None
        assert queue.get_stats()["total"] == 0

    @pytest.mark.asyncio
    async def test_duplicate_location_skipped(self, indexer, store, make_record):
        """Persisting an already indexed location returns None."""
        await store.insert(make_record(path="logs/a.md", line=5))
        metadata = JobMetadata(
            path="logs/a.md",
            line=5,
            timestamp="2025-01-15T10:00:00.000Z",
            role="user",
            context_id="ctx-1",
        )

        assert await indexer.persist_job(metadata, [0.0, 1.0, 0.0], "job-1") is None
        assert await store.count() == 1
        assert indexer.indexed_count == 0

    @pytest.mark.asyncio
    async def test_failed_jobs_not_stored(self, store):
        """A job that exhausts its retries never reaches the store."""
        embed = AsyncMock(side_effect=RuntimeError("provider down"))
        queue = EmbeddingQueue(embed, QueueConfig(max_retries=2), sleep=AsyncMock())
        indexer = MemoryIndexer(store, queue)

        job_id = indexer.index_turn("hi", "logs/a.md", 5, "2025-01-15T10:00:00.000Z", "user", "c")
        await queue.wait_until_idle()
        indexer.close()

        assert queue.get_status(job_id) == JobStatus.FAILED
        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_close_unsubscribes(self, store, queue):
        """After close, completed jobs are no longer persisted."""
        indexer = MemoryIndexer(store, queue)
        indexer.close()
        indexer.close()

        indexer.index_turn("hi", "logs/a.md", 5, "2025-01-15T10:00:00.000Z", "user", "c")
        await queue.wait_until_idle()

        assert await store.count() == 0


class TestBackfill:
    """Tests for backfilling history from the logs."""

    @pytest.mark.asyncio
    async def test_backfill_then_converged(self, indexer, store, logs_root, write_log):
        """Backfill indexes every missing turn; reconciliation then finds none."""
        path = write_log(TURNS)

        report = await indexer.backfill(logs_root)
        after = await ReconciliationJob(store, logs_root).run()

        assert report.entries_missing == 2
        assert report.entries_enqueued == 2
        assert await store.count() == 2
        agent = await store.get_by_path_and_line(str(path), 6)
        assert agent.role.value == "agent"
        assert after.entries_missing == 0

    @pytest.mark.asyncio
    async def test_dry_run_queues_nothing(self, indexer, store, queue, logs_root, write_log):
        """A dry run only reports."""
        write_log(TURNS)

        report = await indexer.backfill(logs_root, dry_run=True)

        assert report.entries_missing == 2
        assert report.entries_enqueued == 0
        assert queue.get_stats()["total"] == 0
        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_backfill_is_idempotent(self, indexer, store, logs_root, write_log):
        """Running backfill twice does not duplicate records."""
        write_log(TURNS)

        await indexer.backfill(logs_root)
        second = await indexer.backfill(logs_root)

        assert second.entries_enqueued == 0
        assert await store.count() == 2
