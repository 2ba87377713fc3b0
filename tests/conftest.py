"""Shared fixtures for the mnemo test suite."""

from pathlib import Path

import pytest
import pytest_asyncio

from mnemo.domain.entities import EmbeddingRecord
from mnemo.memory.vector_store import SQLiteVectorStore

# ============================================
# Environment
# ============================================

MNEMO_ENV_VARS = [
    "MNEMO_DB_PATH",
    "MNEMO_LOGS_ROOT",
    "MNEMO_LOG_LEVEL",
    "EMBEDDING_PROVIDER",
    "OPENAI_API_KEY",
    "OPENAI_EMBEDDING_MODEL",
    "OLLAMA_BASE_URL",
    "OLLAMA_EMBEDDING_MODEL",
    "EMBEDDING_TIMEOUT_SECONDS",
    "EMBEDDING_MAX_RETRIES",
    "EMBEDDING_BASE_DELAY_SECONDS",
    "EMBEDDING_MAX_DELAY_SECONDS",
    "EMBEDDING_BACKOFF_FACTOR",
    "MEMORY_MAX_RESULTS",
    "MEMORY_RECENCY_DECAY_DAYS",
    "MEMORY_TOKEN_BUDGET",
    "MEMORY_MAX_TOKENS_PER_ITEM",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep developer .env settings out of the tests."""
    for var in MNEMO_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    return monkeypatch


# ============================================
# Store
# ============================================


@pytest_asyncio.fixture
async def store(tmp_path):
    """Open, migrated store backed by a temp file."""
    async with SQLiteVectorStore(tmp_path / "index" / "embeddings.sqlite3") as s:
        yield s


@pytest.fixture
def make_record():
    """Factory for embedding records with sensible defaults."""

    def _make(
        path="logs/discord/ctx-1/20250115T100000Z_0000.md",
        line=5,
        embedding=None,
        timestamp="2025-01-15T10:00:00.000Z",
        role="user",
        context_id="ctx-1",
        pinned=False,
        **kwargs,
    ):
        return EmbeddingRecord(
            embedding=embedding if embedding is not None else [1.0, 0.0, 0.0],
            path=path,
            line=line,
            timestamp=timestamp,
            role=role,
            context_id=context_id,
            pinned=pinned,
            **kwargs,
        )

    return _make


# ============================================
# Logs
# ============================================

LOG_HEADER = "# Context Window: {surface}/{context}\n# Started: 20250115T100000Z\n# Sequence: 0\n\n"


@pytest.fixture
def logs_root(tmp_path) -> Path:
    root = tmp_path / "memory"
    root.mkdir()
    return root


@pytest.fixture
def write_log(logs_root):
    """Write a log file under logs_root and return its path.

    Lines are written after the standard four-line header, so the first
    turn lands on line 5.
    """

    def _write(lines, surface="discord", context="ctx-1", name="20250115T100000Z_0000.md"):
        directory = logs_root / "logs" / surface / context
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        body = LOG_HEADER.format(surface=surface, context=context)
        body += "".join(line + "\n" for line in lines)
        path.write_text(body, encoding="utf-8")
        return path

    return _write
