"""
Configuration for the memory subsystem.

Every setting has an environment variable and a default. Values are read
when the dataclass is instantiated, so tests can use monkeypatch.setenv.
Loading a .env file is the entry point's job (see maintenance.py).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


# ============================================
# Component Configs
# ============================================


@dataclass
class QueueConfig:
    """Retry and backoff settings for the embedding queue.

    Attributes:
        max_retries: Total attempts before a job is marked failed
        base_delay: Delay in seconds before the first retry
        max_delay: Upper bound for any single backoff wait
        factor: Multiplier applied per attempt
    """

    max_retries: int = field(default_factory=lambda: _env_int("EMBEDDING_MAX_RETRIES", 5))
    base_delay: float = field(
        default_factory=lambda: _env_float("EMBEDDING_BASE_DELAY_SECONDS", 1.0)
    )
    max_delay: float = field(
        default_factory=lambda: _env_float("EMBEDDING_MAX_DELAY_SECONDS", 60.0)
    )
    factor: float = field(default_factory=lambda: _env_float("EMBEDDING_BACKOFF_FACTOR", 2.0))

    def __post_init__(self):
        if self.max_retries < 1:
            raise ConfigurationError(
                "max_retries must be at least 1",
                details={"max_retries": self.max_retries},
            )
        if self.base_delay < 0 or self.max_delay < 0:
            raise ConfigurationError(
                "Backoff delays must be non-negative",
                details={"base_delay": self.base_delay, "max_delay": self.max_delay},
            )
        if self.factor < 1:
            raise ConfigurationError(
                "Backoff factor must be >= 1",
                details={"factor": self.factor},
            )


@dataclass
class RetrievalConfig:
    """Weights for MMR ranking.

    Attributes:
        max_memories: Default result count when the caller passes no limit
        similarity_weight: Weight of query similarity
        recency_weight: Weight of exponential recency
        diversity_weight: Weight of the redundancy penalty
        recency_decay_days: Decay constant for recency
        pinned_boost: Not consumed by the scorer. Pinned records are selected
            in a separate first pass instead of being boosted. Kept so callers
            that set it keep working.
        oversample_factor: Candidate pool size as a multiple of the limit
        min_candidate_pool: Lower bound for the candidate pool size
    """

    max_memories: int = field(default_factory=lambda: _env_int("MEMORY_MAX_RESULTS", 5))
    similarity_weight: float = 0.7
    recency_weight: float = 0.2
    diversity_weight: float = 0.1
    recency_decay_days: float = field(
        default_factory=lambda: _env_float("MEMORY_RECENCY_DECAY_DAYS", 14.0)
    )
    pinned_boost: float = 1.5
    oversample_factor: int = 3
    min_candidate_pool: int = 50


@dataclass
class InjectionConfig:
    """Token budgeting for the injected context block."""

    total_token_budget: int = field(default_factory=lambda: _env_int("MEMORY_TOKEN_BUDGET", 1000))
    max_tokens_per_memory: int = field(
        default_factory=lambda: _env_int("MEMORY_MAX_TOKENS_PER_ITEM", 250)
    )
    chars_per_token: int = 4
    base_overhead_tokens: int = 50
    per_memory_overhead_tokens: int = 20
    prefix: str = "INJECTED_CONTEXT_RELEVANT_MEMORIES"


# ============================================
# Top-level Config
# ============================================


@dataclass
class MemoryConfig:
    """Settings for a full memory deployment (store, logs, provider)."""

    db_path: str = field(
        default_factory=lambda: os.getenv("MNEMO_DB_PATH", "data/memory/embeddings.sqlite3")
    )
    logs_root: str = field(default_factory=lambda: os.getenv("MNEMO_LOGS_ROOT", "data/memory"))
    embedding_provider: str = field(
        default_factory=lambda: os.getenv("EMBEDDING_PROVIDER", "openai").lower()
    )
    openai_api_key: Optional[str] = field(default_factory=lambda: os.getenv("OPENAI_API_KEY"))
    openai_embedding_model: str = field(
        default_factory=lambda: os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small")
    )
    ollama_base_url: str = field(
        default_factory=lambda: os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    )
    ollama_embedding_model: str = field(
        default_factory=lambda: os.getenv("OLLAMA_EMBEDDING_MODEL", "nomic-embed-text")
    )
    embedding_timeout: float = field(
        default_factory=lambda: _env_float("EMBEDDING_TIMEOUT_SECONDS", 30.0)
    )
    log_level: str = field(default_factory=lambda: os.getenv("MNEMO_LOG_LEVEL", "INFO").upper())
    queue: QueueConfig = field(default_factory=QueueConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    injection: InjectionConfig = field(default_factory=InjectionConfig)

    SUPPORTED_PROVIDERS = ("openai", "ollama")

    def validate(self) -> None:
        """Check that the selected provider has what it needs.

        Raises:
            ConfigurationError: If the provider is unknown or a key is missing
        """
        if self.embedding_provider not in self.SUPPORTED_PROVIDERS:
            raise ConfigurationError(
                f"Unknown embedding provider: {self.embedding_provider}",
                details={"supported": list(self.SUPPORTED_PROVIDERS)},
            )

        missing = []
        if not self.db_path:
            missing.append("MNEMO_DB_PATH")
        if not self.logs_root:
            missing.append("MNEMO_LOGS_ROOT")
        if self.embedding_provider == "openai" and not self.openai_api_key:
            missing.append("OPENAI_API_KEY")

        if missing:
            raise ConfigurationError(
                "Missing required configuration",
                missing_keys=missing,
            )

        logger.debug(
            f"Configuration valid: provider={self.embedding_provider}, db={self.db_path}"
        )
