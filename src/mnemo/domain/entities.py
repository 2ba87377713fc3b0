"""
Domain entities for the memory subsystem.

These are pure domain objects with no infrastructure dependencies.
They define the core data structures used throughout the memory package.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

# ============================================
# Timestamps
# ============================================


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 instant into an aware UTC datetime.

    Accepts the trailing "Z" form written by the log writer. Naive values
    are assumed to be UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime] = None) -> str:
    """Format an instant the way the log writer does (millisecond Z form)."""
    value = value or datetime.now(timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


# ============================================
# Roles
# ============================================


class Role(str, Enum):
    """Speaker of an embeddable turn.

    Tool calls and tool results are logged too but never embedded.
    """

    USER = "user"
    AGENT = "agent"

    @classmethod
    def is_embeddable(cls, role: str) -> bool:
        """Return True if turns with this role may be embedded."""
        return role in {member.value for member in cls}


# ============================================
# Embedding Records
# ============================================


@dataclass
class EmbeddingRecord:
    """A stored embedding derived from one log line.

    Attributes:
        embedding: Vector for the turn's text
        path: Log file the turn lives in
        line: One-based line number within that file
        timestamp: ISO-8601 instant of the source turn
        role: user or agent
        context_id: Conversation/thread the turn belongs to
        pinned: User-controlled precedence flag (the only mutable field)
        id: Opaque unique identifier, never reused
        created_at: Store-assigned insertion time
    """

    embedding: list[float]
    path: str
    line: int
    timestamp: str
    role: Role
    context_id: str
    pinned: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: Optional[str] = None

    def __post_init__(self):
        self.role = Role(self.role)
        if self.line < 1:
            raise ValueError(f"line must be one-based, got {self.line}")

    @property
    def dimension(self) -> int:
        return len(self.embedding)

    @property
    def location(self) -> tuple[str, int]:
        """The (path, line) natural key."""
        return (self.path, self.line)


@dataclass
class SimilarityMatch:
    """A record returned from a similarity scan."""

    record: EmbeddingRecord
    similarity: float


# ============================================
# Embedding Jobs
# ============================================


class JobStatus(str, Enum):
    """Embedding job status."""

    PENDING = "pending"
    PROCESSING = "processing"
    OK = "ok"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.OK, JobStatus.FAILED)


@dataclass(frozen=True)
class JobMetadata:
    """Where an embedding job's text came from."""

    path: str
    line: int
    timestamp: str
    role: str
    context_id: str
    pinned: bool = False


@dataclass(frozen=True)
class EmbeddingJob:
    """A unit of work for the embedding queue.

    Jobs are immutable values. The queue replaces a job with the value
    returned by a transition function instead of mutating it.
    """

    id: str
    text: str
    metadata: JobMetadata
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    embedding: Optional[tuple[float, ...]] = None
    error: Optional[str] = None
    created_at: float = field(default_factory=time.time)


# ============================================
# Retrieval
# ============================================


@dataclass
class RetrievalResult:
    """A ranked memory with its score breakdown."""

    record: EmbeddingRecord
    similarity: float
    recency: float
    diversity_penalty: float
    score: float
    is_pinned: bool

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def path(self) -> str:
        return self.record.path

    @property
    def line(self) -> int:
        return self.record.line

    @property
    def timestamp(self) -> str:
        return self.record.timestamp

    @property
    def context_id(self) -> str:
        return self.record.context_id

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary (without the raw vector) for debugging."""
        return {
            "id": self.record.id,
            "path": self.record.path,
            "line": self.record.line,
            "timestamp": self.record.timestamp,
            "role": self.record.role.value,
            "context_id": self.record.context_id,
            "pinned": self.record.pinned,
            "similarity": self.similarity,
            "recency": self.recency,
            "diversity_penalty": self.diversity_penalty,
            "score": self.score,
            "is_pinned": self.is_pinned,
        }


# ============================================
# Conversation Logs
# ============================================


@dataclass
class LogEntry:
    """A parsed turn from a conversation log file."""

    path: str
    line: int
    timestamp: str
    role: str
    content: str
    context_id: Optional[str] = None
    surface: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        """Text sent to the embedding provider."""
        return self.content

    @property
    def message_id(self) -> Optional[str]:
        value = self.metadata.get("messageId")
        return str(value) if value is not None else None


@dataclass(frozen=True)
class LogFile:
    """A log file found under the logs root."""

    path: str
    surface: str
    context_id: str


# ============================================
# Reconciliation
# ============================================


class ReconciliationPhase(str, Enum):
    """Phases reported by the reconciliation job.

    SCANNING, ENQUEUEING and COMPLETE are progress phases. PARSING,
    CHECKING and ENQUEUEING tag recorded errors.
    """

    SCANNING = "scanning"
    PARSING = "parsing"
    CHECKING = "checking"
    ENQUEUEING = "enqueueing"
    COMPLETE = "complete"


@dataclass
class ReconciliationError:
    """A per-file or per-entry failure recorded during reconciliation."""

    phase: ReconciliationPhase
    path: str
    error: str
    line: Optional[int] = None


@dataclass
class ReconciliationProgress:
    """Progress notification emitted at phase boundaries."""

    phase: ReconciliationPhase
    total_files: int = 0
    current_file: int = 0
    file_path: Optional[str] = None
    files_scanned: int = 0
    entries_found: int = 0
    entries_missing: int = 0
    entries_enqueued: int = 0


@dataclass
class ReconciliationReport:
    """Outcome of a reconciliation run."""

    files_scanned: int = 0
    entries_found: int = 0
    entries_missing: int = 0
    entries_enqueued: int = 0
    errors: list[ReconciliationError] = field(default_factory=list)
    missing_entries: list[LogEntry] = field(default_factory=list)
    job_ids: list[str] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def summary(self) -> str:
        return (
            f"files={self.files_scanned} found={self.entries_found} "
            f"missing={self.entries_missing} enqueued={self.entries_enqueued} "
            f"errors={len(self.errors)}"
        )


# ============================================
# Pins
# ============================================


class ReferenceSource(str, Enum):
    """How a remember command referred to its target message."""

    URL = "url"
    ID = "id"
    REPLY = "reply"


@dataclass(frozen=True)
class MessageReference:
    """A resolved reference to a chat message."""

    message_id: str
    source: ReferenceSource
    guild_id: Optional[str] = None
    channel_id: Optional[str] = None


class PinOutcome(str, Enum):
    """Outcome of a pin or unpin request."""

    PINNED = "pinned"
    ALREADY_PINNED = "already_pinned"
    UNPINNED = "unpinned"
    NOT_PINNED = "not_pinned"
    NOT_FOUND = "not_found"
    INVALID_COMMAND = "invalid_command"
    FAILED = "failed"


@dataclass
class PinResult:
    """Result of a pin command, always carrying a human-readable message."""

    success: bool
    outcome: PinOutcome
    message: str
    entry: Optional[EmbeddingRecord] = None
