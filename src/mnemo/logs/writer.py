"""
Conversation log writer.

Each context window gets its own append-only markdown file. The header
claims the sequence number so two windows opened in the same second do
not collide.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

from ..domain.entities import format_timestamp
from .reader import LOGS_DIRNAME

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def format_window_timestamp(value: Optional[datetime] = None) -> str:
    """Compact UTC stamp used in log file names (YYYYMMDDTHHMMSSZ)."""
    value = (value or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return value.strftime("%Y%m%dT%H%M%SZ")


def resolve_log_path(
    logs_root: PathLike,
    surface: str,
    context_id: str,
    window_timestamp: str,
    seq: int,
) -> Path:
    return (
        Path(logs_root)
        / LOGS_DIRNAME
        / surface
        / context_id
        / f"{window_timestamp}_{seq:04d}.md"
    )


def next_sequence_number(logs_dir: PathLike, window_timestamp: str) -> int:
    """Return one past the highest sequence used for this window stamp."""
    directory = Path(logs_dir)
    if not directory.is_dir():
        return 0

    prefix = f"{window_timestamp}_"
    highest = -1
    for file_path in directory.glob(f"{prefix}*.md"):
        seq_part = file_path.stem[len(prefix):]
        if seq_part.isdigit():
            highest = max(highest, int(seq_part))
    return highest + 1


def format_log_line(
    role: str,
    content: str,
    timestamp: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> str:
    """Render one turn in the log grammar (without the trailing newline)."""
    timestamp = timestamp or format_timestamp()
    escaped = (content or "").replace("\r\n", "\n").replace("\r", "\n").replace("\n", "\\n")
    line = f"- **{timestamp}** [{role}] {escaped}"
    if metadata:
        pairs = " ".join(f"{key}={json.dumps(value)}" for key, value in metadata.items())
        line += f" ({pairs})"
    return line


class LogWriter:
    """Appends turns to a single context-window log file.

    Usage:
        writer = LogWriter(logs_root, "discord", "channel-1", "20250115T103000Z", 0)
        path, line = writer.append("user", "hello", metadata={"messageId": "123"})
    """

    def __init__(
        self,
        logs_root: PathLike,
        surface: str,
        context_id: str,
        window_timestamp: str,
        seq: int,
    ):
        if not surface:
            raise ValueError("surface is required")
        if not context_id:
            raise ValueError("context_id is required")

        self.surface = surface
        self.context_id = context_id
        self.window_timestamp = window_timestamp
        self.seq = seq
        self.path = resolve_log_path(logs_root, surface, context_id, window_timestamp, seq)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            self.path.write_text(
                f"# Context Window: {surface}/{context_id}\n"
                f"# Started: {window_timestamp}\n"
                f"# Sequence: {seq}\n\n",
                encoding="utf-8",
                newline="\n",
            )
            logger.debug(f"Created log file {self.path}")

    def count_lines(self) -> int:
        """Number of lines in the file, splitting on '\\n' only like the reader."""
        with self.path.open("r", encoding="utf-8", newline="\n") as f:
            return sum(1 for _ in f)

    def append(
        self,
        role: str,
        content: str,
        timestamp: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> tuple[str, int]:
        """Append a turn and return its (path, line) location.

        The line is counted from the file after writing, so turns appended
        by other writers to the same file are accounted for.
        """
        line = format_log_line(role, content, timestamp=timestamp, metadata=metadata)
        with self.path.open("a", encoding="utf-8", newline="\n") as f:
            f.write(line + "\n")
        return str(self.path), self.count_lines()


class ContextWindowResolver:
    """Tracks the open log file for each (surface, context_id) pair."""

    def __init__(self, logs_root: PathLike):
        if not logs_root:
            raise ValueError("logs_root is required")
        self.logs_root = Path(logs_root)
        self._active: dict[tuple[str, str], LogWriter] = {}

    def get_or_create(
        self,
        surface: str,
        context_id: str,
        now: Optional[datetime] = None,
    ) -> LogWriter:
        key = (surface, context_id)
        writer = self._active.get(key)
        if writer is not None:
            return writer

        window_timestamp = format_window_timestamp(now)
        logs_dir = self.logs_root / LOGS_DIRNAME / surface / context_id
        seq = next_sequence_number(logs_dir, window_timestamp)

        writer = LogWriter(self.logs_root, surface, context_id, window_timestamp, seq)
        self._active[key] = writer
        logger.info(f"Opened context window {surface}/{context_id} -> {writer.path.name}")
        return writer

    def end(self, surface: str, context_id: str) -> None:
        self._active.pop((surface, context_id), None)

    def reset(
        self,
        surface: str,
        context_id: str,
        now: Optional[datetime] = None,
    ) -> LogWriter:
        """Close the current window and start a new one."""
        self.end(surface, context_id)
        return self.get_or_create(surface, context_id, now=now)
