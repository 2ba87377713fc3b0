"""
Conversation log reader.

Log files live at ``<logs_root>/logs/<surface>/<context_id>/<window>_<seq>.md``
and hold one turn per line:

    - **2025-01-15T10:30:00.000Z** [user] Hello there (messageId="1234")

The trailing parenthesized ``key=value`` block is optional. Values are JSON
literals or bare tokens. Lines that do not match the grammar (headers, blank
lines, hand edits) are skipped.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Optional, Union

from ..domain.entities import LogEntry, LogFile

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

LOGS_DIRNAME = "logs"

_LINE_RE = re.compile(r"^-\s+\*\*([^*]+)\*\*\s+\[([^\]]+)\]\s+(.+)$")

_META_VALUE = r'"(?:[^"\\]|\\.)*"|[\w\-.]+'
_META_PAIR_RE = re.compile(rf"(\w+)=({_META_VALUE})")
_META_BLOCK_RE = re.compile(
    rf"\s+\((\w+=(?:{_META_VALUE})(?:\s+\w+=(?:{_META_VALUE}))*)\)$"
)


# ============================================
# Line Parsing
# ============================================


def parse_metadata(block: str) -> dict[str, Any]:
    """Parse the inside of a metadata block into a dict.

    Quoted strings, numbers and booleans are decoded as JSON. Anything else
    is kept as the raw token.
    """
    metadata: dict[str, Any] = {}
    for key, raw in _META_PAIR_RE.findall(block):
        try:
            metadata[key] = json.loads(raw)
        except ValueError:
            metadata[key] = raw
    return metadata


def split_metadata(text: str) -> tuple[str, dict[str, Any]]:
    """Split a turn's text into (content, metadata)."""
    match = _META_BLOCK_RE.search(text)
    if not match:
        return text, {}
    return text[: match.start()], parse_metadata(match.group(1))


def unescape_content(content: str) -> str:
    return content.replace("\\n", "\n")


def parse_log_line(
    text: str,
    path: str = "",
    line: int = 0,
    context_id: Optional[str] = None,
    surface: Optional[str] = None,
) -> Optional[LogEntry]:
    """Parse one log line. Returns None if it is not a turn."""
    if not text:
        return None

    match = _LINE_RE.match(text.rstrip("\r\n"))
    if not match:
        return None

    timestamp, role, rest = match.groups()
    content, metadata = split_metadata(rest)

    return LogEntry(
        path=path,
        line=line,
        timestamp=timestamp.strip(),
        role=role.strip(),
        content=unescape_content(content),
        context_id=context_id,
        surface=surface,
        metadata=metadata,
    )


def location_from_path(path: PathLike) -> tuple[Optional[str], Optional[str]]:
    """Derive (surface, context_id) from a log file path.

    Returns (None, None) if the file is not under a ``logs/<surface>/<context>``
    directory.
    """
    p = Path(path)
    if len(p.parts) >= 4 and p.parent.parent.parent.name == LOGS_DIRNAME:
        return p.parent.parent.name, p.parent.name
    return None, None


# ============================================
# File Reading
# ============================================


def read_all_log_entries(path: PathLike) -> list[LogEntry]:
    """Parse every turn in a log file, with one-based line numbers.

    A missing file yields an empty list. Other I/O errors propagate.
    """
    p = Path(path)
    if not p.is_file():
        return []

    surface, context_id = location_from_path(p)
    entries = []
    with p.open("r", encoding="utf-8", newline="\n") as f:
        for number, raw in enumerate(f, start=1):
            entry = parse_log_line(
                raw,
                path=str(p),
                line=number,
                context_id=context_id,
                surface=surface,
            )
            if entry is not None:
                entries.append(entry)

    logger.debug(f"Parsed {len(entries)} entries from {p}")
    return entries


def read_log_entry(path: PathLike, line: int) -> Optional[LogEntry]:
    """Read the turn at a one-based line number, or None."""
    p = Path(path)
    if line < 1 or not p.is_file():
        return None

    surface, context_id = location_from_path(p)
    with p.open("r", encoding="utf-8", newline="\n") as f:
        for number, raw in enumerate(f, start=1):
            if number == line:
                return parse_log_line(
                    raw,
                    path=str(p),
                    line=number,
                    context_id=context_id,
                    surface=surface,
                )
    return None


def find_log_files(logs_root: PathLike, context_id: Optional[str] = None) -> list[LogFile]:
    """Walk ``<logs_root>/logs/<surface>/<context_id>/*.md`` in sorted order.

    Only the directory structure is consulted. Pass context_id to restrict
    the walk to one conversation.
    """
    logs_dir = Path(logs_root) / LOGS_DIRNAME
    if not logs_dir.is_dir():
        return []

    files = []
    for surface_dir in sorted(d for d in logs_dir.iterdir() if d.is_dir()):
        for context_dir in sorted(d for d in surface_dir.iterdir() if d.is_dir()):
            if context_id is not None and context_dir.name != context_id:
                continue
            for file_path in sorted(context_dir.glob("*.md")):
                if file_path.is_file():
                    files.append(
                        LogFile(
                            path=str(file_path),
                            surface=surface_dir.name,
                            context_id=context_dir.name,
                        )
                    )
    return files
