"""Append-only conversation logs: the source of truth for the memory index."""

from .reader import (
    find_log_files,
    parse_log_line,
    parse_metadata,
    read_all_log_entries,
    read_log_entry,
)
from .writer import ContextWindowResolver, LogWriter, format_log_line

__all__ = [
    "ContextWindowResolver",
    "LogWriter",
    "find_log_files",
    "format_log_line",
    "parse_log_line",
    "parse_metadata",
    "read_all_log_entries",
    "read_log_entry",
]
