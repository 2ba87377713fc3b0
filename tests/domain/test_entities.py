"""Tests for domain entities."""

from datetime import datetime, timezone

import pytest

from mnemo.domain.entities import (
    EmbeddingRecord,
    JobStatus,
    LogEntry,
    ReconciliationReport,
    Role,
    format_timestamp,
    parse_timestamp,
)


class TestTimestamps:
    """Tests for timestamp helpers."""

    def test_parse_z_suffix(self):
        """The Z form parses to an aware UTC datetime."""
        parsed = parse_timestamp("2025-01-15T10:30:00.123Z")
        assert parsed == datetime(2025, 1, 15, 10, 30, 0, 123000, tzinfo=timezone.utc)

    def test_naive_assumed_utc(self):
        """Naive inputs are treated as UTC."""
        assert parse_timestamp("2025-01-15T10:30:00").tzinfo == timezone.utc

    def test_format_milliseconds(self):
        """Formatting keeps millisecond precision."""
        value = datetime(2025, 1, 15, 10, 30, 0, 123456, tzinfo=timezone.utc)
        assert format_timestamp(value) == "2025-01-15T10:30:00.123Z"

    def test_garbage_raises(self):
        """Unparseable input raises ValueError."""
        with pytest.raises(ValueError):
            parse_timestamp("last tuesday")


class TestRole:
    """Tests for embeddable roles."""

    def test_embeddable(self):
        """Only user and agent turns are embedded."""
        assert Role.is_embeddable("user")
        assert Role.is_embeddable("agent")
        assert not Role.is_embeddable("tool")
        assert not Role.is_embeddable("system")


class TestEmbeddingRecord:
    """Tests for record construction."""

    def test_role_coerced_and_id_generated(self):
        """String roles become Role members and each record gets an id."""
        a = EmbeddingRecord([1.0, 2.0], "a.md", 1, "t", "agent", "c")
        b = EmbeddingRecord([1.0, 2.0], "a.md", 2, "t", "agent", "c")

        assert a.role is Role.AGENT
        assert a.id != b.id
        assert a.dimension == 2
        assert a.location == ("a.md", 1)

    def test_line_must_be_one_based(self):
        """Line 0 is rejected."""
        with pytest.raises(ValueError):
            EmbeddingRecord([1.0], "a.md", 0, "t", "user", "c")

    def test_tool_role_rejected(self):
        """Tool turns cannot become records."""
        with pytest.raises(ValueError):
            EmbeddingRecord([1.0], "a.md", 1, "t", "tool", "c")


class TestMisc:
    """Tests for small helpers."""

    def test_terminal_statuses(self):
        """ok and failed are terminal."""
        assert JobStatus.OK.is_terminal
        assert JobStatus.FAILED.is_terminal
        assert not JobStatus.PENDING.is_terminal
        assert not JobStatus.PROCESSING.is_terminal

    def test_log_entry_message_id(self):
        """message_id reads the messageId metadata as a string."""
        entry = LogEntry("a.md", 5, "t", "user", "hi", metadata={"messageId": 42})
        assert entry.message_id == "42"
        assert entry.text == "hi"
        assert LogEntry("a.md", 5, "t", "user", "hi").message_id is None

    def test_report_summary(self):
        """The summary lists every counter."""
        report = ReconciliationReport(files_scanned=2, entries_found=5, entries_missing=1)
        assert report.summary() == "files=2 found=5 missing=1 enqueued=0 errors=0"
        assert not report.has_errors
