"""Tests for pinned memories and the remember command."""

from unittest.mock import AsyncMock

import pytest

from mnemo.domain.entities import PinOutcome, ReferenceSource
from mnemo.exceptions import StorageError
from mnemo.memory.pins import (
    INVALID_COMMAND_MESSAGE,
    PinsManager,
    find_by_timestamp_proximity,
    parse_message_reference,
)

MESSAGE_ID = "1234567890123456789"
OTHER_ID = "9876543210987654321"

TURNS = [
    f'- **2025-01-15T10:00:00.000Z** [user] Remember my cat is named Miso (messageId="{MESSAGE_ID}")',
    f'- **2025-01-15T10:00:04.000Z** [agent] Noted! (messageId="{OTHER_ID}")',
]


@pytest.fixture
def pins(store, logs_root):
    return PinsManager(store, logs_root)


@pytest.fixture
def indexed_turn(store, write_log, make_record):
    """Log the turns and index the first one at its exact location."""

    async def _index():
        path = write_log(TURNS)
        return await store.insert(
            make_record(path=str(path), line=5, timestamp="2025-01-15T10:00:00.000Z")
        )

    return _index


# ============================================
# Reference Parsing
# ============================================


class TestParseMessageReference:
    """Tests for resolving the remember command target."""

    def test_message_url(self):
        """A Discord message link gives guild, channel and message."""
        ref = parse_message_reference(
            f"/remember https://discord.com/channels/111/222/{MESSAGE_ID}"
        )
        assert ref.message_id == MESSAGE_ID
        assert ref.source == ReferenceSource.URL
        assert ref.guild_id == "111"
        assert ref.channel_id == "222"

    def test_url_variants(self):
        """ptb, canary, discordapp and DM links are all accepted."""
        for url in (
            f"https://ptb.discord.com/channels/1/2/{MESSAGE_ID}",
            f"https://canary.discord.com/channels/1/2/{MESSAGE_ID}",
            f"https://discordapp.com/channels/1/2/{MESSAGE_ID}",
            f"https://discord.com/channels/@me/2/{MESSAGE_ID}",
        ):
            assert parse_message_reference(f"remember {url}").message_id == MESSAGE_ID

    def test_bare_id(self):
        """A 17 to 20 digit id after the command is accepted."""
        ref = parse_message_reference(f"/remember {MESSAGE_ID}")
        assert ref.message_id == MESSAGE_ID
        assert ref.source == ReferenceSource.ID

    def test_bare_id_too_short(self):
        """Short numbers are not message ids."""
        assert parse_message_reference("/remember 12345") is None

    def test_reply_fallback(self):
        """With no explicit target, the replied-to message is used."""
        ref = parse_message_reference("/remember", replied_message_id=OTHER_ID)
        assert ref.message_id == OTHER_ID
        assert ref.source == ReferenceSource.REPLY

    def test_explicit_target_beats_reply(self):
        """URL and id forms take precedence over the reply."""
        ref = parse_message_reference(f"/remember {MESSAGE_ID}", replied_message_id=OTHER_ID)
        assert ref.message_id == MESSAGE_ID

    def test_nothing_to_remember(self):
        """No target at all gives None."""
        assert parse_message_reference("/remember") is None
        assert parse_message_reference(None) is None


class TestTimestampProximity:
    """Tests for the fallback time match."""

    def test_closest_within_window(self, make_record):
        """The nearest record inside the window wins."""
        far = make_record(line=1, timestamp="2025-01-15T10:00:04.000Z")
        near = make_record(line=2, timestamp="2025-01-15T10:00:01.000Z")

        match = find_by_timestamp_proximity([far, near], "2025-01-15T10:00:00.000Z")

        assert match is near

    def test_window_is_inclusive(self, make_record):
        """A record exactly at the window edge still matches."""
        record = make_record(timestamp="2025-01-15T10:00:05.000Z")
        assert find_by_timestamp_proximity([record], "2025-01-15T10:00:00.000Z") is record

    def test_outside_window(self, make_record):
        """Records more than the window away do not match."""
        record = make_record(timestamp="2025-01-15T10:00:06.000Z")
        assert find_by_timestamp_proximity([record], "2025-01-15T10:00:00.000Z") is None

    def test_bad_timestamp(self, make_record):
        """An unparseable target matches nothing."""
        assert find_by_timestamp_proximity([make_record()], "yesterday") is None


# ============================================
# Pin Commands
# ============================================


class TestPinsManager:
    """Tests for pin, unpin and the remember command."""

    @pytest.mark.asyncio
    async def test_find_message_in_logs(self, pins, write_log):
        """The turn carrying the messageId is found with its line."""
        write_log(TURNS)

        entry = pins.find_message_in_logs(OTHER_ID)

        assert entry.line == 6
        assert entry.role == "agent"
        assert entry.context_id == "ctx-1"

    @pytest.mark.asyncio
    async def test_pin_then_already_pinned(self, pins, store, indexed_turn):
        """Pinning twice reports already pinned the second time."""
        record = await indexed_turn()

        first = await pins.pin_message(MESSAGE_ID)
        second = await pins.pin_message(MESSAGE_ID)

        assert first.success is True
        assert first.outcome == PinOutcome.PINNED
        assert first.message == f"Message {MESSAGE_ID} has been pinned."
        assert first.entry.pinned is True
        assert second.outcome == PinOutcome.ALREADY_PINNED
        assert second.success is True
        assert (await store.get_by_id(record.id)).pinned is True

    @pytest.mark.asyncio
    async def test_unpin(self, pins, indexed_turn):
        """Unpinning reports not pinned, then unpinned after a pin."""
        await indexed_turn()

        not_pinned = await pins.unpin_message(MESSAGE_ID)
        await pins.pin_message(MESSAGE_ID)
        unpinned = await pins.unpin_message(MESSAGE_ID)

        assert not_pinned.outcome == PinOutcome.NOT_PINNED
        assert unpinned.outcome == PinOutcome.UNPINNED
        assert unpinned.message == f"Message {MESSAGE_ID} has been unpinned."
        assert await pins.is_pinned(MESSAGE_ID) is False

    @pytest.mark.asyncio
    async def test_not_in_logs(self, pins, indexed_turn):
        """An unknown message id is not found."""
        await indexed_turn()

        result = await pins.pin_message("11111111111111111")

        assert result.success is False
        assert result.outcome == PinOutcome.NOT_FOUND
        assert result.message == "Message 11111111111111111 not found in memory index."

    @pytest.mark.asyncio
    async def test_logged_but_not_indexed(self, pins, write_log):
        """A logged turn with no embedding is not found."""
        write_log(TURNS)

        result = await pins.pin_message(MESSAGE_ID)

        assert result.outcome == PinOutcome.NOT_FOUND

    @pytest.mark.asyncio
    async def test_proximity_fallback(self, pins, store, write_log, make_record):
        """When the line moved, a record in the same context close in time is used."""
        write_log(TURNS)
        record = await store.insert(
            make_record(path="elsewhere.md", line=40, timestamp="2025-01-15T10:00:02.000Z")
        )

        result = await pins.pin_message(MESSAGE_ID)

        assert result.outcome == PinOutcome.PINNED
        assert result.entry.id == record.id

    @pytest.mark.asyncio
    async def test_proximity_stays_in_context(self, pins, store, write_log, make_record):
        """Records from other contexts are never matched by time."""
        write_log(TURNS)
        await store.insert(
            make_record(
                path="elsewhere.md",
                line=40,
                timestamp="2025-01-15T10:00:00.000Z",
                context_id="other",
            )
        )

        result = await pins.pin_message(MESSAGE_ID)

        assert result.outcome == PinOutcome.NOT_FOUND

    @pytest.mark.asyncio
    async def test_storage_error_reported(self, logs_root, write_log, make_record):
        """Store failures come back as FAILED, not exceptions."""
        path = write_log(TURNS)
        store = AsyncMock()
        store.get_by_path_and_line.return_value = make_record(path=str(path), line=5)
        store.update_pinned.side_effect = StorageError("database is locked")

        result = await PinsManager(store, logs_root).pin_message(MESSAGE_ID)

        assert result.success is False
        assert result.outcome == PinOutcome.FAILED
        assert "database is locked" in result.message

    @pytest.mark.asyncio
    async def test_undecodable_log_skipped(self, pins, logs_root, indexed_turn):
        """A log file that is not valid UTF-8 does not break the remember command."""
        record = await indexed_turn()
        broken = logs_root / "logs" / "discord" / "ctx-1" / "00000000T000000Z_0000.md"
        broken.write_bytes(b"\xff\xfe\n")

        assert pins.find_message_in_logs(MESSAGE_ID).line == 5
        result = await pins.handle_remember_command(f"/remember {MESSAGE_ID}")

        assert result.outcome == PinOutcome.PINNED
        assert result.entry.id == record.id

    @pytest.mark.asyncio
    async def test_unexpected_error_reported(self, logs_root, write_log, make_record):
        """Errors outside the storage hierarchy still come back as FAILED."""
        path = write_log(TURNS)
        store = AsyncMock()
        store.get_by_path_and_line.return_value = make_record(path=str(path), line=5)
        store.update_pinned.side_effect = RuntimeError("connection reset")

        result = await PinsManager(store, logs_root).handle_remember_command(
            f"/remember {MESSAGE_ID}"
        )

        assert result.success is False
        assert result.outcome == PinOutcome.FAILED
        assert result.message == f"Failed to pin message {MESSAGE_ID}."

    @pytest.mark.asyncio
    async def test_remember_command_by_id(self, pins, indexed_turn):
        """The remember command pins the referenced message."""
        await indexed_turn()

        result = await pins.handle_remember_command(f"/remember {MESSAGE_ID}")

        assert result.outcome == PinOutcome.PINNED
        assert [r.line for r in await pins.get_pinned_memories()] == [5]

    @pytest.mark.asyncio
    async def test_remember_command_by_reply(self, pins, indexed_turn):
        """A bare remember replying to a message pins that message."""
        await indexed_turn()

        result = await pins.handle_remember_command("/remember", replied_message_id=MESSAGE_ID)

        assert result.outcome == PinOutcome.PINNED

    @pytest.mark.asyncio
    async def test_invalid_command(self, pins):
        """No target gives the usage message."""
        result = await pins.handle_remember_command("/remember please")

        assert result.success is False
        assert result.outcome == PinOutcome.INVALID_COMMAND
        assert result.message == INVALID_COMMAND_MESSAGE
