"""
Pinned memories.

A pinned memory is a turn the user explicitly asked to keep with the
remember command. Pinned records are always eligible for retrieval and
are selected ahead of ranked candidates.

The command can point at a message in three ways, tried in this order:
    1. A Discord message URL: https://discord.com/channels/<guild>/<channel>/<message>
    2. A bare message id: remember 123456789012345678
    3. The message the command replies to (passed in by the caller)
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Optional, Sequence, Union

from ..domain.entities import (
    EmbeddingRecord,
    LogEntry,
    MessageReference,
    PinOutcome,
    PinResult,
    ReferenceSource,
    parse_timestamp,
)
from ..domain.ports import IVectorStore
from ..exceptions import StorageError
from ..logs.reader import find_log_files, read_all_log_entries

logger = logging.getLogger(__name__)

MESSAGE_URL_RE = re.compile(
    r"https://(?:ptb\.|canary\.)?discord(?:app)?\.com/channels/(\d+|@me)/(\d+)/(\d+)"
)
BARE_ID_RE = re.compile(r"^/?remember\s+(\d{17,20})$", re.IGNORECASE)

PROXIMITY_WINDOW_SECONDS = 5.0

INVALID_COMMAND_MESSAGE = (
    "Invalid /remember command. Use `/remember <message-url>`, "
    "`/remember <message-id>` or reply to a message with `/remember`."
)


def parse_message_reference(
    content: Optional[str],
    replied_message_id: Optional[str] = None,
) -> Optional[MessageReference]:
    """Resolve a remember command to a message reference, or None."""
    text = (content or "").strip()

    match = MESSAGE_URL_RE.search(text)
    if match:
        guild_id, channel_id, message_id = match.groups()
        return MessageReference(
            message_id=message_id,
            source=ReferenceSource.URL,
            guild_id=guild_id,
            channel_id=channel_id,
        )

    match = BARE_ID_RE.match(text)
    if match:
        return MessageReference(message_id=match.group(1), source=ReferenceSource.ID)

    if replied_message_id:
        return MessageReference(message_id=str(replied_message_id), source=ReferenceSource.REPLY)

    return None


def find_by_timestamp_proximity(
    records: Sequence[EmbeddingRecord],
    timestamp: str,
    window_seconds: float = PROXIMITY_WINDOW_SECONDS,
) -> Optional[EmbeddingRecord]:
    """Best-effort match of a log turn to a stored record by time alone.

    Used only when the exact (path, line) lookup misses, for example after a
    log file was rewritten. Picks the record closest in time within the
    window. Callers pass records from a single context.
    """
    try:
        target = parse_timestamp(timestamp)
    except ValueError:
        return None

    best: Optional[EmbeddingRecord] = None
    best_delta = window_seconds
    for record in records:
        try:
            delta = abs((parse_timestamp(record.timestamp) - target).total_seconds())
        except ValueError:
            continue
        if delta <= best_delta:
            best, best_delta = record, delta
    return best


class PinsManager:
    """Pins and unpins memories referenced by chat message id.

    Pin operations always return a PinResult with a human-readable message.
    Storage failures during a pin are reported as FAILED, not raised.
    """

    def __init__(self, store: IVectorStore, logs_root: Union[str, Path]):
        self.store = store
        self.logs_root = Path(logs_root)

    def parse_message_reference(
        self, content: Optional[str], replied_message_id: Optional[str] = None
    ) -> Optional[MessageReference]:
        return parse_message_reference(content, replied_message_id)

    # ============================================
    # Lookup
    # ============================================

    def find_message_in_logs(
        self, message_id: str, context_id: Optional[str] = None
    ) -> Optional[LogEntry]:
        """Find the logged turn whose metadata carries this messageId.

        Files that cannot be read or decoded are skipped with a warning.
        """
        for log_file in find_log_files(self.logs_root, context_id=context_id):
            try:
                entries = read_all_log_entries(log_file.path)
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Skipping unreadable log {log_file.path}: {e}")
                continue
            for entry in entries:
                if entry.message_id == str(message_id):
                    entry.context_id = log_file.context_id
                    return entry
        return None

    async def find_embedding_by_message_id(
        self, message_id: str, context_id: Optional[str] = None
    ) -> Optional[EmbeddingRecord]:
        """Map a message id to its stored record.

        Exact (path, line) first, then timestamp proximity within the
        turn's context.
        """
        entry = self.find_message_in_logs(message_id, context_id)
        if entry is None:
            logger.debug(f"Message {message_id} not found in logs")
            return None

        record = await self.store.get_by_path_and_line(entry.path, entry.line)
        if record is not None:
            return record

        search_context = context_id or entry.context_id
        if not search_context:
            return None

        candidates = await self.store.get_by_context_id(search_context)
        record = find_by_timestamp_proximity(candidates, entry.timestamp)
        if record is not None:
            logger.info(
                f"Message {message_id} matched record {record.id} by timestamp proximity"
            )
        return record

    # ============================================
    # Commands
    # ============================================

    async def _set_pinned(
        self, message_id: str, pinned: bool, context_id: Optional[str]
    ) -> PinResult:
        verb = "pin" if pinned else "unpin"
        try:
            record = await self.find_embedding_by_message_id(message_id, context_id)
            if record is None:
                return PinResult(
                    success=False,
                    outcome=PinOutcome.NOT_FOUND,
                    message=f"Message {message_id} not found in memory index.",
                )

            if record.pinned == pinned:
                outcome = PinOutcome.ALREADY_PINNED if pinned else PinOutcome.NOT_PINNED
                state = "already pinned" if pinned else "not pinned"
                return PinResult(
                    success=True,
                    outcome=outcome,
                    message=f"Message {message_id} is {state}.",
                    entry=record,
                )

            updated = await self.store.update_pinned(record.id, pinned)
            if not updated:
                return PinResult(
                    success=False,
                    outcome=PinOutcome.FAILED,
                    message=f"Failed to {verb} message {message_id}.",
                )

            refreshed = await self.store.get_by_id(record.id)
        except StorageError as e:
            logger.error(f"Failed to {verb} message {message_id}: {e}")
            return PinResult(
                success=False,
                outcome=PinOutcome.FAILED,
                message=f"Failed to {verb} message {message_id}: {e.message}",
            )
        except Exception as e:
            logger.exception(f"Unexpected error trying to {verb} message {message_id}: {e}")
            return PinResult(
                success=False,
                outcome=PinOutcome.FAILED,
                message=f"Failed to {verb} message {message_id}.",
            )

        logger.info(f"Message {message_id} {verb}ned (record {record.id})")
        return PinResult(
            success=True,
            outcome=PinOutcome.PINNED if pinned else PinOutcome.UNPINNED,
            message=f"Message {message_id} has been {verb}ned.",
            entry=refreshed,
        )

    async def pin_message(self, message_id: str, context_id: Optional[str] = None) -> PinResult:
        return await self._set_pinned(message_id, True, context_id)

    async def unpin_message(self, message_id: str, context_id: Optional[str] = None) -> PinResult:
        return await self._set_pinned(message_id, False, context_id)

    async def handle_remember_command(
        self,
        content: Optional[str],
        replied_message_id: Optional[str] = None,
        context_id: Optional[str] = None,
    ) -> PinResult:
        """Parse a remember command and pin the referenced message."""
        reference = parse_message_reference(content, replied_message_id)
        if reference is None:
            return PinResult(
                success=False,
                outcome=PinOutcome.INVALID_COMMAND,
                message=INVALID_COMMAND_MESSAGE,
            )
        return await self.pin_message(reference.message_id, context_id)

    async def get_pinned_memories(self) -> list[EmbeddingRecord]:
        return await self.store.get_pinned()

    async def is_pinned(self, message_id: str, context_id: Optional[str] = None) -> bool:
        record = await self.find_embedding_by_message_id(message_id, context_id)
        return bool(record and record.pinned)
