"""
Memory injection.

Renders ranked memories as a compact JSON block, prefixed by a marker line,
for inclusion in the model's context window:

    INJECTED_CONTEXT_RELEVANT_MEMORIES
    {"budget_tokens_est":123,"memories":[{"path":"...","line":42,"excerpt":"...","truncated":false}]}

Token counts are estimated from characters (4 chars per token by default).
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any, Optional, Protocol, Sequence

from ..config import InjectionConfig
from ..logs.reader import read_log_entry

logger = logging.getLogger(__name__)

TRUNCATION_SUFFIX = "..."


class MemoryLocation(Protocol):
    """Anything that points at a log line (RetrievalResult, EmbeddingRecord)."""

    @property
    def path(self) -> str: ...

    @property
    def line(self) -> int: ...


class MemoryInjector:
    """Formats retrieved memories under a token budget.

    Memories are taken in ranked order until the next one would exceed the
    total budget, counting every memory at its per-memory cap.
    """

    def __init__(self, config: Optional[InjectionConfig] = None):
        self.config = config or InjectionConfig()

    def estimate_tokens(self, text: Optional[str]) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / self.config.chars_per_token)

    def truncate_to_budget(self, text: Optional[str], max_tokens: int) -> tuple[str, bool]:
        """Cut text to max_tokens, ending with "..." when shortened."""
        if not text:
            return "", False

        max_chars = max_tokens * self.config.chars_per_token
        if len(text) <= max_chars:
            return text, False

        keep = max(max_chars - len(TRUNCATION_SUFFIX), 0)
        return text[:keep] + TRUNCATION_SUFFIX, True

    def load_content(self, memory: MemoryLocation) -> str:
        """Read a memory's text back from its log line ("" if gone)."""
        entry = read_log_entry(memory.path, memory.line)
        if entry is None:
            logger.warning(f"Log line {memory.path}:{memory.line} no longer readable")
            return ""
        return entry.content

    def format_memory(
        self, memory: MemoryLocation, content: Optional[str] = None
    ) -> dict[str, Any]:
        if content is None:
            content = self.load_content(memory)
        excerpt, truncated = self.truncate_to_budget(content, self.config.max_tokens_per_memory)
        return {
            "path": memory.path,
            "line": memory.line,
            "excerpt": excerpt,
            "truncated": truncated,
        }

    def estimate_injection_tokens(self, formatted: Sequence[dict[str, Any]]) -> int:
        tokens = self.config.base_overhead_tokens
        for memory in formatted:
            tokens += self.config.per_memory_overhead_tokens + self.estimate_tokens(
                memory["excerpt"]
            )
        return tokens

    def select_within_budget(self, memories: Sequence[MemoryLocation]) -> list[MemoryLocation]:
        used = self.config.base_overhead_tokens
        cost = self.config.per_memory_overhead_tokens + self.config.max_tokens_per_memory
        selected = []
        for memory in memories:
            if used + cost > self.config.total_token_budget:
                break
            selected.append(memory)
            used += cost
        return selected

    def create_injection_payload(
        self,
        memories: Sequence[MemoryLocation],
        contents: Optional[dict[tuple[str, int], str]] = None,
    ) -> dict[str, Any]:
        """Build the injection payload.

        Args:
            memories: Ranked memories, best first
            contents: Optional text per (path, line); missing entries are read from the logs
        """
        contents = contents or {}
        selected = self.select_within_budget(memories)
        formatted = [
            self.format_memory(memory, contents.get((memory.path, memory.line)))
            for memory in selected
        ]
        if len(selected) < len(memories):
            logger.debug(
                f"Token budget kept {len(selected)} of {len(memories)} memories"
            )
        return {
            "budget_tokens_est": self.estimate_injection_tokens(formatted),
            "memories": formatted,
        }

    def format_injection(
        self,
        memories: Sequence[MemoryLocation],
        contents: Optional[dict[tuple[str, int], str]] = None,
    ) -> str:
        payload = self.create_injection_payload(memories, contents)
        body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
        return f"{self.config.prefix}\n{body}"
