"""
Memory retrieval with MMR (Maximal Marginal Relevance) ranking.

Pinned memories are selected first, best similarity first. Remaining slots
are filled greedily from a similarity-ranked candidate pool, rescoring every
candidate against the growing selection on each step:

    score(c) = w_sim * sim(c, q) + w_rec * recency(c) - w_div * max sim(c, s) for s in S
    recency(c) = exp(-age_days(c) / recency_decay_days)

The diversity term is 0 while nothing is selected.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Sequence

from ..config import RetrievalConfig
from ..domain.entities import EmbeddingRecord, RetrievalResult, parse_timestamp
from ..domain.ports import IVectorStore
from .vector_store import cosine_similarity

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0


@dataclass
class RetrievalDetails:
    """Selected results plus every candidate considered, for debugging."""

    selected: list[RetrievalResult]
    all_candidates: list[RetrievalResult] = field(default_factory=list)
    pinned_count: int = 0
    config: Optional[RetrievalConfig] = None


class MemoryRetriever:
    """Ranks stored memories against a query embedding.

    Usage:
        retriever = MemoryRetriever(store)
        results = await retriever.retrieve(query_vector, limit=5, exclude_context_id="chan-1")
    """

    def __init__(self, store: IVectorStore, config: Optional[RetrievalConfig] = None):
        self.store = store
        self.config = config or RetrievalConfig()

    # ============================================
    # Scoring
    # ============================================

    def calculate_recency(
        self, timestamp: str, reference_time: Optional[datetime] = None
    ) -> float:
        """exp(-age_days / decay), in (0, 1].

        Timestamps after the reference time count as age 0. Unparseable
        timestamps score 0.
        """
        reference_time = reference_time or datetime.now(timezone.utc)
        try:
            memory_time = parse_timestamp(timestamp)
        except ValueError:
            logger.debug(f"Unparseable memory timestamp {timestamp!r}, recency 0")
            return 0.0

        age_days = (parse_timestamp(reference_time) - memory_time).total_seconds() / SECONDS_PER_DAY
        age_days = max(age_days, 0.0)
        return math.exp(-age_days / self.config.recency_decay_days)

    def calculate_diversity_penalty(
        self, candidate: EmbeddingRecord, selected: Sequence[RetrievalResult]
    ) -> float:
        """Highest similarity between the candidate and anything selected."""
        penalty = 0.0
        for chosen in selected:
            penalty = max(penalty, cosine_similarity(candidate.embedding, chosen.record.embedding))
        return penalty

    def calculate_score(self, similarity: float, recency: float, diversity_penalty: float) -> float:
        return (
            self.config.similarity_weight * similarity
            + self.config.recency_weight * recency
            - self.config.diversity_weight * diversity_penalty
        )

    def _score_against(
        self,
        record: EmbeddingRecord,
        similarity: float,
        recency: float,
        selected: Sequence[RetrievalResult],
        is_pinned: bool,
    ) -> RetrievalResult:
        penalty = self.calculate_diversity_penalty(record, selected)
        return RetrievalResult(
            record=record,
            similarity=similarity,
            recency=recency,
            diversity_penalty=penalty,
            score=self.calculate_score(similarity, recency, penalty),
            is_pinned=is_pinned,
        )

    # ============================================
    # Retrieval
    # ============================================

    async def retrieve(
        self,
        query_embedding: list[float],
        limit: Optional[int] = None,
        exclude_context_id: Optional[str] = None,
        reference_time: Optional[datetime] = None,
    ) -> list[RetrievalResult]:
        """Return up to ``limit`` memories, pinned first, then by MMR score.

        Args:
            query_embedding: Embedding of the incoming query
            limit: Maximum results (defaults to config.max_memories)
            exclude_context_id: Drop unpinned candidates from this conversation
            reference_time: "Now" for recency (defaults to the current time)

        Returns:
            Ranked results. Fewer than ``limit`` when the store is sparse.
        """
        if limit is None:
            limit = self.config.max_memories
        if limit <= 0:
            return []
        reference_time = reference_time or datetime.now(timezone.utc)

        pinned = [
            (record, cosine_similarity(query_embedding, record.embedding))
            for record in await self.store.get_pinned()
        ]
        pinned.sort(key=lambda item: item[1], reverse=True)

        selected: list[RetrievalResult] = []
        for record, similarity in pinned:
            if len(selected) >= limit:
                break
            recency = self.calculate_recency(record.timestamp, reference_time)
            selected.append(
                self._score_against(record, similarity, recency, selected, is_pinned=True)
            )

        if len(selected) >= limit:
            logger.debug(f"Retrieval filled by {len(selected)} pinned memories")
            return selected

        pool_size = max(limit * self.config.oversample_factor, self.config.min_candidate_pool)
        matches = await self.store.search_similar(
            query_embedding,
            limit=pool_size,
            exclude_context_id=exclude_context_id,
        )
        used_ids = {result.id for result in selected}
        candidates = [
            (
                match.record,
                match.similarity,
                self.calculate_recency(match.record.timestamp, reference_time),
            )
            for match in matches
            if not match.record.pinned and match.record.id not in used_ids
        ]

        while len(selected) < limit and candidates:
            best_index = 0
            best: Optional[RetrievalResult] = None
            for index, (record, similarity, recency) in enumerate(candidates):
                scored = self._score_against(record, similarity, recency, selected, is_pinned=False)
                if best is None or scored.score > best.score:
                    best, best_index = scored, index
            selected.append(best)
            candidates.pop(best_index)

        logger.debug(
            f"Retrieved {len(selected)} memories "
            f"({sum(1 for r in selected if r.is_pinned)} pinned, pool {len(matches)})"
        )
        return selected

    async def retrieve_with_details(
        self,
        query_embedding: list[float],
        limit: Optional[int] = None,
        exclude_context_id: Optional[str] = None,
        reference_time: Optional[datetime] = None,
    ) -> RetrievalDetails:
        """Like retrieve(), plus similarity and recency for every stored memory."""
        reference_time = reference_time or datetime.now(timezone.utc)

        pinned = await self.store.get_pinned()
        records = await self.store.get_all()
        if exclude_context_id is not None:
            records = [r for r in records if r.context_id != exclude_context_id]

        analyzed = []
        for record in records:
            similarity = cosine_similarity(query_embedding, record.embedding)
            recency = self.calculate_recency(record.timestamp, reference_time)
            analyzed.append(
                RetrievalResult(
                    record=record,
                    similarity=similarity,
                    recency=recency,
                    diversity_penalty=0.0,
                    score=self.calculate_score(similarity, recency, 0.0),
                    is_pinned=record.pinned,
                )
            )
        analyzed.sort(key=lambda r: r.similarity, reverse=True)

        selected = await self.retrieve(
            query_embedding,
            limit=limit,
            exclude_context_id=exclude_context_id,
            reference_time=reference_time,
        )
        return RetrievalDetails(
            selected=selected,
            all_candidates=analyzed,
            pinned_count=len(pinned),
            config=self.config,
        )
