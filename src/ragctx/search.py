"""Hybrid search helpers and an in-process search collaborator.

Hybrid search fuses two signals per candidate:
- Vector similarity (cosine) against an embedding of the query
- Keyword rank from a simple lexical match

Scores are combined with normalized weights (0.7 vector / 0.3 text by
default). InMemorySearchIndex implements the SourceSearch protocol on top of
these helpers for development, tests and small single-process deployments.
"""

from __future__ import annotations

import logging
import math
import re
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from ragctx.config import RagContextConfig
from ragctx.models import ItemType, SearchCandidate

logger = logging.getLogger(__name__)

MAX_SEARCH_LIMIT = 50

EmbedFn = Callable[[str], Awaitable[list[float]]]


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity between two vectors of equal dimension."""
    if len(a) != len(b):
        raise ValueError(f"Vectors must have same dimensions ({len(a)} != {len(b)})")

    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def fuse_hybrid_results(
    vector_hits: list[SearchCandidate],
    text_hits: list[SearchCandidate],
    limit: int,
    vector_weight: float = 0.7,
    text_weight: float = 0.3,
) -> list[SearchCandidate]:
    """Combine vector and keyword results into one ranked list.

    Vector hits contribute score * vector_weight. Text hits are scored by
    rank (1 - i/n, normalized by the best rank score) * text_weight. An item
    found by both gets the sum. Weights are normalized to sum to 1.

    Args:
        vector_hits: Candidates scored by cosine similarity
        text_hits: Candidates ordered by keyword relevance (best first)
        limit: Maximum results to return
        vector_weight: Weight for vector similarity
        text_weight: Weight for keyword rank

    Returns:
        Candidates with fused scores, best first
    """
    total_weight = vector_weight + text_weight
    if total_weight <= 0:
        vector_weight, text_weight = 0.7, 0.3
    else:
        vector_weight, text_weight = vector_weight / total_weight, text_weight / total_weight

    combined: dict[str, float] = defaultdict(float)
    candidates: dict[str, SearchCandidate] = {}

    for hit in vector_hits:
        combined[hit.id] += hit.score * vector_weight
        candidates[hit.id] = hit

    n = len(text_hits)
    if n:
        max_rank_score = max(1 - i / n for i in range(n))
        for i, hit in enumerate(text_hits):
            text_score = (1 - i / n) / (max_rank_score or 1)
            combined[hit.id] += text_score * text_weight
            candidates[hit.id] = hit

    ranked = sorted(combined.items(), key=lambda kv: kv[1], reverse=True)[:limit]
    return [candidates[item_id].model_copy(update={"score": score}) for item_id, score in ranked]


_WORD_RE = re.compile(r"\w+")


def _terms(text: str) -> set[str]:
    return set(_WORD_RE.findall(text.lower()))


@dataclass
class IndexedRecord:
    """A stored candidate with its owner, optional chat and embedding."""

    user_id: str
    candidate: SearchCandidate
    embedding: list[float] | None = None
    chat_id: str | None = None


class InMemorySearchIndex:
    """In-process hybrid search over memories, messages and document chunks.

    Records are partitioned by source type and filtered by owner. When an
    embed function is supplied, queries are embedded and matched by cosine
    similarity against stored embeddings; keyword matching always runs.

    Example:
        index = InMemorySearchIndex(embed=embedder.embed)
        index.add(ItemType.MEMORY, "user-1", candidate, embedding=vector)
        hits = await index.hybrid_search(ItemType.MEMORY, "user-1", "query", 10)
    """

    def __init__(
        self,
        embed: EmbedFn | None = None,
        vector_weight: float = 0.7,
    ):
        self.embed = embed
        self.vector_weight = vector_weight
        self._records: dict[ItemType, list[IndexedRecord]] = {t: [] for t in ItemType}

    @classmethod
    def from_config(
        cls,
        config: RagContextConfig,
        embed: EmbedFn | None = None,
    ) -> "InMemorySearchIndex":
        return cls(embed=embed, vector_weight=config.hybrid_vector_weight)

    def add(
        self,
        source_type: ItemType,
        user_id: str,
        candidate: SearchCandidate,
        embedding: list[float] | None = None,
        chat_id: str | None = None,
    ) -> None:
        """Index a candidate for a user (chat_id only matters for messages)."""
        if chat_id is None and source_type == ItemType.MESSAGE:
            chat_id = candidate.metadata.get("chat_id")
        self._records[source_type].append(
            IndexedRecord(user_id=user_id, candidate=candidate, embedding=embedding, chat_id=chat_id)
        )

    def count(self, source_type: ItemType) -> int:
        return len(self._records[source_type])

    async def hybrid_search(
        self,
        source_type: ItemType,
        user_id: str,
        query: str,
        limit: int,
        chat_id: str | None = None,
        role: str | None = None,
    ) -> list[SearchCandidate]:
        """Search one source type for a user's best matching items.

        Args:
            source_type: Which source to search
            user_id: Owner filter
            query: Search string (embedded when an embed function is set)
            limit: Maximum results (capped at 50)
            chat_id: Restrict messages to one chat
            role: Restrict messages to one role (user/assistant/system)

        Returns:
            Candidates with fused scores, best first
        """
        limit = min(limit, MAX_SEARCH_LIMIT)
        if limit <= 0:
            return []

        records = [
            r for r in self._records[source_type]
            if r.user_id == user_id
            and (chat_id is None or r.chat_id == chat_id)
            and (role is None or r.candidate.metadata.get("role") == role)
        ]

        if not records:
            return []

        vector_hits: list[SearchCandidate] = []
        if self.embed is not None:
            query_embedding = await self.embed(query)
            scored = [
                (cosine_similarity(query_embedding, r.embedding), r.candidate)
                for r in records
                if r.embedding is not None
            ]
            scored.sort(key=lambda x: x[0], reverse=True)
            vector_hits = [
                c.model_copy(update={"score": max(0.0, s)}) for s, c in scored[: limit * 2]
            ]

        text_hits = self._keyword_search(records, query, limit * 2)

        if self.embed is None:
            fused = fuse_hybrid_results([], text_hits, limit, vector_weight=0.0, text_weight=1.0)
        else:
            fused = fuse_hybrid_results(
                vector_hits,
                text_hits,
                limit,
                vector_weight=self.vector_weight,
                text_weight=1.0 - self.vector_weight,
            )

        logger.debug(
            f"[SEARCH] {source_type.value}: {len(vector_hits)} vector + "
            f"{len(text_hits)} text -> {len(fused)} fused"
        )
        return fused

    @staticmethod
    def _keyword_search(
        records: list[IndexedRecord],
        query: str,
        limit: int,
    ) -> list[SearchCandidate]:
        """Order records by how many query terms they contain."""
        query_terms = _terms(query)
        if not query_terms:
            return []

        matches = []
        for record in records:
            overlap = len(query_terms & _terms(record.candidate.content))
            if overlap:
                matches.append((overlap, record.candidate))

        matches.sort(key=lambda x: x[0], reverse=True)
        return [c for _, c in matches[:limit]]
