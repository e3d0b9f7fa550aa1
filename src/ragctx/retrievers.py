"""Source retrievers for memories, messages and document chunks.

Each retriever wraps the hybrid search collaborator for one source type and
converts its scored candidates into typed retrieved items carrying a recency
score and a token-cost estimate. Retrievers let collaborator errors
propagate; the engine maps them to empty results where it joins the
concurrent fan-out.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any, Protocol

from ragctx.models import (
    MS_PER_DAY,
    DocumentItem,
    ItemType,
    MemoryItem,
    MessageItem,
    SearchCandidate,
    utc_now_ms,
)

if TYPE_CHECKING:
    from ragctx.config import RagContextConfig
    from ragctx.models import AnyRetrievedItem, EnhancedQuery

logger = logging.getLogger(__name__)

DEFAULT_TOKENS_PER_CHAR = 0.25
DEFAULT_RECENCY_DECAY_DAYS = 30.0


class SourceSearch(Protocol):
    """Hybrid (semantic + keyword) search over one user's items of a source type."""

    async def hybrid_search(
        self,
        source_type: ItemType,
        user_id: str,
        query: str,
        limit: int,
        chat_id: str | None = None,
    ) -> list[SearchCandidate]: ...


def calculate_recency_score(
    timestamp_ms: int,
    now_ms: int | None = None,
    decay_days: float = DEFAULT_RECENCY_DECAY_DAYS,
) -> float:
    """Exponential recency decay: 1.0 for brand-new items, exp(-1) at decay_days."""
    if now_ms is None:
        now_ms = utc_now_ms()
    days_since_creation = (now_ms - timestamp_ms) / MS_PER_DAY
    return math.exp(-days_since_creation / decay_days)


def estimate_tokens(
    content: str,
    overhead: int = 0,
    tokens_per_char: float = DEFAULT_TOKENS_PER_CHAR,
) -> int:
    """Estimate prompt tokens for content plus its formatting wrapper."""
    return math.ceil(len(content) * tokens_per_char) + overhead


class SourceRetriever:
    """Base retriever: caps the request, then builds typed items."""

    item_type: ItemType

    def __init__(
        self,
        search: SourceSearch,
        limit: int,
        overhead_tokens: int,
        tokens_per_char: float = DEFAULT_TOKENS_PER_CHAR,
        recency_decay_days: float = DEFAULT_RECENCY_DECAY_DAYS,
    ):
        self.search = search
        self.limit = limit
        self.overhead_tokens = overhead_tokens
        self.tokens_per_char = tokens_per_char
        self.recency_decay_days = recency_decay_days

    async def retrieve(
        self,
        user_id: str,
        enhanced_query: EnhancedQuery,
        max_items: int,
        chat_id: str | None = None,
    ) -> list[AnyRetrievedItem]:
        """Fetch up to min(max_items, limit) candidates and convert them."""
        limit = min(max_items, self.limit)
        candidates = await self.search.hybrid_search(
            self.item_type,
            user_id,
            enhanced_query.semantic_query,
            limit,
            chat_id=self._chat_filter(chat_id),
        )
        now_ms = utc_now_ms()
        items = [self._build_item(c, now_ms) for c in candidates]
        logger.debug(f"[RETRIEVAL] {self.item_type.value}: {len(items)} candidates (limit={limit})")
        return items

    def _chat_filter(self, chat_id: str | None) -> str | None:
        return None

    def _common_fields(self, candidate: SearchCandidate, now_ms: int) -> dict[str, Any]:
        return {
            "id": candidate.id,
            "content": candidate.content,
            "score": candidate.score,
            "timestamp_ms": candidate.created_at_ms,
            "recency_score": calculate_recency_score(
                candidate.created_at_ms, now_ms, self.recency_decay_days
            ),
            "estimated_tokens": estimate_tokens(
                candidate.content, self.overhead_tokens, self.tokens_per_char
            ),
        }

    def _build_item(self, candidate: SearchCandidate, now_ms: int) -> AnyRetrievedItem:
        raise NotImplementedError


class MemoryRetriever(SourceRetriever):
    item_type = ItemType.MEMORY

    def _build_item(self, candidate: SearchCandidate, now_ms: int) -> MemoryItem:
        meta = candidate.metadata
        return MemoryItem(
            **self._common_fields(candidate, now_ms),
            memory_type=meta.get("type") or "fact",
            importance=float(meta.get("importance") or 0.0),
            tags=list(meta.get("tags") or []),
            access_count=int(meta.get("access_count") or 0),
        )


class MessageRetriever(SourceRetriever):
    """Conversation messages, optionally restricted to one chat."""

    item_type = ItemType.MESSAGE

    def _chat_filter(self, chat_id: str | None) -> str | None:
        return chat_id

    def _build_item(self, candidate: SearchCandidate, now_ms: int) -> MessageItem:
        meta = candidate.metadata
        return MessageItem(
            **self._common_fields(candidate, now_ms),
            role=meta.get("role") or "user",
            chat_id=meta.get("chat_id"),
            token_count=int(meta.get("token_count") or 0),
        )


class DocumentRetriever(SourceRetriever):
    item_type = ItemType.DOCUMENT

    def _build_item(self, candidate: SearchCandidate, now_ms: int) -> DocumentItem:
        meta = candidate.metadata
        return DocumentItem(
            **self._common_fields(candidate, now_ms),
            document_title=meta.get("document_title") or "Untitled",
            document_type=meta.get("document_type"),
            chunk_index=int(meta.get("chunk_index") or 0),
            word_count=int(meta.get("word_count") or 0),
        )


def build_retrievers(
    search: SourceSearch,
    config: RagContextConfig,
) -> dict[ItemType, SourceRetriever]:
    """Create one retriever per source type using configured caps and overheads."""
    shared = {
        "tokens_per_char": config.tokens_per_char,
        "recency_decay_days": config.recency_decay_days,
    }
    return {
        ItemType.MEMORY: MemoryRetriever(
            search, config.memory_search_limit, config.memory_overhead_tokens, **shared
        ),
        ItemType.MESSAGE: MessageRetriever(
            search, config.message_search_limit, config.message_overhead_tokens, **shared
        ),
        ItemType.DOCUMENT: DocumentRetriever(
            search, config.document_search_limit, config.document_overhead_tokens, **shared
        ),
    }
