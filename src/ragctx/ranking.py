"""Ranking, stratification, deduplication, diversity and budget assembly.

These are the post-retrieval stages of the context pipeline:
1. Relevance ranking - threshold filter, then blended score
   (base + recency + memory importance + keyword matches)
2. Recency stratification - proportional recent/medium/older representation
3. Diversity selection - per-source quotas (40/40/20 by default)
4. Deduplication - signature match plus word-overlap similarity
5. Token-budgeted assembly - strict prefix-greedy selection

All stages are pure functions over lists of retrieved items; none of them
mutate their input.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

from ragctx.models import (
    MS_PER_DAY,
    AssembledContext,
    ContextItem,
    ContextSummary,
    ItemType,
    TimeRange,
    utc_now_ms,
)

if TYPE_CHECKING:
    from ragctx.models import AnyRetrievedItem, EnhancedQuery

logger = logging.getLogger(__name__)

RECENCY_BOOST_FACTOR = 0.1
IMPORTANCE_BOOST_FACTOR = 0.2
KEYWORD_MATCH_BOOST = 0.1

RECENT_WINDOW_DAYS = 7
MEDIUM_WINDOW_DAYS = 30
RECENT_SHARE = 0.5
MEDIUM_SHARE = 0.3

SIGNATURE_MIN_WORD_LEN = 4
SIGNATURE_WORDS = 10
OVERLAP_MIN_CONTENT_LEN = 51
DUPLICATE_SIMILARITY_THRESHOLD = 0.8

MEMORY_QUOTA = 0.4
MESSAGE_QUOTA = 0.4


# =============================================================================
# Relevance Ranking
# =============================================================================


def count_keyword_matches(content: str, keywords: list[str]) -> int:
    """Count keywords that occur as substrings of the lowercased content."""
    content_lower = content.lower()
    return sum(1 for keyword in keywords if keyword.lower() in content_lower)


def rank_by_relevance(
    items: list[AnyRetrievedItem],
    enhanced_query: EnhancedQuery,
    min_score: float,
    recency_boost: float = RECENCY_BOOST_FACTOR,
    importance_boost: float = IMPORTANCE_BOOST_FACTOR,
    keyword_boost: float = KEYWORD_MATCH_BOOST,
) -> list[AnyRetrievedItem]:
    """Filter by base score, then re-score and sort by combined relevance.

    Returns copies whose score is the combined score, highest first.
    """
    ranked = []
    for item in items:
        if item.score < min_score:
            continue

        combined = item.score
        combined += item.recency_score * recency_boost
        combined += item.importance_boost() * importance_boost
        combined += count_keyword_matches(item.content, enhanced_query.keywords) * keyword_boost

        ranked.append(item.model_copy(update={"score": max(0.0, combined)}))

    ranked.sort(key=lambda x: x.score, reverse=True)
    logger.debug(f"[RETRIEVAL] Ranking: {len(items)} -> {len(ranked)} (min_score={min_score:.2f})")
    return ranked


# =============================================================================
# Recency Stratification
# =============================================================================


def stratify_by_recency(
    items: list[AnyRetrievedItem],
    now_ms: int | None = None,
) -> list[AnyRetrievedItem]:
    """Rebalance so no single age band dominates the ranked list.

    Up to half the slots go to items from the last 7 days, up to 30% to
    items 7-30 days old, and the remainder to older items. Each band keeps
    its existing order.
    """
    if now_ms is None:
        now_ms = utc_now_ms()
    recent_cutoff = now_ms - RECENT_WINDOW_DAYS * MS_PER_DAY
    medium_cutoff = now_ms - MEDIUM_WINDOW_DAYS * MS_PER_DAY

    recent = [i for i in items if i.timestamp_ms > recent_cutoff]
    medium = [i for i in items if medium_cutoff < i.timestamp_ms <= recent_cutoff]
    older = [i for i in items if i.timestamp_ms <= medium_cutoff]

    total = len(items)
    recent_take = min(len(recent), math.floor(total * RECENT_SHARE))
    medium_take = min(len(medium), math.floor(total * MEDIUM_SHARE))
    older_take = min(len(older), total - recent_take - medium_take)

    stratified = recent[:recent_take] + medium[:medium_take] + older[:older_take]
    logger.debug(
        f"[RETRIEVAL] Recency bands: recent={len(recent)}/{recent_take}, "
        f"medium={len(medium)}/{medium_take}, older={len(older)}/{older_take}"
    )
    return stratified


# =============================================================================
# Deduplication
# =============================================================================


def content_signature(content: str) -> str:
    """Signature from the first 10 (sorted) significant words of the content."""
    words = sorted(w for w in content.lower().split() if len(w) >= SIGNATURE_MIN_WORD_LEN)
    return "-".join(words[:SIGNATURE_WORDS])


def word_overlap(content_a: str, content_b: str) -> float:
    """Shared words relative to the smaller of the two word sets."""
    words_a = set(content_a.lower().split())
    words_b = set(content_b.lower().split())
    smaller = min(len(words_a), len(words_b))
    if smaller == 0:
        return 0.0
    return len(words_a & words_b) / smaller


def remove_duplicate_content(items: list[AnyRetrievedItem]) -> list[AnyRetrievedItem]:
    """Drop near-duplicate items, keeping the higher-scored one of each pair.

    An item is a duplicate if its signature was already seen, or if both it
    and an accepted item are longer than 50 characters and share more than
    80% of their words. When the newcomer scores strictly higher it takes
    the accepted item's place; otherwise it is dropped.
    """
    seen: set[str] = set()
    deduped: list[AnyRetrievedItem] = []

    for item in items:
        signature = content_signature(item.content)
        if signature in seen:
            continue

        is_duplicate = False
        if len(item.content) >= OVERLAP_MIN_CONTENT_LEN:
            for idx, existing in enumerate(deduped):
                if len(existing.content) < OVERLAP_MIN_CONTENT_LEN:
                    continue
                if word_overlap(item.content, existing.content) > DUPLICATE_SIMILARITY_THRESHOLD:
                    if item.score > existing.score:
                        deduped[idx] = item
                    is_duplicate = True
                    break

        if not is_duplicate:
            seen.add(signature)
            deduped.append(item)

    if len(deduped) < len(items):
        logger.debug(f"[RETRIEVAL] Dedup: {len(items)} -> {len(deduped)}")
    return deduped


# =============================================================================
# Diversity Selection
# =============================================================================


def ensure_diversity(
    items: list[AnyRetrievedItem],
    max_items: int,
    memory_quota: float = MEMORY_QUOTA,
    message_quota: float = MESSAGE_QUOTA,
) -> list[AnyRetrievedItem]:
    """Cap each source type at its share of max_items.

    Memories and messages get ceil(40%) each, messages never pushing the
    total past max_items; documents get what is left.
    A type with fewer candidates than its quota does not hand the unused
    slots to the other types, so the result can be shorter than max_items.
    """
    by_type: dict[ItemType, list[AnyRetrievedItem]] = {t: [] for t in ItemType}
    for item in items:
        by_type[ItemType(item.item_type)].append(item)

    memories = by_type[ItemType.MEMORY]
    messages = by_type[ItemType.MESSAGE]
    documents = by_type[ItemType.DOCUMENT]

    memory_count = min(len(memories), math.ceil(max_items * memory_quota))
    message_count = min(
        len(messages),
        math.ceil(max_items * message_quota),
        max_items - memory_count,
    )
    document_count = min(len(documents), max(0, max_items - memory_count - message_count))

    selected = memories[:memory_count] + messages[:message_count] + documents[:document_count]
    selected.sort(key=lambda x: x.score, reverse=True)
    return selected


# =============================================================================
# Token-Budgeted Assembly
# =============================================================================


def assemble_context(
    items: list[AnyRetrievedItem],
    token_budget: int,
) -> AssembledContext:
    """Select items in order until the next one would overflow the budget.

    Strictly prefix-greedy: assembly stops at the first item that does not
    fit, even if a smaller item further down would.
    """
    context_items: list[ContextItem] = []
    total_tokens = 0
    counts = {t: 0 for t in ItemType}

    for item in items:
        if total_tokens + item.estimated_tokens > token_budget:
            break

        context_items.append(
            ContextItem(
                content=item.content.strip(),
                type=item.item_type,
                score=item.score,
                timestamp=item.timestamp_ms,
                metadata=item.context_metadata(),
                tokens=item.estimated_tokens,
            )
        )
        total_tokens += item.estimated_tokens
        counts[ItemType(item.item_type)] += 1

    if not context_items:
        return AssembledContext.empty()

    timestamps = [c.timestamp for c in context_items]
    summary = ContextSummary(
        memories_count=counts[ItemType.MEMORY],
        messages_count=counts[ItemType.MESSAGE],
        documents_count=counts[ItemType.DOCUMENT],
        avg_relevance_score=sum(c.score for c in context_items) / len(context_items),
        time_range=TimeRange(start=min(timestamps), end=max(timestamps)),
    )
    return AssembledContext(
        items=tuple(context_items),
        total_tokens=total_tokens,
        summary=summary,
    )
