"""Query enhancement: keyword extraction and lexical expansion."""

import re

from ragctx.models import EnhancedQuery

MAX_KEYWORDS = 10
SEMANTIC_EXPANSION_TERMS = 5

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to",
    "for", "of", "with", "by", "is", "are", "was", "were", "be", "been",
    "being", "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "must", "can", "this", "that", "these", "those",
})

_PUNCTUATION_RE = re.compile(r"[^\w\s]")


def extract_keywords(query: str, limit: int = MAX_KEYWORDS) -> list[str]:
    """Extract significant keywords from a query.

    Longer words tend to be more topic-specific, so unique keywords are
    ordered longest first (ties keep their original order).
    """
    words = _PUNCTUATION_RE.sub(" ", query.lower()).split()
    unique = dict.fromkeys(w for w in words if len(w) > 2 and w not in STOP_WORDS)
    return sorted(unique, key=len, reverse=True)[:limit]


def expand_semantic_query(original_query: str, keywords: list[str]) -> str:
    """Append the top keywords to the query to widen fused search recall."""
    return " ".join([original_query, *keywords[:SEMANTIC_EXPANSION_TERMS]])


def enhance_query(query: str) -> EnhancedQuery:
    keywords = extract_keywords(query)
    return EnhancedQuery(
        original_query=query,
        keywords=keywords,
        semantic_query=expand_semantic_query(query, keywords),
    )
