"""Configuration for ragctx.

All settings can be overridden with RAGCTX_-prefixed environment variables
(e.g. RAGCTX_DEFAULT_TOKEN_BUDGET=2000) or a local .env file.

Environment Variables for the HTTP search collaborator:
    - RAGCTX_SEARCH_API_URL: Base URL of the hybrid search service
    - RAGCTX_SEARCH_API_KEY: Bearer token for the search service
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RagContextConfig(BaseSettings):
    """ragctx configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="RAGCTX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # =========================================================================
    # Request Defaults
    # =========================================================================
    default_token_budget: int = Field(
        default=4000,
        description="Token budget used when the caller gives none (or a non-positive one)",
    )
    min_relevance_score: float = Field(
        default=0.5,
        description="Candidates with a base score below this are dropped before ranking",
    )
    max_context_items: int = Field(
        default=50,
        description="Default cap on items kept by the diversity selector",
    )
    max_items_ceiling: int = Field(
        default=100,
        description="Hard ceiling applied to caller-supplied max_items",
    )

    # =========================================================================
    # Source Retrieval
    # =========================================================================
    memory_search_limit: int = Field(default=20, description="Max memory candidates requested")
    message_search_limit: int = Field(default=30, description="Max message candidates requested")
    document_search_limit: int = Field(default=15, description="Max document candidates requested")
    retrieval_timeout_seconds: float = Field(
        default=10.0,
        description="Single timeout for the concurrent source fan-out",
    )

    # Token estimation: ceil(len(content) * tokens_per_char) + overhead
    tokens_per_char: float = Field(default=0.25, description="Rough tokens per character")
    memory_overhead_tokens: int = Field(default=50, description="Formatting tokens per memory")
    message_overhead_tokens: int = Field(default=30, description="Formatting tokens per message")
    document_overhead_tokens: int = Field(default=40, description="Formatting tokens per chunk")

    # =========================================================================
    # Ranking
    # =========================================================================
    recency_decay_days: float = Field(
        default=30.0,
        description="Decay constant for recency_score = exp(-days / recency_decay_days)",
    )
    recency_boost_factor: float = Field(default=0.1, description="Weight of recency in ranking")
    importance_boost_factor: float = Field(
        default=0.2,
        description="Weight of stored importance for memories",
    )
    keyword_match_boost: float = Field(default=0.1, description="Bonus per matched keyword")

    # =========================================================================
    # Diversity
    # =========================================================================
    memory_quota: float = Field(default=0.4, description="Share of max_items for memories")
    message_quota: float = Field(default=0.4, description="Share of max_items for messages")

    # =========================================================================
    # Cache
    # =========================================================================
    cache_ttl_seconds: float = Field(default=300.0, description="Context cache TTL (5 minutes)")
    cache_max_entries: int = Field(
        default=1000,
        description="Entry count above which expired entries are swept on write",
    )

    # =========================================================================
    # Hybrid Search Collaborators
    # =========================================================================
    hybrid_vector_weight: float = Field(
        default=0.7,
        description="Weight for vector similarity in hybrid search (0-1). Text gets 1-vector_weight.",
    )
    search_api_url: str | None = Field(
        default=None,
        description="Hybrid search service URL (e.g., https://search.example.com)",
    )
    search_api_key: str | None = Field(default=None, description="Search service API key")
    search_timeout: float = Field(default=30.0, description="Search request timeout in seconds")
