"""Data models for ragctx."""

import time
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

MetadataValue = str | int | float | bool | None

MS_PER_DAY = 24 * 60 * 60 * 1000


def utc_now_ms() -> int:
    """Return the current time in epoch milliseconds."""
    return int(time.time() * 1000)


class ItemType(str, Enum):
    """Source type of a retrieved item."""

    MEMORY = "memory"
    MESSAGE = "message"
    DOCUMENT = "document"


class SearchCandidate(BaseModel):
    """Scored candidate returned by a hybrid search collaborator."""

    id: str
    content: str
    score: float = Field(description="Fused semantic + keyword relevance (0-1)")
    created_at_ms: int = Field(description="Creation time in epoch milliseconds")
    metadata: dict[str, Any] = Field(default_factory=dict)


class EnhancedQuery(BaseModel):
    """Query expanded into keywords and a search string."""

    model_config = ConfigDict(frozen=True)

    original_query: str
    keywords: list[str] = Field(default_factory=list)
    semantic_query: str


class RetrievedItem(BaseModel):
    """Fields shared by every retrieved item."""

    id: str
    content: str
    score: float
    recency_score: float = 0.0
    timestamp_ms: int
    estimated_tokens: int

    def importance_boost(self) -> float:
        """Type-specific importance contribution (0 unless overridden)."""
        return 0.0

    def context_metadata(self) -> dict[str, MetadataValue]:
        return {}


class MemoryItem(RetrievedItem):
    """A long-term semantic memory."""

    item_type: Literal["memory"] = "memory"
    memory_type: str = "fact"
    importance: float = Field(default=0.0, description="Stored importance (0-1)")
    tags: list[str] = Field(default_factory=list)
    access_count: int = 0

    def importance_boost(self) -> float:
        return self.importance

    def context_metadata(self) -> dict[str, MetadataValue]:
        return {
            "memoryType": self.memory_type,
            "importance": self.importance,
            "tags": ", ".join(self.tags),
            "accessCount": self.access_count,
        }


class MessageItem(RetrievedItem):
    """A prior conversation message."""

    item_type: Literal["message"] = "message"
    role: str = "user"
    chat_id: str | None = None
    token_count: int = 0

    def context_metadata(self) -> dict[str, MetadataValue]:
        return {
            "role": self.role,
            "chatId": self.chat_id,
            "tokenCount": self.token_count,
        }


class DocumentItem(RetrievedItem):
    """A chunk of document text."""

    item_type: Literal["document"] = "document"
    document_title: str = "Untitled"
    document_type: str | None = None
    chunk_index: int = 0
    word_count: int = 0

    def context_metadata(self) -> dict[str, MetadataValue]:
        return {
            "documentTitle": self.document_title,
            "documentType": self.document_type,
            "chunkIndex": self.chunk_index,
            "wordCount": self.word_count,
        }


AnyRetrievedItem = Annotated[
    MemoryItem | MessageItem | DocumentItem,
    Field(discriminator="item_type"),
]


class ContextItem(BaseModel):
    """Prompt-ready projection of a retrieved item."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    content: str
    type: ItemType
    score: float
    timestamp: int
    metadata: dict[str, MetadataValue] = Field(default_factory=dict)
    tokens: int


class TimeRange(BaseModel):
    """Oldest and newest timestamps (epoch ms) among included items."""

    model_config = ConfigDict(frozen=True)

    start: int
    end: int


class ContextSummary(BaseModel):
    """Aggregate statistics for an assembled context."""

    model_config = ConfigDict(frozen=True)

    memories_count: int = 0
    messages_count: int = 0
    documents_count: int = 0
    avg_relevance_score: float = 0.0
    time_range: TimeRange | None = None


class AssembledContext(BaseModel):
    """Token-budgeted context block produced by the engine."""

    model_config = ConfigDict(frozen=True)

    items: tuple[ContextItem, ...] = ()
    total_tokens: int = 0
    summary: ContextSummary = Field(default_factory=ContextSummary)

    @classmethod
    def empty(cls) -> "AssembledContext":
        return cls()


class RetrievalOptions(BaseModel):
    """Per-call options for context retrieval.

    Fields left as None fall back to the engine configuration.
    """

    chat_id: str | None = None
    token_budget: int | None = None
    include_memories: bool = True
    include_messages: bool = True
    include_documents: bool = True
    min_relevance_score: float | None = None
    max_items: int | None = None
    use_cache: bool = True


class CacheStats(BaseModel):
    """Context cache statistics."""

    total_entries: int
    valid_entries: int
    expired_entries: int
    hit_rate_estimate: float
    ttl_seconds: float
    hits: int = 0
    misses: int = 0
