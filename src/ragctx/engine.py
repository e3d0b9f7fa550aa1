"""Context retrieval and assembly engine.

Implements the retrieval pipeline:
1. Cache lookup - return a memoized context for identical requests
2. Query enhancement - keywords + lexically expanded search string
3. Concurrent retrieval - memories, messages and documents in parallel
4. Relevance ranking - threshold filter + blended score
5. Recency stratification - proportional age-band representation
6. Diversity selection - per-source quotas
7. Deduplication - near-duplicate removal
8. Token-budgeted assembly - prefix-greedy selection
9. Cache write-through

The engine degrades gracefully: a failing or slow source contributes no
items, and a total failure yields an empty context rather than an error.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from ragctx.cache import ContextCache, generate_cache_key
from ragctx.config import RagContextConfig
from ragctx.lib.async_utils import run_async
from ragctx.models import AssembledContext, CacheStats, ItemType, RetrievalOptions
from ragctx.query import enhance_query
from ragctx.ranking import (
    assemble_context,
    ensure_diversity,
    rank_by_relevance,
    remove_duplicate_content,
    stratify_by_recency,
)
from ragctx.retrievers import build_retrievers

if TYPE_CHECKING:
    from ragctx.models import AnyRetrievedItem, EnhancedQuery
    from ragctx.retrievers import SourceRetriever, SourceSearch

logger = logging.getLogger(__name__)


def _whole_number(value: Any) -> Any:
    """Truncate float options to int; non-finite floats become None."""
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    return value


class ContextEngine:
    """Gathers, ranks and assembles prompt context from three sources.

    Example:
        engine = ContextEngine(search=InMemorySearchIndex())
        context = await engine.retrieve_context("user-1", "typescript preferences")
    """

    def __init__(
        self,
        search: SourceSearch,
        config: RagContextConfig | None = None,
        cache: ContextCache | None = None,
        retrievers: dict[ItemType, SourceRetriever] | None = None,
    ):
        """Initialize the engine.

        Args:
            search: Hybrid search collaborator shared by all source retrievers
            config: Engine configuration. Defaults to RagContextConfig().
            cache: Context cache. Defaults to a cache built from config.
            retrievers: Per-source retrievers, mainly for tests. Defaults to
                retrievers built from search and config.
        """
        self.config = config or RagContextConfig()
        if cache is None:
            cache = ContextCache(
                ttl_seconds=self.config.cache_ttl_seconds,
                max_entries=self.config.cache_max_entries,
            )
        self.cache = cache
        if retrievers is None:
            retrievers = build_retrievers(search, self.config)
        self.retrievers = retrievers

    # =========================================================================
    # Options
    # =========================================================================

    def resolve_options(
        self,
        options: RetrievalOptions | None = None,
        **overrides: Any,
    ) -> RetrievalOptions:
        """Merge overrides into options and clamp them to usable values.

        Fractional budgets and item caps are truncated, non-positive or
        non-finite ones fall back to configured defaults, and max_items is
        capped at the configured ceiling. A missing or non-finite relevance
        threshold uses the configured default; otherwise it is clamped to
        [0, 1].

        Raises:
            ValidationError: If an option has an unusable type
        """
        base = options.model_dump() if options else {}
        merged = {**base, **overrides}
        for field in ("token_budget", "max_items"):
            merged[field] = _whole_number(merged.get(field))
        opts = RetrievalOptions.model_validate(merged)

        token_budget = opts.token_budget
        if token_budget is None or token_budget <= 0:
            token_budget = self.config.default_token_budget

        max_items = opts.max_items
        if max_items is None or max_items <= 0:
            max_items = self.config.max_context_items
        max_items = min(max_items, self.config.max_items_ceiling)

        min_score = opts.min_relevance_score
        if min_score is None or not math.isfinite(min_score):
            min_score = self.config.min_relevance_score
        min_score = min(max(min_score, 0.0), 1.0)

        return opts.model_copy(
            update={
                "token_budget": token_budget,
                "max_items": max_items,
                "min_relevance_score": min_score,
            }
        )

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def retrieve_context(
        self,
        user_id: str,
        query: str,
        options: RetrievalOptions | None = None,
        **overrides: Any,
    ) -> AssembledContext:
        """Retrieve and assemble token-budgeted context for a query.

        Args:
            user_id: Owner identifier, passed through to search as a filter
            query: Raw user query
            options: Retrieval options (budget, sources, threshold, caching)
            **overrides: Individual RetrievalOptions fields

        Returns:
            AssembledContext (empty if nothing relevant could be retrieved)
        """
        try:
            opts = self.resolve_options(options, **overrides)
        except ValidationError as e:
            logger.warning(f"[RETRIEVAL] Unusable retrieval options, returning empty context: {e}")
            return AssembledContext.empty()

        cache_key = generate_cache_key(
            user_id,
            query,
            opts.chat_id,
            opts.token_budget,
            opts.include_memories,
            opts.include_messages,
            opts.include_documents,
        )

        if opts.use_cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.info(f"[CACHE] Hit for query='{query[:50]}'")
                return cached

        pipeline_start = time.perf_counter()
        logger.info(f"[RETRIEVAL] Starting retrieve_context: query='{query[:50]}', user={user_id}")

        try:
            context, all_sources_failed = await self._run_pipeline(user_id, query, opts)
        except Exception as e:
            logger.exception(f"[RETRIEVAL] Pipeline failed, returning empty context: {e}")
            return AssembledContext.empty()

        if opts.use_cache and not all_sources_failed:
            self.cache.put(cache_key, context)
        elif all_sources_failed:
            logger.warning("[CACHE] Every enabled source failed, result not cached")

        pipeline_ms = (time.perf_counter() - pipeline_start) * 1000
        logger.info(
            f"[TIMING] PIPELINE TOTAL: {pipeline_ms:.0f}ms | {len(context.items)} items, "
            f"{context.total_tokens}/{opts.token_budget} tokens"
        )
        return context

    def retrieve_context_sync(
        self,
        user_id: str,
        query: str,
        options: RetrievalOptions | None = None,
        **overrides: Any,
    ) -> AssembledContext:
        """Sync version of retrieve_context(). Not usable inside an event loop."""
        return run_async(self.retrieve_context(user_id, query, options, **overrides))

    async def _run_pipeline(
        self,
        user_id: str,
        query: str,
        opts: RetrievalOptions,
    ) -> tuple[AssembledContext, bool]:
        """Run every stage after the cache lookup.

        Returns the assembled context and whether every enabled source failed.
        """
        enhanced = enhance_query(query)
        logger.debug(f"[RETRIEVAL] Keywords: {enhanced.keywords}")

        sources, failed = await self._retrieve_sources(user_id, enhanced, opts)
        all_failed = bool(failed) and failed == self._enabled_sources(opts)
        all_items = (
            sources[ItemType.MEMORY] + sources[ItemType.MESSAGE] + sources[ItemType.DOCUMENT]
        )
        if not all_items:
            logger.info("[RETRIEVAL] No candidates from any source")
            return AssembledContext.empty(), all_failed

        ranked = rank_by_relevance(
            all_items,
            enhanced,
            opts.min_relevance_score,
            recency_boost=self.config.recency_boost_factor,
            importance_boost=self.config.importance_boost_factor,
            keyword_boost=self.config.keyword_match_boost,
        )
        stratified = stratify_by_recency(ranked)
        diversified = ensure_diversity(
            stratified,
            opts.max_items,
            memory_quota=self.config.memory_quota,
            message_quota=self.config.message_quota,
        )
        deduped = remove_duplicate_content(diversified)
        context = assemble_context(deduped, opts.token_budget)

        logger.info(
            f"[RETRIEVAL] {len(all_items)} candidates -> ranked {len(ranked)} -> "
            f"stratified {len(stratified)} -> diverse {len(diversified)} -> "
            f"deduped {len(deduped)} -> assembled {len(context.items)}"
        )
        return context, all_failed

    @staticmethod
    def _enabled_sources(opts: RetrievalOptions) -> set[ItemType]:
        enabled = {
            ItemType.MEMORY: opts.include_memories,
            ItemType.MESSAGE: opts.include_messages,
            ItemType.DOCUMENT: opts.include_documents,
        }
        return {source for source, on in enabled.items() if on}

    async def _retrieve_sources(
        self,
        user_id: str,
        enhanced: EnhancedQuery,
        opts: RetrievalOptions,
    ) -> tuple[dict[ItemType, list[AnyRetrievedItem]], set[ItemType]]:
        """Run enabled retrievers concurrently under a single timeout.

        Each source's outcome is resolved here: an exception, a cancellation
        or a timeout becomes an empty list for that source only, and the
        source is reported as failed. If the caller is cancelled, all
        in-flight retrievals are cancelled and awaited before re-raising.
        """
        results: dict[ItemType, list[AnyRetrievedItem]] = {t: [] for t in ItemType}
        failed: set[ItemType] = set()

        tasks = {
            source: asyncio.create_task(
                self.retrievers[source].retrieve(
                    user_id, enhanced, opts.max_items, chat_id=opts.chat_id
                ),
                name=f"retrieve-{source.value}",
            )
            for source in ItemType
            if source in self._enabled_sources(opts)
        }
        if not tasks:
            return results, failed

        fanout_start = time.perf_counter()
        try:
            _done, pending = await asyncio.wait(
                tasks.values(), timeout=self.config.retrieval_timeout_seconds
            )
        except asyncio.CancelledError:
            for task in tasks.values():
                task.cancel()
            await asyncio.gather(*tasks.values(), return_exceptions=True)
            raise

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for source, task in tasks.items():
            if task in pending:
                logger.warning(
                    f"[RETRIEVAL] {source.value} retrieval timed out after "
                    f"{self.config.retrieval_timeout_seconds}s"
                )
                failed.add(source)
            elif task.cancelled():
                logger.warning(f"[RETRIEVAL] {source.value} retrieval was cancelled")
                failed.add(source)
            elif task.exception() is not None:
                logger.warning(f"[RETRIEVAL] {source.value} retrieval failed: {task.exception()}")
                failed.add(source)
            else:
                results[source] = task.result()

        fanout_ms = (time.perf_counter() - fanout_start) * 1000
        counts = ", ".join(f"{t.value}={len(items)}" for t, items in results.items())
        logger.info(f"[TIMING] Source fan-out: {fanout_ms:.0f}ms ({counts})")
        return results, failed

    # =========================================================================
    # Maintenance
    # =========================================================================

    def clear_cache(self) -> dict[str, Any]:
        """Drop every cached context."""
        self.cache.clear()
        logger.info("[CACHE] Context cache cleared")
        return {"success": True, "message": "Context cache cleared"}

    def get_cache_stats(self) -> CacheStats:
        return self.cache.stats()
