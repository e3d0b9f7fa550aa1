"""Tests for ranking, stratification, dedup, diversity and budget assembly."""

import math

import pytest

from ragctx.models import AssembledContext, ItemType
from ragctx.query import enhance_query
from ragctx.ranking import (
    assemble_context,
    content_signature,
    count_keyword_matches,
    ensure_diversity,
    rank_by_relevance,
    remove_duplicate_content,
    stratify_by_recency,
    word_overlap,
)
from tests.factories import days_ago, document, memory, message


class TestRankByRelevance:
    """Relevance ranking tests."""

    def test_filters_below_min_score(self):
        items = [memory("m1", 0.9), memory("m2", 0.49), message("s1", 0.5)]
        ranked = rank_by_relevance(items, enhance_query(""), min_score=0.5)

        assert {i.id for i in ranked} == {"m1", "s1"}

    def test_combined_score_formula(self):
        item = memory(
            "m1", 0.6,
            content="Prefers TypeScript for frontend development work",
            importance=0.5,
            recency_score=0.8,
        )
        query = enhance_query("typescript frontend")

        ranked = rank_by_relevance([item], query, min_score=0.0)

        expected = 0.6 + 0.8 * 0.1 + 0.5 * 0.2 + 2 * 0.1
        assert ranked[0].score == pytest.approx(expected)

    def test_importance_only_applies_to_memories(self):
        msg = message("s1", 0.7)
        ranked = rank_by_relevance([msg], enhance_query(""), min_score=0.0)

        assert ranked[0].score == pytest.approx(0.7)

    def test_sorted_descending(self):
        items = [memory("m1", 0.6), message("s1", 0.9), document("d1", 0.75)]
        ranked = rank_by_relevance(items, enhance_query(""), min_score=0.0)

        assert [i.id for i in ranked] == ["s1", "d1", "m1"]

    def test_does_not_mutate_input(self):
        item = memory("m1", 0.6, importance=1.0)
        rank_by_relevance([item], enhance_query(""), min_score=0.0)

        assert item.score == 0.6

    def test_scores_are_non_negative(self):
        items = [memory("m1", 0.0), message("s1", 0.0)]
        ranked = rank_by_relevance(items, enhance_query(""), min_score=0.0)

        assert all(i.score >= 0 for i in ranked)

    def test_keyword_matches_are_substrings(self):
        assert count_keyword_matches("Deploying to Kubernetes", ["deploy", "kubernetes", "helm"]) == 2


class TestStratifyByRecency:
    """Recency stratification tests."""

    def test_balances_age_bands(self):
        now = days_ago(0)
        items = (
            [memory(f"r{i}", 0.9, age_days=1) for i in range(8)]
            + [memory(f"m{i}", 0.8, age_days=15) for i in range(2)]
        )

        result = stratify_by_recency(items, now_ms=now)

        # 10 items: recent capped at 5, medium at 3 (only 2 available), older none
        assert [i.id for i in result] == ["r0", "r1", "r2", "r3", "r4", "m0", "m1"]

    def test_older_fill_remainder(self):
        now = days_ago(0)
        items = [memory("r0", 0.9, age_days=2)] + [memory(f"o{i}", 0.7, age_days=60) for i in range(5)]

        result = stratify_by_recency(items, now_ms=now)

        # N=6: recent_take=min(1,3)=1, medium_take=0, older_take=min(5, 6-1-0)=5
        assert [i.id for i in result] == ["r0", "o0", "o1", "o2", "o3", "o4"]

    def test_preserves_order_within_bands(self):
        now = days_ago(0)
        items = [
            memory("old-high", 0.99, age_days=90),
            memory("recent", 0.7, age_days=1),
            memory("old-low", 0.6, age_days=90),
        ]

        result = stratify_by_recency(items, now_ms=now)

        assert [i.id for i in result] == ["recent", "old-high", "old-low"]

    def test_conservation(self):
        now = days_ago(0)
        items = (
            [memory(f"r{i}", 0.9, age_days=3) for i in range(6)]
            + [message(f"m{i}", 0.8, age_days=20) for i in range(4)]
            + [document(f"o{i}", 0.7, age_days=45) for i in range(7)]
        )

        result = stratify_by_recency(items, now_ms=now)

        assert len(result) <= len(items)
        input_ids = {i.id for i in items}
        assert all(i.id in input_ids for i in result)
        assert len({i.id for i in result}) == len(result)

    def test_single_item_recent_band_rounds_down(self):
        """With one item, floor(0.5) = 0 recent slots, so a lone recent item is dropped."""
        result = stratify_by_recency([memory("r0", 0.9, age_days=1)], now_ms=days_ago(0))

        assert result == []

    def test_empty(self):
        assert stratify_by_recency([]) == []


class TestDeduplication:
    """Near-duplicate removal tests."""

    LONG_A = "I work at Acme Corporation as a senior backend engineer building payment services"
    LONG_B = "I work at Acme Corporation as a senior backend engineer building payment systems"

    def test_signature_uses_sorted_long_words(self):
        assert content_signature("The quick brown fox jumps") == "brown-jumps-quick"

    def test_word_overlap_uses_smaller_set(self):
        assert word_overlap("a b c d", "a b") == 1.0
        assert word_overlap("", "a b") == 0.0

    def test_exact_signature_duplicate_dropped(self):
        items = [memory("m1", 0.9, content="Uses Postgres daily"), memory("m2", 0.8, content="uses postgres DAILY")]

        result = remove_duplicate_content(items)

        assert [i.id for i in result] == ["m1"]

    def test_similar_long_content_keeps_higher_score(self):
        """Two near-identical facts: only the higher-scored survives."""
        items = [memory("low", 0.6, content=self.LONG_A), memory("high", 0.9, content=self.LONG_B)]

        result = remove_duplicate_content(items)

        assert [i.id for i in result] == ["high"]

    def test_replacement_happens_in_place(self):
        items = [
            memory("first", 0.95, content="Completely unrelated content about gardening"),
            memory("low", 0.6, content=self.LONG_A),
            memory("high", 0.9, content=self.LONG_B),
        ]

        result = remove_duplicate_content(items)

        assert [i.id for i in result] == ["first", "high"]

    def test_lower_scored_newcomer_dropped(self):
        items = [memory("high", 0.9, content=self.LONG_A), memory("low", 0.6, content=self.LONG_B)]

        result = remove_duplicate_content(items)

        assert [i.id for i in result] == ["high"]

    def test_short_paraphrases_only_checked_by_signature(self):
        """Content of 50 chars or fewer skips the overlap comparison."""
        items = [
            memory("m1", 0.9, content="I work at Acme as a backend engineer"),
            memory("m2", 0.8, content="I'm a backend engineer working at Acme"),
        ]

        result = remove_duplicate_content(items)

        assert [i.id for i in result] == ["m1", "m2"]

    def test_distinct_content_kept(self):
        items = [
            memory("m1", 0.9, content="Prefers dark mode in every editor and terminal application"),
            message("s1", 0.8, content="Asked how to configure nginx reverse proxy for websocket traffic"),
        ]

        assert len(remove_duplicate_content(items)) == 2

    def test_idempotent(self):
        items = [
            memory("m1", 0.9, content=self.LONG_A),
            memory("m2", 0.7, content=self.LONG_B),
            message("s1", 0.8, content="Uses Postgres daily"),
            message("s2", 0.6, content="uses postgres daily"),
            document("d1", 0.75, content="Deployment guide covering blue green rollouts and canary releases"),
        ]

        once = remove_duplicate_content(items)
        twice = remove_duplicate_content(once)

        assert [i.id for i in twice] == [i.id for i in once]

    def test_idempotent_on_score_sorted_near_duplicates(self):
        """Score-sorted input, as the pipeline produces it, dedups to a fixed point."""
        bridge = "I work at Acme Corporation as a senior backend engineer building payment gateways"
        items = [
            memory("b", 0.9, content=bridge),
            memory("d", 0.6, content=self.LONG_B),
            memory("e", 0.55, content="Deployment guide covering blue green rollouts and canary releases"),
            memory("a", 0.5, content=self.LONG_A),
        ]

        once = remove_duplicate_content(items)
        twice = remove_duplicate_content(once)

        assert [i.id for i in once] == ["b", "e"]
        assert [i.id for i in twice] == [i.id for i in once]

    def test_highest_scored_member_survives(self):
        items = [
            memory("a", 0.5, content=self.LONG_A),
            memory("b", 0.99, content=self.LONG_B),
            memory("c", 0.7, content=self.LONG_A + " today"),
        ]

        result = remove_duplicate_content(items)

        assert "b" in {i.id for i in result}


class TestEnsureDiversity:
    """Diversity quota tests."""

    def test_quota_invariant(self):
        items = (
            [memory(f"m{i}", 0.9 - i * 0.01) for i in range(20)]
            + [message(f"s{i}", 0.8 - i * 0.01) for i in range(20)]
            + [document(f"d{i}", 0.7 - i * 0.01) for i in range(20)]
        )

        result = ensure_diversity(items, max_items=10)

        counts = {t: sum(1 for i in result if i.item_type == t.value) for t in ItemType}
        assert counts[ItemType.MEMORY] <= math.ceil(0.4 * 10)
        assert counts[ItemType.MESSAGE] <= math.ceil(0.4 * 10)
        assert counts[ItemType.DOCUMENT] <= 10 - counts[ItemType.MEMORY] - counts[ItemType.MESSAGE]
        assert len(result) == 10

    def test_quota_rounds_up(self):
        items = [memory(f"m{i}", 0.9) for i in range(5)] + [message(f"s{i}", 0.8) for i in range(5)]

        result = ensure_diversity(items, max_items=5)

        # ceil(0.4 * 5) = 2 each, documents absent
        assert len(result) == 4

    def test_never_exceeds_max_items(self):
        items = [memory(f"m{i}", 0.9) for i in range(5)] + [message(f"s{i}", 0.8) for i in range(5)]

        for max_items in (1, 2, 3):
            result = ensure_diversity(items, max_items=max_items)
            assert len(result) <= max_items

        # ceil(0.4 * 3) = 2 memories, messages get the one remaining slot
        result = ensure_diversity(items, max_items=3)
        assert sum(1 for i in result if i.item_type == "memory") == 2
        assert sum(1 for i in result if i.item_type == "message") == 1

    def test_takes_top_scored_per_type(self):
        items = [memory("m-hi", 0.9), memory("m-lo", 0.1), document("d1", 0.5)]

        result = ensure_diversity(items, max_items=2)

        # memory quota ceil(0.8)=1, message 0, document min(1, 2-1-0)=1
        assert [i.id for i in result] == ["m-hi", "d1"]

    def test_unused_quota_not_redistributed(self):
        items = [memory(f"m{i}", 0.9) for i in range(10)]

        result = ensure_diversity(items, max_items=10)

        assert len(result) == 4

    def test_result_sorted_by_score(self):
        items = [memory("m1", 0.5), message("s1", 0.9), document("d1", 0.7)]

        result = ensure_diversity(items, max_items=10)

        assert [i.id for i in result] == ["s1", "d1", "m1"]


class TestAssembleContext:
    """Token-budgeted assembly tests."""

    def test_prefix_greedy_cutoff(self):
        """Stops at the first overflow even though a later item would fit."""
        items = [
            memory("i1", 0.9, tokens=1000),
            message("i2", 0.8, tokens=1500),
            document("i3", 0.7, tokens=2000),
            memory("i4", 0.6, tokens=600),
        ]

        context = assemble_context(items, token_budget=3000)

        assert [c.tokens for c in context.items] == [1000, 1500]
        assert context.total_tokens == 2500
        assert len(context.items) == 2

    def test_budget_invariant(self):
        items = [memory(f"m{i}", 0.9, tokens=t) for i, t in enumerate([300, 450, 120, 800, 50])]

        for budget in (0, 100, 500, 1000, 5000):
            context = assemble_context(items, token_budget=budget)
            assert sum(c.tokens for c in context.items) <= budget
            assert context.total_tokens == sum(c.tokens for c in context.items)

    def test_summary(self):
        items = [
            memory("m1", 0.9, age_days=10, tokens=100),
            message("s1", 0.7, age_days=2, tokens=100),
            document("d1", 0.5, age_days=5, tokens=100),
        ]

        context = assemble_context(items, token_budget=1000)

        assert context.summary.memories_count == 1
        assert context.summary.messages_count == 1
        assert context.summary.documents_count == 1
        assert context.summary.avg_relevance_score == pytest.approx(0.7)
        assert context.summary.time_range.start == items[0].timestamp_ms
        assert context.summary.time_range.end == items[1].timestamp_ms

    def test_projection(self):
        item = message("s1", 0.8, content="  padded content  ", role="assistant")

        context = assemble_context([item], token_budget=1000)

        projected = context.items[0]
        assert projected.content == "padded content"
        assert projected.type == "message"
        assert projected.score == 0.8
        assert projected.timestamp == item.timestamp_ms
        assert projected.tokens == 100
        assert projected.metadata["role"] == "assistant"
        assert projected.metadata["chatId"] == "chat-1"

    def test_empty_input(self):
        context = assemble_context([], token_budget=4000)

        assert context == AssembledContext.empty()
        assert context.summary.time_range is None
        assert context.summary.avg_relevance_score == 0.0


class TestScenarios:
    """End-to-end stage scenarios."""

    def test_threshold_and_quotas(self):
        """Low-scored candidates are dropped before ranking; quotas cap the rest."""
        items = [
            memory("m1", 0.9), memory("m2", 0.6), memory("m3", 0.3),
            message("s1", 0.8), message("s2", 0.4),
            document("d1", 0.55),
        ]
        query = enhance_query("typescript developer preferences")

        ranked = rank_by_relevance(items, query, min_score=0.5)
        diversified = ensure_diversity(ranked, max_items=10)

        assert "m3" not in {i.id for i in ranked}
        assert "s2" not in {i.id for i in ranked}
        assert len(diversified) <= 4
