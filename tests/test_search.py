"""
Tests for the reverie search gateway.

Tests:
- Structured query detection
- Result merge and flattening
- Over-fetch request construction
- Gateway narrowing and failure containment
"""

import json

import pytest

from conftest import (
    GOOD_EXCERPTS,
    FakeEmbedder,
    FakeKeywordSearch,
    FakeSemanticSearch,
    make_match,
)
from reverie.config import FilterConfig
from reverie.hygiene.boilerplate import BoilerplateFilter
from reverie.models.insight import SearchMatch
from reverie.retrieval.search import (
    ReverieSearch,
    SearchOptions,
    build_search_request,
    convert_search_results_to_insights,
    looks_like_structured_query,
    merge_search_results,
    structured_query_signals,
)


class TestStructuredQuery:
    """Heuristic detection of traces, hashes and identifiers."""

    def test_java_exception_with_frame(self):
        query = (
            'Exception in thread "main" java.lang.NullPointerException '
            "at com.foo.Bar.baz(Bar.java:42)"
        )
        assert looks_like_structured_query(query) is True

    @pytest.mark.parametrize(
        "query",
        [
            "Traceback (most recent call last): File app.py",
            "thread 'main' panicked at 'index out of bounds'",
            "FAIL src/cart.test.ts (4.2 s)",
            "Caused by: java.io.IOException",
            "undefined reference to `curl_easy_init'",
            "error: cannot borrow `x` as mutable",
        ],
    )
    def test_trace_signatures(self, query):
        assert looks_like_structured_query(query) is True

    def test_long_hex_hash(self):
        assert "hex_hash" in structured_query_signals("regression since 9f86d081884c7d659a2feaa0c55ad015a3bf4f1b")

    def test_uuid(self):
        assert "uuid" in structured_query_signals("job 123e4567-e89b-42d3-a456-426614174000 stuck")

    def test_single_stack_frame_is_not_enough(self):
        assert "stack_frames" not in structured_query_signals("look at handler.py:42 please")

    def test_two_stack_frames(self):
        assert "stack_frames" in structured_query_signals("handler.py:42 then router.py:17")

    def test_severity_keywords_need_length(self):
        short = "fail error panic"
        assert "severity_keywords" not in structured_query_signals(short)
        long = "the deploy step may fail with an error or panic when the cache volume is full"
        assert "severity_keywords" in structured_query_signals(long)

    def test_plain_question(self):
        assert looks_like_structured_query("how do we paginate the orders API") is False
        assert looks_like_structured_query("") is False


class TestMergeAndConvert:
    """Merging keyword and semantic results, flattening into insights."""

    def test_merge_keeps_primary_first_and_drops_repeats(self):
        keyword = [SearchMatch.model_validate(make_match("shared excerpt", conversation_id="a"))]
        semantic = [
            SearchMatch.model_validate(make_match("shared excerpt", score=0.5, conversation_id="a")),
            SearchMatch.model_validate(make_match("other excerpt", conversation_id="b")),
        ]

        merged = merge_search_results(keyword, semantic)

        assert len(merged) == 2
        assert merged[0] is keyword[0]
        assert merged[1].conversation.id == "b"

    def test_merge_key_falls_back_to_score(self):
        first = SearchMatch.model_validate({"conversation": {"id": "a"}, "relevanceScore": 0.4})
        second = SearchMatch.model_validate({"conversation": {"id": "a"}, "relevanceScore": 0.4})
        third = SearchMatch.model_validate({"conversation": {"id": "a"}, "relevanceScore": 0.5})
        assert len(merge_search_results([first], [second, third])) == 2

    def test_flattens_one_insight_per_excerpt(self):
        match = SearchMatch.model_validate(
            {
                "conversation": {"id": "c1", "createdAt": "2026-01-02T00:00:00Z"},
                "relevanceScore": 0.8,
                "matchingExcerpts": ["first excerpt", "   ", "second excerpt"],
                "insights": ["cache fix"],
            }
        )

        insights = convert_search_results_to_insights([match])

        assert [i.excerpt for i in insights] == ["first excerpt", "second excerpt"]
        assert all(i.insights == ["cache fix"] for i in insights)
        assert all(i.timestamp == "2026-01-02T00:00:00Z" for i in insights)

    def test_missing_fields_get_defaults(self):
        match = SearchMatch.model_validate(
            {"relevanceScore": "high", "matchingExcerpts": ["orphan excerpt"]}
        )

        [insight] = convert_search_results_to_insights([match])

        assert insight.conversation_id == "unknown"
        assert insight.relevance == 0.0
        assert insight.timestamp

    def test_updated_at_used_when_created_missing(self):
        match = SearchMatch.model_validate(
            {
                "conversation": {"id": "c1", "updatedAt": "2026-02-02T00:00:00Z"},
                "relevanceScore": 0.5,
                "matchingExcerpts": ["an excerpt"],
            }
        )
        assert convert_search_results_to_insights([match])[0].timestamp == "2026-02-02T00:00:00Z"

    def test_out_of_range_scores_are_clamped(self):
        matches = [
            SearchMatch.model_validate(make_match("above", score=1.7)),
            SearchMatch.model_validate(make_match("below", score=-0.3)),
        ]
        assert [i.relevance for i in convert_search_results_to_insights(matches)] == [1.0, 0.0]

    def test_match_without_excerpts_yields_nothing(self):
        match = SearchMatch.model_validate({"conversation": {"id": "c1"}, "relevanceScore": 0.9})
        assert convert_search_results_to_insights([match]) == []


class TestSearchRequest:
    """Over-fetch request construction."""

    def test_over_fetch_uses_multiplier(self):
        options = SearchOptions(limit=6, max_candidates=80, candidate_multiplier=3)
        request = build_search_request(options, "/repo")

        assert request.limit == 240
        assert request.max_candidates == 240
        assert request.normalize is True and request.cache is True
        assert request.reranker_model == "rozgo/bge-reranker-v2-m3"
        assert request.reranker_top_k == 20
        assert request.reranker_batch_size == 8

    def test_reranker_fields_omitted_when_disabled(self):
        options = SearchOptions(use_reranker=False)
        request = build_search_request(options, "/repo")
        assert request.reranker_model is None
        assert request.reranker_top_k is None


class TestReverieSearch:
    """Gateway behaviour end to end with fake backends."""

    @pytest.mark.asyncio
    async def test_returns_ranked_insights(self, gateway, codex_home):
        insights = await gateway.search_reveries(codex_home, "session cache leak", "/repo")
        assert 0 < len(insights) <= 6
        assert all(0.0 <= i.relevance <= 1.0 for i in insights)

    @pytest.mark.asyncio
    async def test_blank_query_skips_backends(self, gateway, semantic_backend, codex_home):
        assert await gateway.search_reveries(codex_home, "   ", "/repo") == []
        assert semantic_backend.calls == []

    @pytest.mark.asyncio
    async def test_query_is_trimmed(self, gateway, semantic_backend, codex_home):
        await gateway.search_reveries(codex_home, "  cache leak \n", "/repo")
        assert semantic_backend.calls[0][1] == "cache leak"

    @pytest.mark.asyncio
    async def test_semantic_failure_returns_empty(self, test_settings, codex_home, caplog):
        embedder = FakeEmbedder()
        gateway = ReverieSearch(
            semantic=FakeSemanticSearch(error=RuntimeError("index offline")),
            embedder=embedder,
            boilerplate=BoilerplateFilter(embedder, test_settings.filter),
            settings=test_settings,
        )

        with caplog.at_level("WARNING"):
            result = await gateway.search_reveries(codex_home, "cache leak", "/repo")

        assert result == []
        assert "Reverie search failed" in caplog.text

    @pytest.mark.asyncio
    async def test_keyword_search_only_for_structured_queries(
        self, gateway, keyword_backend, codex_home
    ):
        await gateway.search_reveries(codex_home, "how should we cache sessions", "/repo")
        assert keyword_backend.calls == []

        await gateway.search_reveries(codex_home, "Caused by: java.io.IOException", "/repo")
        assert len(keyword_backend.calls) == 1
        assert keyword_backend.calls[0][2] == 6

    @pytest.mark.asyncio
    async def test_keyword_results_come_first(self, test_settings, codex_home):
        embedder = FakeEmbedder()
        keyword_excerpt = "The linker error came from building libcurl without the static flag on CI runners."
        gateway = ReverieSearch(
            semantic=FakeSemanticSearch([make_match(GOOD_EXCERPTS[0], score=0.9, conversation_id="s")]),
            keyword=FakeKeywordSearch([make_match(keyword_excerpt, score=0.9, conversation_id="k")]),
            embedder=embedder,
            boilerplate=BoilerplateFilter(embedder, test_settings.filter),
            settings=test_settings,
        )

        insights = await gateway.search_reveries(
            codex_home, "undefined reference to `curl_easy_init'", "/repo"
        )

        assert [i.conversation_id for i in insights] == ["k", "s"]

    @pytest.mark.asyncio
    async def test_keyword_failure_falls_back_to_semantic(self, test_settings, codex_home, caplog):
        embedder = FakeEmbedder()
        gateway = ReverieSearch(
            semantic=FakeSemanticSearch([make_match(GOOD_EXCERPTS[0], conversation_id="s")]),
            keyword=FakeKeywordSearch(error=RuntimeError("grep failed")),
            embedder=embedder,
            boilerplate=BoilerplateFilter(embedder, test_settings.filter),
            settings=test_settings,
        )

        with caplog.at_level("WARNING", logger="reverie.retrieval.search"):
            insights = await gateway.search_reveries(codex_home, "Caused by: timeout", "/repo")

        assert [i.conversation_id for i in insights] == ["s"]
        warnings = [r for r in caplog.records if r.levelname == "WARNING"]
        assert any("Keyword search failed" in r.getMessage() and "grep failed" in r.getMessage() for r in warnings)

    @pytest.mark.asyncio
    async def test_low_quality_excerpts_are_dropped(self, test_settings, codex_home):
        embedder = FakeEmbedder()
        gateway = ReverieSearch(
            semantic=FakeSemanticSearch(
                [
                    make_match("Processing complete (100%)", conversation_id="noise"),
                    make_match(GOOD_EXCERPTS[1], conversation_id="good"),
                ]
            ),
            embedder=embedder,
            boilerplate=BoilerplateFilter(embedder, test_settings.filter),
            settings=test_settings,
        )

        insights = await gateway.search_reveries(codex_home, "flaky refund test", "/repo")

        assert [i.conversation_id for i in insights] == ["good"]

    @pytest.mark.asyncio
    async def test_episode_boost_reorders(self, test_settings, codex_home):
        episodes = [
            {
                "conversationId": "boosted",
                "episodeId": "ep-1",
                "timestamp": "2026-01-01T00:00:00Z",
                "summary": "Fixed the refund test flake",
                "keyDecisions": ["normalize timestamps to UTC"],
                "importance": 1.0,
            }
        ]
        (codex_home / "reverie_episodes.json").write_text(json.dumps(episodes))

        embedder = FakeEmbedder()
        gateway = ReverieSearch(
            semantic=FakeSemanticSearch(
                [
                    make_match(GOOD_EXCERPTS[0], score=0.85, conversation_id="plain"),
                    make_match(GOOD_EXCERPTS[1], score=0.80, conversation_id="boosted"),
                ]
            ),
            embedder=embedder,
            boilerplate=BoilerplateFilter(embedder, test_settings.filter),
            settings=test_settings,
        )

        insights = await gateway.search_reveries(codex_home, "refund test flake", "/repo")

        assert [i.conversation_id for i in insights] == ["boosted", "plain"]
        assert insights[0].relevance == 0.80

    @pytest.mark.asyncio
    async def test_limit_is_respected(self, gateway, codex_home):
        options = SearchOptions(limit=2)
        insights = await gateway.search_reveries(codex_home, "cache", "/repo", options)
        assert len(insights) == 2
