"""
Pytest configuration and fixtures for reverie tests.

Provides shared fixtures for:
- Isolated settings (temporary codex home, no API key)
- Fake semantic/keyword search backends
- Deterministic fake embedder
- Fake classifier runner
- Sample insights and search matches
"""

import asyncio
from pathlib import Path
from typing import Any, Callable, Optional

import pytest

from reverie.config import (
    EpisodeConfig,
    FilterConfig,
    LLMConfig,
    SearchConfig,
    Settings,
    reset_settings,
)
from reverie.hygiene.boilerplate import (
    BOILERPLATE_SEEDS,
    BoilerplateFilter,
    reset_boilerplate_filter,
)
from reverie.models.insight import Insight
from reverie.retrieval.search import ReverieSearch

BOILERPLATE_VECTOR = [1.0, 0.0, 0.0, 0.0]
CONTENT_VECTOR = [0.0, 1.0, 0.0, 0.0]

GOOD_EXCERPTS = [
    "We switched the session cache to Redis because the in-memory map leaked across gunicorn workers.",
    "The flaky test in payments/test_refunds.py was caused by a timezone-naive datetime comparison.",
    "I moved the retry loop into fetch_orders so that the backoff resets per page instead of per request.",
    "Decided to keep the parser recursive descent since the grammar has no left recursion and errors stay readable.",
    "Bumping the connection pool to twenty fixed the timeouts we saw under the nightly import job.",
]


# ============================================================================
# FAKE BACKENDS
# ============================================================================


class FakeEmbedder:
    """
    Deterministic embedder.

    Boilerplate seeds (and any text listed in `boilerplate_texts`) map to
    BOILERPLATE_VECTOR; texts containing a key of `rules` map to its vector;
    everything else maps to CONTENT_VECTOR.
    """

    def __init__(
        self,
        rules: Optional[dict[str, list[float]]] = None,
        boilerplate_texts: Optional[list[str]] = None,
        fail: bool = False,
        delay: float = 0.0,
    ):
        self.rules = rules or {}
        self.boilerplate_texts = set(boilerplate_texts or [])
        self.fail = fail
        self.delay = delay
        self.calls: list[list[str]] = []

    def vector_for(self, text: str) -> list[float]:
        if text in BOILERPLATE_SEEDS or text in self.boilerplate_texts:
            return list(BOILERPLATE_VECTOR)
        for needle, vector in self.rules.items():
            if needle in text:
                return list(vector)
        return list(CONTENT_VECTOR)

    async def embed(self, inputs, project_root=None, normalize=True, cache=False):
        self.calls.append(list(inputs))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("embedding model unavailable")
        return [self.vector_for(text) for text in inputs]

    @property
    def seed_calls(self) -> int:
        return sum(1 for call in self.calls if call == list(BOILERPLATE_SEEDS))


class FakeSemanticSearch:
    """Semantic backend returning canned matches and recording requests."""

    def __init__(self, matches: Optional[list[dict[str, Any]]] = None, error: Optional[Exception] = None):
        self.matches = matches or []
        self.error = error
        self.calls: list[tuple[str, str, Any]] = []

    async def search(self, corpus_root, query, request):
        self.calls.append((corpus_root, query, request))
        if self.error is not None:
            raise self.error
        return list(self.matches)


class FakeKeywordSearch:
    """Keyword backend returning canned matches and recording limits."""

    def __init__(self, matches: Optional[list[dict[str, Any]]] = None, error: Optional[Exception] = None):
        self.matches = matches or []
        self.error = error
        self.calls: list[tuple[str, str, int]] = []

    async def search(self, corpus_root, query, limit):
        self.calls.append((corpus_root, query, limit))
        if self.error is not None:
            raise self.error
        return list(self.matches)


class FakeRunner:
    """
    Classifier runner approving excerpts for which `approve(prompt)` is true.

    `output` overrides the structured result entirely (for malformed-output tests).
    """

    _UNSET = object()

    def __init__(
        self,
        approve: Callable[[str], bool] = lambda prompt: True,
        output: Any = _UNSET,
        error: Optional[Exception] = None,
        delay_for: Optional[Callable[[str], float]] = None,
    ):
        self.approve = approve
        self.output = output
        self.error = error
        self.delay_for = delay_for
        self.prompts: list[str] = []
        self.agents: list[Any] = []

    async def run(self, agent, prompt):
        self.agents.append(agent)
        self.prompts.append(prompt)
        if self.delay_for is not None:
            await asyncio.sleep(self.delay_for(prompt))
        if self.error is not None:
            raise self.error
        if self.output is not FakeRunner._UNSET:
            return self.output
        return {"is_relevant": self.approve(prompt), "reasoning": "test verdict"}


def make_match(
    excerpt: str,
    score: Any = 0.9,
    conversation_id: Optional[str] = "conv-1",
    created_at: Optional[str] = "2026-03-01T10:00:00Z",
    insights: Optional[list[str]] = None,
) -> dict[str, Any]:
    """Search match in the wire shape returned by search backends."""
    conversation = {"id": conversation_id, "createdAt": created_at} if conversation_id else None
    return {
        "conversation": conversation,
        "relevanceScore": score,
        "matchingExcerpts": [excerpt],
        "insights": insights or [],
    }


def make_insight(
    excerpt: str,
    relevance: float = 0.9,
    conversation_id: str = "conv-1",
) -> Insight:
    return Insight(
        conversation_id=conversation_id,
        timestamp="2026-03-01T10:00:00Z",
        relevance=relevance,
        excerpt=excerpt,
        insights=[],
    )


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture(autouse=True)
def isolate_singletons():
    """Drop cached settings and the shared boilerplate filter around each test."""
    reset_settings()
    reset_boilerplate_filter()
    yield
    reset_settings()
    reset_boilerplate_filter()


@pytest.fixture
def codex_home(tmp_path: Path) -> Path:
    return tmp_path


@pytest.fixture
def test_settings(codex_home: Path) -> Settings:
    """Settings with a temporary codex home and grading key unset."""
    return Settings(
        codex_home=codex_home,
        search=SearchConfig(limit=6, max_candidates=80, candidate_multiplier=3),
        filter=FilterConfig(),
        episodes=EpisodeConfig(),
        llm=LLMConfig(openrouter_api_key=""),
    )


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def boilerplate_filter(fake_embedder: FakeEmbedder, test_settings: Settings) -> BoilerplateFilter:
    return BoilerplateFilter(fake_embedder, test_settings.filter)


@pytest.fixture
def semantic_backend() -> FakeSemanticSearch:
    return FakeSemanticSearch([make_match(text, score=0.9, conversation_id=f"conv-{i}") for i, text in enumerate(GOOD_EXCERPTS)])


@pytest.fixture
def keyword_backend() -> FakeKeywordSearch:
    return FakeKeywordSearch()


@pytest.fixture
def gateway(
    semantic_backend: FakeSemanticSearch,
    keyword_backend: FakeKeywordSearch,
    fake_embedder: FakeEmbedder,
    boilerplate_filter: BoilerplateFilter,
    test_settings: Settings,
) -> ReverieSearch:
    return ReverieSearch(
        semantic=semantic_backend,
        keyword=keyword_backend,
        embedder=fake_embedder,
        boilerplate=boilerplate_filter,
        settings=test_settings,
    )


@pytest.fixture
def sample_insights() -> list[Insight]:
    return [
        make_insight(text, relevance=0.9 - i * 0.05, conversation_id=f"conv-{i}")
        for i, text in enumerate(GOOD_EXCERPTS)
    ]
