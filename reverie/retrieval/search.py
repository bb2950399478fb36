"""
Search gateway for reverie candidates.

Over-fetches candidates from the semantic index (embedding search plus
optional cross-encoder rerank), merges in literal keyword hits when the
query looks like an error trace or identifier, then narrows the result:

    semantic (+ keyword) -> flatten to insights -> quality filter
    -> boilerplate filter -> dedup -> episode boost re-rank -> limit

Any backend failure yields an empty list; the gateway never raises for it.
"""

import logging
import math
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, NamedTuple, Optional, Protocol, Sequence, Union

from pydantic import BaseModel, Field

from reverie.config import SearchConfig, Settings, get_settings
from reverie.hygiene.boilerplate import BoilerplateFilter, get_boilerplate_filter
from reverie.ingestion.embedding import EmbeddingBackend, get_embedding_service
from reverie.models.insight import Insight, SearchMatch
from reverie.observability.metrics import track_backend_failure
from reverie.retrieval.dedup import deduplicate_insights
from reverie.retrieval.episodes import load_episode_boost, rank_with_episode_boost
from reverie.retrieval.quality import filter_valid_insights

logger = logging.getLogger(__name__)

RawMatch = Union[SearchMatch, dict[str, Any]]


# ============================================================================
# BACKEND INTERFACES
# ============================================================================


class SemanticSearchRequest(BaseModel):
    """Options forwarded to the semantic index."""

    project_root: Optional[str] = None
    limit: int = Field(..., ge=0)
    max_candidates: int = Field(..., ge=0)
    normalize: bool = True
    cache: bool = True
    reranker_model: Optional[str] = None
    reranker_top_k: Optional[int] = None
    reranker_batch_size: Optional[int] = None


class SemanticSearchBackend(Protocol):
    """Embedding nearest-neighbour search over the conversation corpus."""

    async def search(
        self, corpus_root: str, query: str, request: SemanticSearchRequest
    ) -> Sequence[RawMatch]:
        ...


class KeywordSearchBackend(Protocol):
    """Literal/keyword search over the conversation corpus."""

    async def search(self, corpus_root: str, query: str, limit: int) -> Sequence[RawMatch]:
        ...


class SearchOptions(BaseModel):
    """Per-call retrieval options (defaults come from SEARCH_* settings)."""

    limit: int = Field(default=6, ge=0)
    max_candidates: int = Field(default=80, ge=1)
    candidate_multiplier: int = Field(default=3, ge=1)
    use_reranker: bool = True
    reranker_model: str = "rozgo/bge-reranker-v2-m3"
    reranker_top_k: int = Field(default=20, ge=1)
    reranker_batch_size: int = Field(default=8, ge=1)

    @classmethod
    def from_config(cls, config: Optional[SearchConfig] = None, **overrides: Any) -> "SearchOptions":
        config = config or get_settings().search
        values = {
            "limit": config.limit,
            "max_candidates": config.max_candidates,
            "candidate_multiplier": config.candidate_multiplier,
            "use_reranker": config.use_reranker,
            "reranker_model": config.reranker_model,
            "reranker_top_k": config.reranker_top_k,
            "reranker_batch_size": config.reranker_batch_size,
        }
        values.update(overrides)
        return cls(**values)

    @property
    def fetch_count(self) -> int:
        return self.max_candidates * self.candidate_multiplier


def build_search_request(options: SearchOptions, repo: Optional[str]) -> SemanticSearchRequest:
    """Over-fetch request; reranker fields are set only when reranking is enabled."""
    request = SemanticSearchRequest(
        project_root=repo,
        limit=options.fetch_count,
        max_candidates=options.fetch_count,
        normalize=True,
        cache=True,
    )
    if options.use_reranker:
        request.reranker_model = options.reranker_model
        request.reranker_top_k = options.reranker_top_k
        request.reranker_batch_size = options.reranker_batch_size
    return request


# ============================================================================
# STRUCTURED QUERY DETECTION
# ============================================================================


class QueryPattern(NamedTuple):
    name: str
    pattern: re.Pattern
    min_matches: int = 1
    min_length: int = 0


STRUCTURED_QUERY_PATTERNS: list[QueryPattern] = [
    QueryPattern("python_traceback", re.compile(r"traceback \(most recent call last\)", re.I)),
    QueryPattern("thread_exception", re.compile(r"exception in thread", re.I)),
    QueryPattern("java_lang", re.compile(r"java\.lang\.", re.I)),
    QueryPattern("junit", re.compile(r"org\.junit", re.I)),
    QueryPattern("java_frame", re.compile(r"at\s+org\.", re.I)),
    QueryPattern("assertion_error", re.compile(r"AssertionError:", re.I)),
    QueryPattern("rust_panic", re.compile(r"panic!|thread '.+' panicked", re.I)),
    QueryPattern("jest_failure", re.compile(r"FAIL\s+\S+\s+\(", re.I)),
    QueryPattern("severity_label", re.compile(r"(?:error|fail|fatal):", re.I)),
    QueryPattern("caused_by", re.compile(r"Caused by:", re.I)),
    QueryPattern("linker_error", re.compile(r"\bundefined reference to\b", re.I)),
    QueryPattern("hex_hash", re.compile(r"\b[0-9a-f]{32,}\b", re.I)),
    QueryPattern(
        "uuid",
        re.compile(
            r"\b[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}\b", re.I
        ),
    ),
    QueryPattern(
        "stack_frames", re.compile(r"\bat\s+[^\s]+\s*\(|\b\S+\.\w+:\d+", re.I), min_matches=2
    ),
    QueryPattern(
        "severity_keywords",
        re.compile(r"\b(?:fail|error|panic|assert|fatal)\b", re.I),
        min_matches=3,
        min_length=51,
    ),
]


def structured_query_signals(text: str) -> list[str]:
    """Names of the structured-query patterns a query matches."""
    if not text:
        return []

    matched = []
    for query_pattern in STRUCTURED_QUERY_PATTERNS:
        if len(text) < query_pattern.min_length:
            continue
        if query_pattern.min_matches == 1:
            if query_pattern.pattern.search(text):
                matched.append(query_pattern.name)
        elif len(query_pattern.pattern.findall(text)) >= query_pattern.min_matches:
            matched.append(query_pattern.name)
    return matched


def looks_like_structured_query(text: str) -> bool:
    """
    Detect error traces, hashes and identifiers that benefit from literal search.

    Example:
        >>> looks_like_structured_query('Exception in thread "main" java.lang.NullPointerException')
        True
        >>> looks_like_structured_query("how do we paginate the orders API")
        False
    """
    return bool(structured_query_signals(text))


# ============================================================================
# RESULT SHAPING
# ============================================================================


def _as_match(raw: RawMatch) -> SearchMatch:
    if isinstance(raw, SearchMatch):
        return raw
    return SearchMatch.model_validate(raw)


def _merge_key(match: SearchMatch) -> str:
    conversation_id = (match.conversation.id if match.conversation else None) or "unknown"
    if match.matching_excerpts and match.matching_excerpts[0]:
        excerpt_key = match.matching_excerpts[0]
    else:
        excerpt_key = str(match.relevance_score if match.relevance_score is not None else 0)
    return f"{conversation_id}:{excerpt_key}"


def merge_search_results(primary: Sequence[SearchMatch], secondary: Sequence[SearchMatch]) -> list[SearchMatch]:
    """Concatenate result lists, dropping repeats of (conversation id, first excerpt)."""
    seen: set[str] = set()
    merged: list[SearchMatch] = []
    for results in (primary, secondary):
        for match in results:
            key = _merge_key(match)
            if key in seen:
                continue
            seen.add(key)
            merged.append(match)
    return merged


def _normalize_relevance(score: Optional[float]) -> float:
    if score is None or not math.isfinite(score):
        return 0.0
    return min(max(score, 0.0), 1.0)


def convert_search_results_to_insights(matches: Sequence[SearchMatch]) -> list[Insight]:
    """
    Flatten search matches into one insight per non-blank excerpt.

    Missing conversation ids become "unknown"; missing timestamps fall back
    to the update time, then to now. Scores are clamped to [0, 1].
    """
    insights: list[Insight] = []
    for match in matches:
        conversation = match.conversation
        conversation_id = (conversation.id if conversation else None) or "unknown"
        timestamp = (
            (conversation.created_at if conversation else None)
            or (conversation.updated_at if conversation else None)
            or datetime.now(timezone.utc).isoformat()
        )
        relevance = _normalize_relevance(match.relevance_score)

        for excerpt in match.matching_excerpts:
            if not excerpt.strip():
                continue
            insights.append(
                Insight(
                    conversation_id=conversation_id,
                    timestamp=timestamp,
                    relevance=relevance,
                    excerpt=excerpt,
                    insights=list(match.insights),
                )
            )
    return insights


# ============================================================================
# GATEWAY
# ============================================================================


class ReverieSearch:
    """
    Candidate retrieval gateway.

    Holds the external collaborators (semantic index, optional keyword
    index, embedding backend, boilerplate filter) and applies the
    gateway-level narrowing before handing candidates to the pipeline.
    """

    def __init__(
        self,
        semantic: SemanticSearchBackend,
        keyword: Optional[KeywordSearchBackend] = None,
        embedder: Optional[EmbeddingBackend] = None,
        boilerplate: Optional[BoilerplateFilter] = None,
        settings: Optional[Settings] = None,
    ):
        self.semantic = semantic
        self.keyword = keyword
        self.embedder = embedder or get_embedding_service()
        self.boilerplate = boilerplate or get_boilerplate_filter(self.embedder)
        self.settings = settings or get_settings()

    async def _keyword_matches(self, corpus_root: str, query: str, limit: int) -> list[SearchMatch]:
        if self.keyword is None or not looks_like_structured_query(query):
            return []
        try:
            raw = await self.keyword.search(corpus_root, query, limit)
            return [_as_match(item) for item in raw]
        except Exception as e:
            logger.warning(f"Keyword search failed, using semantic results only: {e}")
            track_backend_failure("keyword_search")
            return []

    async def search_reveries(
        self,
        codex_home: Path | str,
        text: str,
        repo: Optional[str],
        options: Optional[SearchOptions] = None,
    ) -> list[Insight]:
        """
        Retrieve ranked insights for a query.

        Args:
            codex_home: Corpus root holding transcripts and the episode store
            text: Query text
            repo: Repository root used to scope the search
            options: Retrieval options (SEARCH_* defaults when omitted)

        Returns:
            list[Insight]: At most `options.limit` insights, best first.
            Empty on blank queries or backend failure.
        """
        options = options or SearchOptions.from_config(self.settings.search)
        query = text.strip()
        if not query:
            return []

        corpus_root = str(codex_home)
        request = build_search_request(options, repo)

        try:
            keyword_matches = await self._keyword_matches(corpus_root, query, options.limit)
            semantic_raw = await self.semantic.search(corpus_root, query, request)
            semantic_matches = [_as_match(item) for item in semantic_raw]

            combined = merge_search_results(keyword_matches, semantic_matches)
            insights = convert_search_results_to_insights(combined)

            valid = filter_valid_insights(insights)
            conversational = await self.boilerplate.filter(valid, project_root=repo)
            deduplicated = deduplicate_insights(conversational.kept)

            boost = await load_episode_boost(
                codex_home,
                query,
                repo,
                self.embedder,
                options.limit * self.settings.episodes.candidate_factor,
            )
            ranked = rank_with_episode_boost(
                deduplicated, boost, self.settings.episodes.boost_divisor
            )
            return ranked[: options.limit]
        except Exception as e:
            logger.warning(f"Reverie search failed: {e}")
            track_backend_failure("semantic_search")
            return []
