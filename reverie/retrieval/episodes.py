"""
Episode summaries as a secondary ranking signal.

An external summarizer appends one record per past conversation to
`<codex_home>/reverie_episodes.json`. Episodes similar to the query lend
their importance to insights from the same conversation:

    score = relevance + max(importance of matching episodes) / 10

The boost only reorders candidates; it never filters them out.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import numpy as np
from pydantic import ValidationError

from reverie.config import get_settings
from reverie.ingestion.embedding import EmbeddingBackend
from reverie.models.episode import EpisodeSummary
from reverie.models.insight import Insight
from reverie.observability.logging import OperationContext
from reverie.observability.metrics import track_backend_failure

logger = logging.getLogger(__name__)


def _read_text(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None


async def read_episodes_file(codex_home: Path | str, filename: Optional[str] = None) -> list[EpisodeSummary]:
    """
    Load the episode store.

    Args:
        codex_home: Directory holding the store
        filename: Store file name (defaults to EPISODE_STORE_FILENAME)

    Returns:
        list[EpisodeSummary]: Episodes in file order. A missing file or a
        document that is not a JSON array yields an empty list.

    Raises:
        json.JSONDecodeError, OSError: Unreadable store (callers degrade)
    """
    filename = filename or get_settings().episodes.store_filename
    path = Path(codex_home) / filename

    raw = await asyncio.to_thread(_read_text, path)
    if raw is None:
        return []

    parsed = json.loads(raw)
    if not isinstance(parsed, list):
        return []

    episodes: list[EpisodeSummary] = []
    for record in parsed:
        try:
            episodes.append(EpisodeSummary.model_validate(record))
        except ValidationError as e:
            logger.debug(f"Skipping malformed episode record: {e.error_count()} errors")
    return episodes


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity over the shared prefix of two vectors (0.0 when undefined)."""
    length = min(len(a), len(b))
    if length == 0:
        return 0.0

    va = np.asarray(a[:length], dtype=np.float64)
    vb = np.asarray(b[:length], dtype=np.float64)
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0:
        return 0.0
    return float(np.dot(va, vb) / denom)


async def search_episode_summaries(
    codex_home: Path | str,
    query: str,
    repo: Optional[str],
    embedder: EmbeddingBackend,
    limit: int = 20,
) -> list[EpisodeSummary]:
    """
    Rank stored episodes by similarity to the query.

    Args:
        codex_home: Directory holding the episode store
        query: Search text
        repo: Repository root passed to the embedding backend
        embedder: Embedding backend
        limit: Maximum episodes returned

    Returns:
        list[EpisodeSummary]: Top `limit` episodes, most similar first
    """
    summaries = await read_episodes_file(codex_home)
    if not summaries or not query.strip():
        return []

    inputs = [query, *(episode.document_text() for episode in summaries)]
    embeddings = await embedder.embed(inputs, project_root=repo, normalize=True, cache=True)
    if len(embeddings) != len(inputs):
        return []

    query_vector, *doc_vectors = embeddings
    if not query_vector:
        return []

    scored = [
        (episode, cosine_similarity(query_vector, doc_vectors[idx]))
        for idx, episode in enumerate(summaries)
    ]
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return [episode for episode, _ in scored[:limit]]


def build_episode_boost(episodes: list[EpisodeSummary]) -> dict[str, float]:
    """Per-conversation boost: highest importance among matching episodes (missing counts as 0)."""
    boost: dict[str, float] = {}
    for episode in episodes:
        importance = episode.importance if episode.importance is not None else 0.0
        boost[episode.conversation_id] = max(boost.get(episode.conversation_id, 0.0), importance)
    return boost


def rank_with_episode_boost(
    insights: list[Insight],
    boost: dict[str, float],
    divisor: Optional[float] = None,
) -> list[Insight]:
    """
    Re-sort insights by relevance plus episode boost.

    Importance is used as stored (no clamping). Sorting is stable, so equal
    blended scores keep their input order.
    """
    divisor = divisor or get_settings().episodes.boost_divisor
    return sorted(
        insights,
        key=lambda insight: insight.relevance + boost.get(insight.conversation_id, 0.0) / divisor,
        reverse=True,
    )


async def load_episode_boost(
    codex_home: Path | str,
    query: str,
    repo: Optional[str],
    embedder: EmbeddingBackend,
    limit: int,
) -> dict[str, float]:
    """
    Episode boost map for a query; any failure yields an empty map.

    Args:
        limit: Episodes considered (the gateway passes limit * candidate_factor)
    """
    try:
        with OperationContext("episode_search", limit=limit):
            episodes = await search_episode_summaries(codex_home, query, repo, embedder, limit)
    except Exception as e:
        logger.warning(f"Episode search failed, ranking by relevance only: {e}")
        track_backend_failure("episodes")
        return {}
    return build_episode_boost(episodes)
