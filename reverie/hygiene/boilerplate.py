"""
Embedding-based boilerplate detection.

Drops excerpts that are semantically close to known non-informative
phrasings (system prompts, sandbox descriptions, instruction checklists,
tool output). Seeds are embedded once per filter instance; every excerpt is
compared against every seed by dot product on normalized vectors.

Lifecycle:
    NOT_STARTED -> IN_FLIGHT -> READY
                            \\-> DISABLED (first embedding error, permanent)

A disabled filter passes every excerpt through. It never raises for
embedding failures.
"""

import asyncio
import logging
import re
from enum import Enum
from typing import NamedTuple, Optional

import numpy as np

from reverie.config import FilterConfig, get_settings
from reverie.ingestion.embedding import EmbeddingBackend
from reverie.models.insight import Insight
from reverie.observability.metrics import (
    set_boilerplate_filter_state,
    track_backend_failure,
    track_boilerplate_removed,
)

logger = logging.getLogger(__name__)

BOILERPLATE_SEEDS: tuple[str, ...] = (
    "<system>Focus on summarizing repo context and keep instructions short.",
    "<environment_context>Working directory: /repo/codex sandbox_mode: workspace-write network_access: disabled</environment_context>",
    "# AGENTS.md instructions for this task require you to enumerate files before running commands.",
    "Tool output: command completed successfully with exit code 0.",
    "You are coordinating multiple agents. Respond with JSON describing the plan.",
    "Sandbox env vars: CODEX_SANDBOX=seatbelt CODEX_SANDBOX_NETWORK_DISABLED=1",
    "1. Inspect repository status; 2. List directories; 3. Review README/AGENTS instructions before acting.",
    "1. Inventory tooling - run `just --list` for recipes. 2. Verify Rust toolchain. 3. Read AGENTS.md for repo-specific guidance before editing.",
)

_WHITESPACE_RE = re.compile(r"\s+")


class FilterState(str, Enum):
    NOT_STARTED = "not_started"
    IN_FLIGHT = "in_flight"
    READY = "ready"
    DISABLED = "disabled"


class BoilerplateResult(NamedTuple):
    kept: list[Insight]
    removed: int


def truncate_excerpt(text: str, max_length: int) -> str:
    """Collapse whitespace, trim, and cut to max_length characters."""
    normalized = _WHITESPACE_RE.sub(" ", text).strip()
    return normalized[:max_length]


class BoilerplateFilter:
    """
    Process-scoped boilerplate detector.

    One instance is shared by every pipeline call (see get_boilerplate_filter);
    the seed vectors are computed at most once per instance, and concurrent
    callers await the same in-flight initialization.
    """

    def __init__(
        self,
        embedder: EmbeddingBackend,
        config: Optional[FilterConfig] = None,
        seeds: tuple[str, ...] = BOILERPLATE_SEEDS,
    ):
        self.embedder = embedder
        self.config = config or get_settings().filter
        self.seeds = seeds

        self._state = FilterState.NOT_STARTED
        self._seed_matrix: Optional[np.ndarray] = None
        self._init_task: Optional[asyncio.Task] = None
        self._publish_state()

    @property
    def state(self) -> FilterState:
        return self._state

    def _set_state(self, state: FilterState) -> None:
        self._state = state
        self._publish_state()

    def _publish_state(self) -> None:
        set_boilerplate_filter_state(self._state.value, [s.value for s in FilterState])

    def _disable(self, error: Exception) -> None:
        if self._state is not FilterState.DISABLED:
            logger.warning(f"Reverie boilerplate filter disabled (embedding unavailable: {error})")
            track_backend_failure("embedding")
        self._set_state(FilterState.DISABLED)

    async def _embed(
        self, inputs: list[str], project_root: Optional[str]
    ) -> Optional[list[list[float]]]:
        """Embed texts; any failure permanently disables the filter and returns None."""
        if self._state is FilterState.DISABLED or not inputs:
            return None
        try:
            return await self.embedder.embed(inputs, project_root=project_root, normalize=True)
        except Exception as e:
            self._disable(e)
            return None

    async def _compute_seed_matrix(self, project_root: Optional[str]) -> None:
        vectors = await self._embed(list(self.seeds), project_root)
        if vectors is None:
            return
        try:
            self._seed_matrix = np.asarray(
                [v for v in vectors if len(v) > 0], dtype=np.float32
            )
        except ValueError as e:
            # Ragged seed vectors
            self._disable(e)
            return
        self._set_state(FilterState.READY)

    async def ensure_ready(self, project_root: Optional[str] = None) -> bool:
        """
        Initialize seed vectors if needed.

        Returns:
            bool: True if the filter can score excerpts, False if disabled
        """
        if self._state is FilterState.NOT_STARTED:
            self._set_state(FilterState.IN_FLIGHT)
            self._init_task = asyncio.ensure_future(self._compute_seed_matrix(project_root))

        if self._init_task is not None and not self._init_task.done():
            await asyncio.shield(self._init_task)

        return self._state is FilterState.READY

    async def filter(
        self,
        insights: list[Insight],
        project_root: Optional[str] = None,
        threshold: Optional[float] = None,
        max_excerpt_length: Optional[int] = None,
    ) -> BoilerplateResult:
        """
        Remove insights whose excerpt resembles a boilerplate seed.

        Args:
            insights: Candidates (order is preserved in `kept`)
            project_root: Repository passed through to the embedding backend
            threshold: Similarity cut-off (defaults to FILTER_BOILERPLATE_THRESHOLD)
            max_excerpt_length: Excerpt truncation before embedding

        Returns:
            BoilerplateResult: kept insights and removed count
        """
        if not insights:
            return BoilerplateResult(kept=[], removed=0)

        threshold = self.config.boilerplate_threshold if threshold is None else threshold
        max_length = max_excerpt_length or self.config.boilerplate_max_excerpt_length

        if not await self.ensure_ready(project_root):
            return BoilerplateResult(kept=list(insights), removed=0)

        seeds = self._seed_matrix
        if seeds is None or len(seeds) == 0:
            return BoilerplateResult(kept=list(insights), removed=0)

        batch = [truncate_excerpt(insight.excerpt, max_length) for insight in insights]
        vectors = await self._embed(batch, project_root)
        if vectors is None:
            return BoilerplateResult(kept=list(insights), removed=0)

        dimension = seeds.shape[1]
        mismatched = [len(v) for v in vectors if v and len(v) != dimension]
        if mismatched:
            self._disable(
                ValueError(f"excerpt vector dimension {mismatched[0]} does not match seed dimension {dimension}")
            )
            return BoilerplateResult(kept=list(insights), removed=0)

        kept: list[Insight] = []
        removed = 0
        for idx, insight in enumerate(insights):
            vector = vectors[idx] if idx < len(vectors) else None
            if not vector:
                kept.append(insight)
                continue

            max_similarity = float(np.max(seeds @ np.asarray(vector, dtype=np.float32)))
            if np.isfinite(max_similarity) and max_similarity >= threshold:
                removed += 1
            else:
                kept.append(insight)

        if removed > 0:
            logger.info(
                f"Reverie boilerplate filter removed {removed}/{len(insights)} excerpts "
                f"(threshold {threshold:.2f})"
            )
            track_boilerplate_removed(removed)

        return BoilerplateResult(kept=kept, removed=removed)


# Global filter instance (lazy-built on first use)
_boilerplate_filter: Optional[BoilerplateFilter] = None


def get_boilerplate_filter(embedder: Optional[EmbeddingBackend] = None) -> BoilerplateFilter:
    """
    Get the process-wide boilerplate filter (singleton pattern).

    Args:
        embedder: Embedding backend used when the filter is first built
            (defaults to the sentence-transformers EmbeddingService)

    Returns:
        BoilerplateFilter: Shared filter instance
    """
    global _boilerplate_filter
    if _boilerplate_filter is None:
        if embedder is None:
            from reverie.ingestion.embedding import get_embedding_service

            embedder = get_embedding_service()
        _boilerplate_filter = BoilerplateFilter(embedder)
    return _boilerplate_filter


def reset_boilerplate_filter() -> None:
    """Drop the shared filter (next call rebuilds it in NOT_STARTED)."""
    global _boilerplate_filter
    _boilerplate_filter = None
