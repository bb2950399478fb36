"""
Full reverie filtering pipeline.

Fixed stage order:

    search -> quality filter -> boilerplate filter -> relevance split
    -> LLM grading (or pass-through) -> dedup -> truncate to limit

Candidates below the grading threshold are always discarded, whether or
not grading runs. Stage counts never increase from one stage to the next.
"""

import logging
import time
from pathlib import Path
from typing import Any, Optional

from pydantic import Field

from reverie.config import Settings, get_settings
from reverie.gating.grader import ClassifierRunner, grade_reveries_in_parallel
from reverie.models.insight import FilterStats, PipelineResult
from reverie.observability.logging import OperationContext, SearchLogContext
from reverie.observability.metrics import track_pipeline_run
from reverie.observability.reporting import (
    log_approved_insights,
    log_filtering_report,
    log_grading_report,
    log_search_start,
    log_top_insights,
)
from reverie.retrieval.dedup import deduplicate_insights
from reverie.retrieval.quality import filter_valid_insights
from reverie.retrieval.search import ReverieSearch, SearchOptions

logger = logging.getLogger(__name__)


class PipelineOptions(SearchOptions):
    """Retrieval options plus grading controls (FILTER_* defaults)."""

    min_relevance_for_grading: float = Field(default=0.7, ge=0.0, le=1.0)
    skip_llm_grading: bool = False
    parallel_grading: bool = True

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **overrides: Any) -> "PipelineOptions":
        settings = settings or get_settings()
        search = SearchOptions.from_config(settings.search)
        values = search.model_dump()
        values.update(
            min_relevance_for_grading=settings.filter.min_relevance_for_grading,
            skip_llm_grading=settings.filter.skip_llm_grading,
            parallel_grading=settings.filter.parallel_grading,
        )
        values.update(overrides)
        return cls(**values)


async def apply_pipeline(
    gateway: ReverieSearch,
    codex_home: Path | str,
    search_text: str,
    repo: Optional[str],
    runner: Optional[ClassifierRunner] = None,
    options: Optional[PipelineOptions] = None,
    level: Optional[str] = None,
) -> PipelineResult:
    """
    Run the full pipeline for one query.

    Args:
        gateway: Search gateway (also supplies the shared boilerplate filter)
        codex_home: Corpus root
        search_text: Query text
        repo: Repository root
        runner: Classifier runner; None skips grading
        options: Pipeline options (settings defaults when omitted)
        level: Search level label for logs and metrics

    Returns:
        PipelineResult: At most `options.limit` insights plus stage counts
    """
    options = options or PipelineOptions.from_settings(gateway.settings)
    start = time.perf_counter()

    with SearchLogContext(repo_path=repo, search_level=level):
        log_search_start(search_text, f"repo: {repo}")

        raw = await gateway.search_reveries(
            codex_home,
            search_text,
            repo,
            SearchOptions(**options.model_dump(include=set(SearchOptions.model_fields))),
        )
        stats = FilterStats(total=len(raw))

        valid = filter_valid_insights(raw)
        stats.after_quality = len(valid)

        conversational = (await gateway.boilerplate.filter(valid, project_root=repo)).kept
        stats.after_boilerplate = len(conversational)

        threshold = options.min_relevance_for_grading
        high_scoring = [i for i in conversational if i.relevance >= threshold]
        stats.after_score = len(high_scoring)

        if options.skip_llm_grading or runner is None:
            graded = high_scoring
        else:
            with OperationContext("llm_grading", candidates=len(high_scoring)):
                graded = await grade_reveries_in_parallel(
                    runner,
                    search_text,
                    high_scoring,
                    min_relevance=threshold,
                    parallel=options.parallel_grading,
                )
            log_grading_report(len(high_scoring), len(graded), threshold)
            if graded:
                log_approved_insights(graded)
        stats.after_llm_grade = len(graded)

        deduplicated = deduplicate_insights(graded)
        stats.after_dedup = len(deduplicated)

        final = deduplicated[: options.limit]
        stats.final = len(final)

        log_filtering_report(stats, threshold)
        log_top_insights(final)

    track_pipeline_run(
        level or "default",
        time.perf_counter() - start,
        {
            "total": stats.total,
            "quality": stats.after_quality,
            "boilerplate": stats.after_boilerplate,
            "score": stats.after_score,
            "llm_grade": stats.after_llm_grade,
            "dedup": stats.after_dedup,
            "final": stats.final,
        },
    )
    return PipelineResult(insights=final, stats=stats, query=search_text)


async def apply_file_pipeline(
    gateway: ReverieSearch,
    codex_home: Path | str,
    search_text: str,
    repo: Optional[str],
    runner: Optional[ClassifierRunner] = None,
    options: Optional[PipelineOptions] = None,
) -> PipelineResult:
    """
    Run the pipeline with a narrower candidate pool for file-level queries.

    max_candidates is divided by SEARCH_FILE_CANDIDATE_DIVISOR (floor, at least 1).
    """
    options = options or PipelineOptions.from_settings(gateway.settings)
    divisor = gateway.settings.search.file_candidate_divisor
    file_options = options.model_copy(
        update={"max_candidates": max(options.max_candidates // divisor, 1)}
    )
    return await apply_pipeline(
        gateway, codex_home, search_text, repo, runner, file_options, level="file"
    )
