"""
Multi-level reverie search.

Runs the pipeline once per search context (project, branch, file),
sequentially and in the order given, and collects the results per level.
"""

import logging
from pathlib import Path
from typing import Optional

from reverie.gating.grader import ClassifierRunner
from reverie.models.context import (
    BranchContext,
    FileContext,
    ProjectContext,
    SearchContext,
    SearchLevel,
)
from reverie.models.insight import PipelineResult
from reverie.observability.reporting import (
    log_level_results,
    log_multi_level_start,
    log_multi_level_summary,
)
from reverie.retrieval.context import context_to_query
from reverie.retrieval.pipeline import PipelineOptions, apply_file_pipeline, apply_pipeline
from reverie.retrieval.search import ReverieSearch

logger = logging.getLogger(__name__)


async def search_project_level(
    gateway: ReverieSearch,
    codex_home: Path | str,
    context: ProjectContext,
    runner: Optional[ClassifierRunner],
    options: PipelineOptions,
) -> PipelineResult:
    """Project scope: relevance is diffuse, so widen the candidate pool."""
    scale = gateway.settings.search.project_candidate_scale
    project_options = options.model_copy(
        update={"max_candidates": max(int(options.max_candidates * scale), 1)}
    )
    return await apply_pipeline(
        gateway,
        codex_home,
        context_to_query(context),
        context.repo_path,
        runner,
        project_options,
        level=SearchLevel.PROJECT.value,
    )


async def search_branch_level(
    gateway: ReverieSearch,
    codex_home: Path | str,
    context: BranchContext,
    runner: Optional[ClassifierRunner],
    options: PipelineOptions,
) -> PipelineResult:
    return await apply_pipeline(
        gateway,
        codex_home,
        context_to_query(context),
        context.repo_path,
        runner,
        options,
        level=SearchLevel.BRANCH.value,
    )


async def search_file_level(
    gateway: ReverieSearch,
    codex_home: Path | str,
    context: FileContext,
    runner: Optional[ClassifierRunner],
    options: PipelineOptions,
) -> PipelineResult:
    return await apply_file_pipeline(
        gateway,
        codex_home,
        context_to_query(context),
        context.repo_path,
        runner,
        options,
    )


async def search_multi_level(
    gateway: ReverieSearch,
    codex_home: Path | str,
    contexts: list[SearchContext],
    runner: Optional[ClassifierRunner] = None,
    options: Optional[PipelineOptions] = None,
) -> dict[SearchLevel, PipelineResult]:
    """
    Search each context in turn.

    Args:
        gateway: Search gateway
        codex_home: Corpus root
        contexts: Contexts to search, in order
        runner: Classifier runner; None skips grading
        options: Base pipeline options (settings defaults when omitted)

    Returns:
        dict: SearchLevel -> PipelineResult, in search order. A level given
        twice keeps its last result.
    """
    options = options or PipelineOptions.from_settings(gateway.settings)
    log_multi_level_start([context.level for context in contexts])

    results: dict[SearchLevel, PipelineResult] = {}
    for context in contexts:
        if isinstance(context, ProjectContext):
            result = await search_project_level(gateway, codex_home, context, runner, options)
        elif isinstance(context, BranchContext):
            result = await search_branch_level(gateway, codex_home, context, runner, options)
        elif isinstance(context, FileContext):
            result = await search_file_level(gateway, codex_home, context, runner, options)
        else:
            raise TypeError(f"Unsupported search context: {type(context).__name__}")

        results[context.level] = result
        log_level_results(context.level, result)

    log_multi_level_summary(results)
    return results
