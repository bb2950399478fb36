"""
Human-readable pipeline reports.

Each report has a pure `format_*` function (returns the text) and a
`log_*` wrapper that emits it at INFO. Pipeline modules call the `log_*`
wrappers; tests assert on the `format_*` output.
"""

import logging
import re
from collections.abc import Mapping

from reverie.models.context import SearchLevel
from reverie.models.insight import FilterStats, Insight, PipelineResult

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")


def _truncate(text: str, max_length: int) -> str:
    if not text:
        return ""
    return f"{text[:max_length]}..." if len(text) > max_length else text


def _level_name(level: SearchLevel | str) -> str:
    return level.value if isinstance(level, SearchLevel) else str(level)


# ============================================================================
# SINGLE-PIPELINE REPORTS
# ============================================================================


def format_search_start(query: str, context: str | None = None) -> str:
    context_str = f" ({context})" if context else ""
    return f'Reverie search{context_str}: "{query}"'


def format_filtering_report(stats: FilterStats, min_score: float = 0.7) -> str:
    """
    Stage-by-stage filtering summary.

    Example:
        40 raw -> 31 valid -> 28 conversational -> 9 high-scoring (>=0.7) -> 7 unique
        (filtered: 9 low-quality, 3 boilerplate, 19 low-score, 2 duplicates)
    """
    quality_filtered = stats.total - stats.after_quality
    boilerplate_filtered = stats.after_quality - stats.after_boilerplate
    score_filtered = stats.after_boilerplate - stats.after_score
    graded = stats.after_llm_grade if stats.after_llm_grade is not None else stats.after_score
    duplicates_filtered = graded - stats.after_dedup

    return (
        f"Reverie filtering: {stats.total} raw -> {stats.after_quality} valid -> "
        f"{stats.after_boilerplate} conversational -> {stats.after_score} high-scoring "
        f"(>={min_score}) -> {stats.after_dedup} unique "
        f"(filtered: {quality_filtered} low-quality, {boilerplate_filtered} boilerplate, "
        f"{score_filtered} low-score, {duplicates_filtered} duplicates)"
    )


def format_grading_report(total: int, approved: int, min_score: float = 0.7) -> str:
    rejected = total - approved
    approval_rate = round(approved / total * 100) if total > 0 else 0
    return (
        f"LLM grading: {approved}/{total} approved ({approval_rate}%) "
        f"[high-scoring >={min_score}, rejected {rejected}]"
    )


def format_approved_insights(insights: list[Insight], max_to_show: int = 5) -> list[str]:
    """Preview lines for insights that passed grading."""
    if not insights:
        return ["No reveries passed LLM grading"]

    lines = [f"{len(insights)} reveries approved by LLM:"]
    for i, insight in enumerate(insights[:max_to_show], start=1):
        preview = _truncate(_WHITESPACE_RE.sub(" ", insight.excerpt).strip(), 200)
        label = insight.insights[0] if insight.insights else "Context from past work"
        lines.append(f"  {i}. [{insight.relevance:.2f}] {label}")
        lines.append(f'     "{preview}"')

    if len(insights) > max_to_show:
        lines.append(f"... and {len(insights) - max_to_show} more")
    return lines


def format_top_insights(insights: list[Insight], limit: int = 3) -> list[str]:
    if not insights:
        return ["No reverie insights found"]

    shown = insights[:limit]
    lines = [f"Top {len(shown)} reverie insights:"]
    for i, insight in enumerate(shown, start=1):
        score = f"{round(insight.relevance * 100)}%"
        lines.append(f"  {i}. [{score}] {_truncate(insight.excerpt, 150)}")
        if insight.insights:
            lines.append(f"     -> {_truncate(insight.insights[0], 100)}")
    return lines


def format_hint_quality(total_raw: int, after_quality: int, after_dedup: int) -> str | None:
    """Quality-pipeline summary; None when there was nothing to filter."""
    if total_raw <= 0:
        return None
    return (
        f"Reverie hint quality: {total_raw} raw -> {after_quality} valid -> {after_dedup} unique "
        f"(filtered {total_raw - after_quality} low-quality, "
        f"{after_quality - after_dedup} duplicates)"
    )


def log_search_start(query: str, context: str | None = None) -> None:
    logger.info(format_search_start(query, context))


def log_filtering_report(stats: FilterStats, min_score: float = 0.7) -> None:
    logger.info(format_filtering_report(stats, min_score))


def log_grading_report(total: int, approved: int, min_score: float = 0.7) -> None:
    logger.info(format_grading_report(total, approved, min_score))


def log_approved_insights(insights: list[Insight], max_to_show: int = 5) -> None:
    for line in format_approved_insights(insights, max_to_show):
        logger.info(line)


def log_top_insights(insights: list[Insight], limit: int = 3) -> None:
    for line in format_top_insights(insights, limit):
        logger.info(line)


def log_hint_quality(total_raw: int, after_quality: int, after_dedup: int) -> None:
    message = format_hint_quality(total_raw, after_quality, after_dedup)
    if message:
        logger.info(message)


# ============================================================================
# MULTI-LEVEL REPORTS
# ============================================================================


def format_multi_level_start(levels: list[SearchLevel]) -> str:
    if not levels:
        return "Multi-level reverie search: (no levels specified)"
    return "Multi-level reverie search: " + " -> ".join(_level_name(level) for level in levels)


def format_level_results(level: SearchLevel | str, result: PipelineResult) -> list[str]:
    """Per-level result line, plus a stage breakdown when anything was filtered."""
    stats = result.stats
    name = _level_name(level).capitalize()
    lines = [
        f"{name} level: {len(result.insights)} insights "
        f"({stats.total} -> {stats.final}, {stats.filtered_percentage}% filtered)"
    ]

    if stats.total > 0:
        quality_filtered = stats.total - stats.after_quality
        score_filtered = stats.after_quality - stats.after_score
        dedup_filtered = stats.after_score - (stats.after_dedup or stats.after_score)
        if quality_filtered > 0 or score_filtered > 0 or dedup_filtered > 0:
            lines.append(
                f"  Quality: -{quality_filtered}, Score: -{score_filtered}, Dedup: -{dedup_filtered}"
            )
    return lines


def format_multi_level_summary(results: Mapping[SearchLevel, PipelineResult]) -> list[str]:
    total_insights = sum(len(r.insights) for r in results.values())
    total_processed = sum(r.stats.total for r in results.values())
    breakdown = ", ".join(
        f"{_level_name(level)}: {len(result.insights)}" for level, result in results.items()
    )
    return [
        f"Multi-level search complete: {total_insights} total insights "
        f"(processed {total_processed} candidates across {len(results)} levels)",
        f"Breakdown: {breakdown}",
    ]


def log_multi_level_start(levels: list[SearchLevel]) -> None:
    logger.info(format_multi_level_start(levels))


def log_level_results(level: SearchLevel | str, result: PipelineResult) -> None:
    for line in format_level_results(level, result):
        logger.info(line)


def log_multi_level_summary(results: Mapping[SearchLevel, PipelineResult]) -> None:
    for line in format_multi_level_summary(results):
        logger.info(line)
