"""
Prometheus metrics for reverie pipelines.

Metrics tracked:
- Pipeline runs (counter) by search level
- Surviving candidates per stage (histogram)
- Pipeline latency (histogram)
- LLM grading decisions (counter) by outcome
- External backend failures (counter) by service
- Boilerplate filter state (gauge)
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# ============================================================================
# PIPELINE METRICS
# ============================================================================

pipeline_runs_total = Counter(
    "reverie_pipeline_runs_total",
    "Total pipeline runs",
    labelnames=["level"],
)

pipeline_duration_seconds = Histogram(
    "reverie_pipeline_duration_seconds",
    "End-to-end pipeline latency in seconds",
    labelnames=["level"],
    buckets=(
        0.050,  # 50ms (no grading, warm model)
        0.100,
        0.250,
        0.500,
        1.000,
        2.500,
        5.000,  # typical with parallel grading
        10.000,
        30.000,
    ),
)

# Candidates surviving each stage (total, quality, boilerplate, score, llm_grade, dedup, final)
stage_candidates = Histogram(
    "reverie_stage_candidates",
    "Candidates surviving each pipeline stage",
    labelnames=["stage"],
    buckets=(0, 1, 5, 10, 25, 50, 100, 250, 500),
)

# ============================================================================
# GRADING METRICS
# ============================================================================

grading_decisions_total = Counter(
    "reverie_grading_decisions_total",
    "LLM relevance grading decisions",
    labelnames=["outcome"],  # approved, rejected, failed
)

# ============================================================================
# BACKEND METRICS
# ============================================================================

backend_failures_total = Counter(
    "reverie_backend_failures_total",
    "External backend failures contained at the call site",
    labelnames=["service"],  # semantic_search, keyword_search, embedding, episodes, llm
)

boilerplate_filter_state = Gauge(
    "reverie_boilerplate_filter_state",
    "Boilerplate filter state (1 for the current state, 0 otherwise)",
    labelnames=["state"],
)

boilerplate_removed_total = Counter(
    "reverie_boilerplate_removed_total",
    "Excerpts removed as boilerplate",
)

# ============================================================================
# HELPER FUNCTIONS
# ============================================================================


def track_pipeline_run(level: str, duration_seconds: float, stage_counts: dict[str, int]) -> None:
    """
    Track one completed pipeline run.

    Args:
        level: Search level (project, branch, file, or "default")
        duration_seconds: Pipeline latency
        stage_counts: Surviving candidates keyed by stage name
    """
    pipeline_runs_total.labels(level=level).inc()
    pipeline_duration_seconds.labels(level=level).observe(duration_seconds)

    for stage, count in stage_counts.items():
        stage_candidates.labels(stage=stage).observe(count)


def track_grading_decision(outcome: str) -> None:
    """Track one grading decision (approved, rejected, failed)."""
    grading_decisions_total.labels(outcome=outcome).inc()


def track_backend_failure(service: str) -> None:
    """Track a contained external backend failure."""
    backend_failures_total.labels(service=service).inc()


def track_boilerplate_removed(count: int) -> None:
    """Track excerpts removed by the boilerplate filter."""
    if count > 0:
        boilerplate_removed_total.inc(count)


def set_boilerplate_filter_state(state: str, all_states: list[str]) -> None:
    """
    Set the boilerplate filter state gauge.

    Args:
        state: Current state name
        all_states: Every state name (non-current ones are zeroed)
    """
    for name in all_states:
        boilerplate_filter_state.labels(state=name).set(1 if name == state else 0)


def generate_metrics() -> tuple[bytes, str]:
    """
    Generate Prometheus metrics in exposition format (bytes).

    Returns:
        tuple: (metrics_bytes, content_type)
    """
    metrics_data = generate_latest(REGISTRY)
    return metrics_data, CONTENT_TYPE_LATEST
