"""
Observability for reverie pipelines.

Components:
- metrics.py: Prometheus metrics (runs, stage counts, grading, backend failures)
- logging.py: Structured logging with search context
- reporting.py: Human-readable pipeline reports

The host process calls configure_logging_from_settings() once at startup.
"""

from reverie.observability.logging import (
    SearchLogContext,
    configure_logging,
    configure_logging_from_settings,
)
from reverie.observability.metrics import (
    generate_metrics,
    track_backend_failure,
    track_boilerplate_removed,
    track_grading_decision,
    track_pipeline_run,
)

__all__ = [
    "SearchLogContext",
    "configure_logging",
    "configure_logging_from_settings",
    "generate_metrics",
    "track_backend_failure",
    "track_boilerplate_removed",
    "track_grading_decision",
    "track_pipeline_run",
]
