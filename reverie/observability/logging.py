"""
Structured logging for reverie pipelines.

Features:
- JSON output for log aggregation, console output for terminals
- Search context propagation (search_id, search_level, repo_path)
- Credential redaction (API keys never reach the logs)
- Operation timing via OperationContext

Architecture:
- structlog for structured logging
- Context variables for search-scoped data (async-safe)
- stdlib loggers in library modules share the same processor chain
"""

import logging
import sys
import time
import uuid
from contextvars import ContextVar

import structlog
from structlog.types import EventDict, Processor

# Context variables for search-scoped data
# These propagate across async boundaries automatically
search_id_var: ContextVar[str | None] = ContextVar("search_id", default=None)
search_level_var: ContextVar[str | None] = ContextVar("search_level", default=None)
repo_path_var: ContextVar[str | None] = ContextVar("repo_path", default=None)

# Root handler installed by configure_logging (replaced on reconfiguration)
_handler: logging.Handler | None = None


# ============================================================================
# CUSTOM PROCESSORS
# ============================================================================


def add_search_context(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Add search context to log events.

    Injects:
    - search_id: Unique ID for one pipeline run
    - search_level: project, branch or file (multi-level searches only)
    - repo_path: Repository the search is scoped to
    """
    search_id = search_id_var.get()
    if search_id:
        event_dict["search_id"] = search_id

    search_level = search_level_var.get()
    if search_level:
        event_dict["search_level"] = search_level

    repo_path = repo_path_var.get()
    if repo_path:
        event_dict["repo_path"] = repo_path

    return event_dict


def add_timestamp(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add ISO 8601 timestamp with microsecond precision (2026-01-15T10:30:45.123456Z)."""
    event_dict["timestamp"] = (
        time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime())
        + f".{int((time.time() % 1) * 1000000):06d}Z"
    )
    return event_dict


def add_service_metadata(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Add service metadata for log aggregation.

    Configured via LOGGING_SERVICE_NAME, LOGGING_SERVICE_VERSION and
    LOGGING_ENVIRONMENT.
    """
    # Import here to avoid circular dependency
    from reverie.config import get_settings

    settings = get_settings()
    event_dict["service"] = settings.logging.service_name
    event_dict["version"] = settings.logging.service_version
    event_dict["environment"] = settings.logging.environment
    return event_dict


def redact_sensitive_fields(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Redact credentials before they are rendered.

    Keys longer than 12 characters keep a short prefix and suffix for
    debugging; anything shorter is fully masked.
    """
    sensitive_fields = {
        "api_key",
        "openrouter_api_key",
        "authorization",
        "secret",
        "token",
    }

    for key in list(event_dict.keys()):
        if key.lower() in sensitive_fields:
            value = event_dict[key]
            if isinstance(value, str):
                if len(value) > 12:
                    event_dict[key] = f"{value[:12]}***{value[-3:]}"
                else:
                    event_dict[key] = "***REDACTED***"

    return event_dict


def add_exception_info(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add exception_type / exception_message for error aggregation."""
    exc_info = event_dict.get("exc_info")
    if exc_info and isinstance(exc_info, tuple) and len(exc_info) == 3:
        exc_type, exc_value, _ = exc_info
        event_dict["exception_type"] = exc_type.__name__ if exc_type else "Unknown"
        event_dict["exception_message"] = str(exc_value) if exc_value else ""

    return event_dict


# ============================================================================
# LOGGER CONFIGURATION
# ============================================================================


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = False,
    colorized: bool = False,
) -> None:
    """
    Configure structured logging.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Use JSON output (True for aggregation, False for terminals)
        colorized: Colorize console output (only for non-JSON output)

    Console output:
        2026-01-15 10:30:45 [info] Reverie search started
            search_id=srch_abc123 search_level=branch repo_path=/work/app
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_search_context,
        add_service_metadata,
        redact_sensitive_fields,
        add_timestamp,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        add_exception_info,
    ]

    if json_output:
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=colorized)

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # stdlib records from library modules run through the same chain
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )

    global _handler
    root_logger = logging.getLogger()
    if _handler is not None:
        root_logger.removeHandler(_handler)
    _handler = logging.StreamHandler(sys.stdout)
    _handler.setFormatter(formatter)
    root_logger.addHandler(_handler)
    root_logger.setLevel(getattr(logging, log_level.upper()))


def configure_logging_from_settings() -> None:
    """Configure logging from LOGGING_* settings."""
    from reverie.config import get_settings

    config = get_settings().logging
    configure_logging(
        log_level=config.level,
        json_output=config.json_output,
        colorized=config.colorized,
    )


# ============================================================================
# LOGGER FACTORY
# ============================================================================


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("Pipeline finished", insights=4, latency_ms=812.5)
    """
    return structlog.get_logger(name)


# ============================================================================
# CONTEXT MANAGERS
# ============================================================================


class SearchLogContext:
    """
    Context manager binding search-scoped logging fields for one pipeline run.

    Usage:
        with SearchLogContext(repo_path="/work/app", search_level="branch"):
            result = await apply_pipeline(...)

    Nested contexts restore the outer values on exit.
    """

    def __init__(
        self,
        repo_path: str | None = None,
        search_level: str | None = None,
        search_id: str | None = None,
    ):
        self.search_id = search_id or f"srch_{uuid.uuid4().hex[:16]}"
        self.search_level = search_level
        self.repo_path = repo_path

        self._search_id_token = None
        self._search_level_token = None
        self._repo_path_token = None

    def __enter__(self):
        self._search_id_token = search_id_var.set(self.search_id)
        self._search_level_token = search_level_var.set(self.search_level)
        self._repo_path_token = repo_path_var.set(self.repo_path)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._search_id_token is not None:
            search_id_var.reset(self._search_id_token)
        if self._search_level_token is not None:
            search_level_var.reset(self._search_level_token)
        if self._repo_path_token is not None:
            repo_path_var.reset(self._repo_path_token)


class OperationContext:
    """
    Context manager for operation-level logging with timing.

    Usage:
        with OperationContext("episode_search", limit=24):
            await search_episode_summaries(...)
        # Logs: "episode_search completed" with latency_ms
    """

    def __init__(self, operation: str, **kwargs):
        self.operation = operation
        self.context = kwargs
        self.logger = get_logger(f"operation.{operation}")
        self.start_time = None
        self.duration_ms: float | None = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        self.logger.debug(f"{self.operation} started", **self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.perf_counter() - self.start_time) * 1000

        if exc_type is None:
            self.logger.info(
                f"{self.operation} completed",
                latency_ms=round(self.duration_ms, 2),
                **self.context,
            )
        else:
            self.logger.error(
                f"{self.operation} failed",
                latency_ms=round(self.duration_ms, 2),
                exception_type=exc_type.__name__,
                **self.context,
                exc_info=True,
            )

