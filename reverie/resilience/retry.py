"""
Retry and failure containment for external services.

Every external collaborator (semantic index, embedding model, LLM) can fail.
Adapters raise ExternalServiceError; pipeline stages catch it at the call
site and degrade (empty results, pass-through, or reject) instead of
propagating it.

Transient failures are retried with exponential backoff before they surface.
"""

import logging

from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)


class ExternalServiceError(Exception):
    """An external backend (search, embedding, LLM) is unavailable or failed."""

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(f"{service}: {message}")


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    fn_name = getattr(retry_state.fn, "__name__", "call")
    logger.warning(
        f"{fn_name} failed ({exc.__class__.__name__ if exc else 'unknown'}), "
        f"retrying (attempt {retry_state.attempt_number})"
    )


def with_retry(
    max_attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 10,
    exceptions: tuple[type[Exception], ...] = (Exception,),
):
    """
    Retry decorator with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts (including the first)
        min_wait: Minimum wait time in seconds
        max_wait: Maximum wait time in seconds
        exceptions: Exception types to retry on

    Returns:
        Retry decorator (works for sync and async callables)

    Usage:
        @with_retry(max_attempts=3, exceptions=(APIConnectionError,))
        async def classify():
            return await client.chat.completions.create(...)
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(exceptions),
        before_sleep=_log_retry,
        reraise=True,
    )
