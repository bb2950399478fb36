"""
Resilience patterns for external dependencies.

External failures are contained at the call site; retries smooth over
transient LLM transport errors.
"""

from reverie.resilience.retry import ExternalServiceError, with_retry

__all__ = [
    "ExternalServiceError",
    "with_retry",
]
