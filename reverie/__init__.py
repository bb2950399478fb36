"""
Reverie - insight retrieval from episodic conversation memory.

Surface a short, high-precision list of past-conversation excerpts
relevant to the task at hand, instead of raw semantic-search hits.

Reverie over-fetches candidates from a semantic index, then narrows them
with structural quality heuristics, embedding-based boilerplate rejection,
deduplication, episode-importance re-ranking and a cheap LLM relevance
grader, at project, branch and file scope.

Key Features:
    - Multi-stage filtering with per-stage statistics
    - Fail-open boilerplate detection, fail-closed LLM grading
    - Project/branch/file multi-level search

Example:
    >>> from reverie import get_settings
    >>> settings = get_settings()
    >>> print(settings.search.limit)
"""

from reverie.config import get_settings

__all__ = ["get_settings"]
