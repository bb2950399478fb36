"""
Near-duplicate removal for reverie insights.

Two insights are duplicates when the first 100 characters of their
excerpts match after lowercasing and whitespace collapsing. The
higher-relevance copy survives.
"""

import re

from reverie.models.insight import Insight

FINGERPRINT_CHARS = 100

_WHITESPACE_RE = re.compile(r"\s+")


def excerpt_fingerprint(excerpt: str) -> str:
    """Lowercased, whitespace-collapsed prefix of an excerpt."""
    return _WHITESPACE_RE.sub(" ", excerpt[:FINGERPRINT_CHARS].lower())


def deduplicate_insights(insights: list[Insight]) -> list[Insight]:
    """
    Keep one insight per fingerprint, preferring the highest relevance.

    Ties keep the first occurrence. Output is sorted by relevance
    descending (stable, so equal scores keep their input order).

    Args:
        insights: Candidate insights in any order

    Returns:
        list[Insight]: Unique insights, most relevant first
    """
    by_fingerprint: dict[str, Insight] = {}

    for insight in insights:
        key = excerpt_fingerprint(insight.excerpt)
        existing = by_fingerprint.get(key)
        if existing is None or insight.relevance > existing.relevance:
            by_fingerprint[key] = insight

    return sorted(by_fingerprint.values(), key=lambda i: i.relevance, reverse=True)
