"""
Excerpt quality filter for reverie retrieval.

Rejects excerpts that look like content but carry no task-specific
information: system prompts, instruction checklists, tool output, config
dumps, tagged blocks.

Uses:
- Hard rejects: each named predicate alone disqualifies an excerpt
- Weak signals: metadata-like traits; two or more together disqualify
- Purely structural text features (no model calls, no I/O)

Deterministic: the same excerpt always gets the same verdict.
"""

import re
from collections import Counter
from dataclasses import dataclass
from typing import Callable, NamedTuple, Optional

from reverie.models.insight import Insight, QualityFilterStats
from reverie.observability.reporting import log_hint_quality
from reverie.retrieval.dedup import deduplicate_insights

MIN_EXCERPT_LENGTH = 20
MAX_TAG_COUNT = 3
WEAK_SIGNAL_THRESHOLD = 2

_HEADING_RE = re.compile(r"^#{1,6}\s")
_BULLET_RE = re.compile(r"^\s*[\-\*]\s")
_NUMBERED_RE = re.compile(r"^\s*\d+[\).]")
_COLON_LABEL_RE = re.compile(r"^[A-Za-z0-9 _-]{1,24}:")
_NON_ALPHA_RE = re.compile(r"[^a-zA-Z]")
_TAG_RE = re.compile(r"<[^>]+>")
_BLOCK_TAG_RE = re.compile(r"^<([a-z0-9_\-]+)>[\s\S]*</\1>$", re.IGNORECASE)
_TRAILING_PERCENT_RE = re.compile(r"\(\d{2,3}%\)\s*$")
_JSON_OBJECT_RE = re.compile(r"^\{[\s\S]*\}$")
_JSON_ARRAY_RE = re.compile(r"^\[[\s\S]*\]$")
_JSON_KEY_RE = re.compile(r'"\w+"\s*:')


@dataclass(frozen=True)
class ExcerptFeatures:
    """Structural measurements of a trimmed excerpt."""

    text: str
    line_count: int
    token_count: int
    uppercase_ratio: float
    snake_token_count: int
    underscore_ratio: float
    heading_ratio: float
    bullet_ratio: float
    numbered_ratio: float
    enumerated_ratio: float
    colon_label_ratio: float
    initial_title_case_run: int
    repeated_token_ratio: float
    tag_count: int
    block_tag: Optional[str]

    @classmethod
    def from_text(cls, text: str) -> "ExcerptFeatures":
        trimmed = text.strip()
        lines = [line.strip() for line in re.split(r"\r?\n", trimmed)]
        lines = [line for line in lines if line]
        raw_tokens = trimmed.split()
        tokens = [token.lower() for token in raw_tokens]

        line_total = max(len(lines), 1)
        token_total = max(len(raw_tokens), 1)

        uppercase = 0
        for token in raw_tokens:
            alphabetic = _NON_ALPHA_RE.sub("", token)
            if len(alphabetic) >= 3 and alphabetic == alphabetic.upper():
                uppercase += 1

        snake = sum(1 for token in raw_tokens if "_" in token)
        headings = sum(1 for line in lines if _HEADING_RE.match(line))
        bullets = sum(1 for line in lines if _BULLET_RE.match(line))
        numbered = sum(1 for line in lines if _NUMBERED_RE.match(line))
        colon_labels = sum(1 for line in lines if _COLON_LABEL_RE.match(line))

        most_common = Counter(tokens).most_common(1)
        repeated = most_common[0][1] / len(tokens) if most_common else 0.0

        block_match = _BLOCK_TAG_RE.match(trimmed)

        return cls(
            text=trimmed,
            line_count=len(lines),
            token_count=len(raw_tokens),
            uppercase_ratio=uppercase / token_total,
            snake_token_count=snake,
            underscore_ratio=snake / token_total,
            heading_ratio=headings / line_total,
            bullet_ratio=bullets / line_total,
            numbered_ratio=numbered / line_total,
            enumerated_ratio=(bullets + numbered) / line_total,
            colon_label_ratio=colon_labels / line_total,
            initial_title_case_run=_initial_title_case_run(raw_tokens),
            repeated_token_ratio=repeated,
            tag_count=len(_TAG_RE.findall(trimmed)),
            block_tag=block_match.group(1).lower() if block_match else None,
        )


def _initial_title_case_run(raw_tokens: list[str]) -> int:
    """Count leading tokens that are Title-Case or ALL-CAPS (heading-like openings)."""
    run = 0
    for token in raw_tokens:
        cleaned = _NON_ALPHA_RE.sub("", token)
        if not cleaned:
            break
        rest = cleaned[1:]
        is_title_case = cleaned[0] == cleaned[0].upper() and rest == rest.lower()
        is_all_caps = len(cleaned) >= 2 and cleaned == cleaned.upper()
        if is_title_case or is_all_caps:
            run += 1
        else:
            break
    return run


class QualityPredicate(NamedTuple):
    """A named, independently testable check over excerpt features."""

    name: str
    check: Callable[[ExcerptFeatures], bool]


def _is_system_block(features: ExcerptFeatures) -> bool:
    tag = features.block_tag
    if tag is None:
        return False
    return "_" in tag or "system" in tag or "context" in tag or "env" in tag


# Any one of these disqualifies the excerpt.
HARD_REJECTS: list[QualityPredicate] = [
    QualityPredicate(
        "heavy_snake_case",
        lambda f: f.snake_token_count >= 2 and f.underscore_ratio > 0.15,
    ),
    QualityPredicate(
        "heading_dominated",
        lambda f: f.heading_ratio > 0.6 and f.line_count <= 4,
    ),
    QualityPredicate(
        "title_case_opening",
        lambda f: f.initial_title_case_run >= 3 and f.token_count <= 20,
    ),
    QualityPredicate(
        "enumerated_checklist",
        lambda f: f.enumerated_ratio > 0.6 and f.line_count >= 3,
    ),
    QualityPredicate("tag_heavy", lambda f: f.tag_count > MAX_TAG_COUNT),
    QualityPredicate("system_tag_block", _is_system_block),
    QualityPredicate(
        "trailing_percentage",
        lambda f: bool(_TRAILING_PERCENT_RE.search(f.text)),
    ),
    QualityPredicate(
        "json_file_payload",
        lambda f: f.text.startswith("{") and '"file"' in f.text,
    ),
    QualityPredicate(
        "json_like_payload",
        lambda f: bool(
            (_JSON_OBJECT_RE.match(f.text) or _JSON_ARRAY_RE.match(f.text))
            and _JSON_KEY_RE.search(f.text)
        ),
    ),
]

# Metadata-like traits; WEAK_SIGNAL_THRESHOLD or more together disqualify.
WEAK_SIGNALS: list[QualityPredicate] = [
    QualityPredicate("uppercase_tokens", lambda f: f.uppercase_ratio > 0.45),
    QualityPredicate("snake_case_tokens", lambda f: f.underscore_ratio > 0.2),
    QualityPredicate("bullet_lines", lambda f: f.bullet_ratio > 0.7),
    QualityPredicate(
        "colon_label_lines",
        lambda f: f.colon_label_ratio > 0.6 or (f.line_count <= 2 and f.colon_label_ratio > 0),
    ),
    QualityPredicate("title_case_run", lambda f: f.initial_title_case_run >= 3),
    QualityPredicate(
        "repeated_token",
        lambda f: f.repeated_token_ratio > 0.45 and f.token_count > 15,
    ),
    QualityPredicate(
        "short_labelled_text",
        lambda f: f.token_count < 12 and f.colon_label_ratio > 0,
    ),
    QualityPredicate("numbered_lines", lambda f: f.numbered_ratio > 0.5),
]


def explain_rejection(excerpt: Optional[str]) -> list[str]:
    """
    Name every predicate that fires for an excerpt.

    Returns:
        list[str]: Fired hard-reject names, plus fired weak-signal names when
        the weak-signal count reaches the threshold. Empty means valid.
    """
    if not excerpt or len(excerpt.strip()) < MIN_EXCERPT_LENGTH:
        return ["too_short"]

    features = ExcerptFeatures.from_text(excerpt)
    if features.token_count == 0:
        return ["too_short"]

    reasons = [p.name for p in HARD_REJECTS if p.check(features)]

    weak = [p.name for p in WEAK_SIGNALS if p.check(features)]
    if len(weak) >= WEAK_SIGNAL_THRESHOLD:
        reasons.extend(weak)

    return reasons


def is_valid_reverie_excerpt(excerpt: Optional[str]) -> bool:
    """
    Decide whether an excerpt carries meaningful, task-specific content.

    Args:
        excerpt: Conversation excerpt text

    Returns:
        bool: True if the excerpt should be kept

    Example:
        >>> is_valid_reverie_excerpt("Let's refactor the auth module to use async/await")
        True
        >>> is_valid_reverie_excerpt("too short")
        False
    """
    return not explain_rejection(excerpt)


def filter_valid_insights(insights: list[Insight]) -> list[Insight]:
    """Keep insights whose excerpt passes the quality filter, preserving order."""
    return [insight for insight in insights if is_valid_reverie_excerpt(insight.excerpt)]


def apply_quality_pipeline(
    insights: list[Insight], limit: int = 10
) -> tuple[list[Insight], QualityFilterStats]:
    """
    Lightweight pipeline: quality filter, deduplicate, truncate.

    Args:
        insights: Raw insights from search
        limit: Maximum number of insights to return

    Returns:
        tuple: (insights sorted by relevance, stats)
    """
    if limit < 0:
        raise ValueError(f"limit must be >= 0, got {limit}")

    stats = QualityFilterStats(initial=len(insights))

    valid = filter_valid_insights(insights)
    stats.after_validity_filter = len(valid)

    deduplicated = deduplicate_insights(valid)
    stats.after_deduplication = len(deduplicated)

    final = deduplicated[:limit]
    stats.final = len(final)

    log_hint_quality(stats.initial, stats.after_validity_filter, stats.after_deduplication)
    return final, stats
