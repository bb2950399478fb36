"""
Insight data models for reverie retrieval.

Defines the transient records that flow through the filtering pipeline:
search matches from the semantic index, the flattened insights derived from
them, per-stage filter statistics and LLM grading decisions.

Design Decision: Nothing here is persisted. Insights are created per
pipeline call and handed to the caller.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ConversationMeta(BaseModel):
    """Metadata for a past conversation transcript as reported by the search index."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = Field(default=None, description="Conversation identifier")
    path: Optional[str] = Field(default=None, description="Transcript location in the corpus")
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")


class SearchMatch(BaseModel):
    """
    Single result from the semantic or keyword search service.

    Scores are taken as reported; they are normalized to [0, 1] only when the
    match is converted into insights.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    conversation: Optional[ConversationMeta] = None
    relevance_score: Optional[float] = Field(default=None, alias="relevanceScore")
    matching_excerpts: list[str] = Field(default_factory=list, alias="matchingExcerpts")
    insights: list[str] = Field(default_factory=list)
    reranker_score: Optional[float] = Field(default=None, alias="rerankerScore")

    @field_validator("relevance_score", mode="before")
    @classmethod
    def coerce_score(cls, v):
        """Non-numeric scores from the backend count as missing."""
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return None
        return float(v)

    @field_validator("matching_excerpts", "insights", mode="before")
    @classmethod
    def coerce_text_list(cls, v):
        if not isinstance(v, list):
            return []
        return [item for item in v if isinstance(item, str)]


class Insight(BaseModel):
    """
    A scored excerpt of a past conversation believed relevant to a query.

    `relevance` is always within [0, 1].
    """

    conversation_id: str = Field(..., description="Conversation the excerpt came from")
    timestamp: str = Field(..., description="ISO timestamp of the conversation")
    relevance: float = Field(..., ge=0.0, le=1.0)
    excerpt: str = Field(default="")
    insights: list[str] = Field(default_factory=list)


class FilterStats(BaseModel):
    """
    Candidate counts after each pipeline stage.

    Counts never increase from left to right.
    """

    total: int = Field(default=0, ge=0)
    after_quality: int = Field(default=0, ge=0)
    after_boilerplate: int = Field(default=0, ge=0)
    after_score: int = Field(default=0, ge=0)
    after_dedup: int = Field(default=0, ge=0)
    after_llm_grade: Optional[int] = Field(default=None, ge=0)
    final: int = Field(default=0, ge=0)

    def stage_counts(self) -> list[int]:
        """Stage counts in pipeline order (grading stage omitted when it did not run)."""
        counts = [self.total, self.after_quality, self.after_boilerplate, self.after_score]
        if self.after_llm_grade is not None:
            counts.append(self.after_llm_grade)
        counts.extend([self.after_dedup, self.final])
        return counts

    @property
    def filtered_percentage(self) -> int:
        if self.total == 0:
            return 0
        return round((self.total - self.final) / self.total * 100)


class QualityFilterStats(BaseModel):
    """Statistics from the lightweight quality pipeline (validity + dedup only)."""

    initial: int = Field(default=0, ge=0)
    after_validity_filter: int = Field(default=0, ge=0)
    after_deduplication: int = Field(default=0, ge=0)
    final: int = Field(default=0, ge=0)


class PipelineResult(BaseModel):
    """Insights surviving the full pipeline plus per-stage statistics."""

    insights: list[Insight] = Field(default_factory=list)
    stats: FilterStats = Field(default_factory=FilterStats)
    query: str = Field(default="")
    completed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class GradingDecision(BaseModel):
    """Structured output of the relevance classifier."""

    model_config = ConfigDict(extra="forbid")

    is_relevant: bool
    reasoning: str
