"""
Episode summary model.

Episodes are summaries of past conversations (key decisions plus an
importance score) written to an append-only JSON array by an external
summarizer. This package only reads them.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EpisodeSummary(BaseModel):
    """
    Summary of one past conversation episode.

    `importance` is expected in [0, 1] but is deliberately not validated or
    clamped here: blending uses the stored value as-is.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    conversation_id: str = Field(..., alias="conversationId")
    episode_id: str = Field(..., alias="episodeId")
    timestamp: str = Field(default="")
    summary: str = Field(default="")
    key_decisions: Optional[list[str]] = Field(default=None, alias="keyDecisions")
    importance: Optional[float] = Field(default=None)

    @field_validator("conversation_id", "episode_id", mode="before")
    @classmethod
    def coerce_identifier(cls, v):
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    def document_text(self) -> str:
        """Text embedded for similarity: summary followed by each key decision."""
        return "\n".join([self.summary, *(self.key_decisions or [])])
