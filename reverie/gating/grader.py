"""
LLM relevance grading for high-scoring reverie candidates.

Only candidates at or above the grading threshold are sent to the model;
everything below it is discarded without a call. Each call asks a cheap
model for a strict binary verdict against a fixed rubric.

Fail-closed: missing, malformed or failed classifier output rejects the
candidate.
"""

import asyncio
import json
import logging
from typing import Any, Optional, Protocol

from openai import APIConnectionError, APITimeoutError, AsyncOpenAI, RateLimitError
from pydantic import BaseModel, ValidationError

from reverie.config import LLMConfig, get_settings
from reverie.models.insight import GradingDecision, Insight
from reverie.observability.metrics import track_backend_failure, track_grading_decision
from reverie.resilience.retry import ExternalServiceError, with_retry

logger = logging.getLogger(__name__)

REVERIE_GRADING_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "is_relevant": {
            "type": "boolean",
            "description": "True if excerpt contains specific technical details relevant to the work context",
        },
        "reasoning": {
            "type": "string",
            "description": "Brief explanation (1-2 sentences) of why the excerpt was approved or rejected",
        },
    },
    "required": ["is_relevant", "reasoning"],
    "additionalProperties": False,
}

GRADER_INSTRUCTIONS = """You are a STRICT filter for conversation excerpts. Only approve excerpts with SPECIFIC technical details.

REJECT excerpts containing:
- Greetings and pleasantries
- Thinking markers (**, ##, <thinking>)
- JSON objects or structured data dumps
- Generic phrases ("Context from past work", "working on this", etc.)
- Metadata and system information
- Boilerplate text
- Task or checklist instructions ("1.", "2.", "Plan:")
- AGENTS.md guidance, sandbox instructions, or environment descriptions
- Tool output summaries or command transcript blocks

APPROVE ONLY excerpts with:
- Specific code/file references (file paths, function names, variable names)
- Technical decisions and rationale
- Error messages and debugging details
- Implementation specifics and algorithms
- Architecture patterns and design choices

Return a JSON object with:
- is_relevant: boolean indicating if this excerpt should be kept
- reasoning: brief 1-2 sentence explanation of your decision"""


class AgentSpec(BaseModel):
    """Classifier definition handed to a runner."""

    name: str
    instructions: str
    output_schema: dict[str, Any]
    schema_name: str
    strict: bool = True


REVERIE_GRADER = AgentSpec(
    name="ReverieGrader",
    instructions=GRADER_INSTRUCTIONS,
    output_schema=REVERIE_GRADING_SCHEMA,
    schema_name="ReverieGrading",
    strict=True,
)


class ClassifierRunner(Protocol):
    """Runs a classifier agent on a prompt; returns structured output or None."""

    async def run(self, agent: AgentSpec, prompt: str) -> Optional[Any]:
        ...


def build_grading_prompt(context: str, excerpt: str, excerpt_chars: int = 400) -> str:
    return (
        f"Context: {context}\n\n"
        f"Excerpt to grade:\n"
        f'"""\n{excerpt[:excerpt_chars]}\n"""\n\n'
        f"Evaluate whether this excerpt contains specific technical details relevant to the work context."
    )


def parse_grading_output(output: Any) -> Optional[GradingDecision]:
    """Validate classifier output; None when it is missing or does not match the schema."""
    if isinstance(output, GradingDecision):
        return output
    if isinstance(output, str):
        try:
            output = json.loads(output)
        except json.JSONDecodeError:
            return None
    if not isinstance(output, dict):
        return None
    try:
        return GradingDecision.model_validate(output)
    except ValidationError:
        return None


async def grade_reverie_relevance(
    runner: ClassifierRunner,
    context: str,
    insight: Insight,
    excerpt_chars: Optional[int] = None,
) -> bool:
    """
    Grade one insight against the relevance rubric.

    Args:
        runner: Classifier runner
        context: Description of the current work (the search query)
        insight: Candidate to grade
        excerpt_chars: Excerpt characters shown to the model

    Returns:
        bool: True only for an explicit, well-formed approval
    """
    excerpt_chars = excerpt_chars or get_settings().filter.grading_excerpt_chars
    prompt = build_grading_prompt(context, insight.excerpt, excerpt_chars)

    try:
        output = await runner.run(REVERIE_GRADER, prompt)
    except Exception as e:
        logger.warning(f"Reverie grading call failed, defaulting to reject: {e}")
        track_backend_failure("llm")
        track_grading_decision("failed")
        return False

    decision = parse_grading_output(output)
    if decision is None:
        logger.warning("Reverie grading failed to return structured output, defaulting to reject")
        track_grading_decision("failed")
        return False

    track_grading_decision("approved" if decision.is_relevant else "rejected")
    logger.debug(f"Grading decision ({decision.is_relevant}): {decision.reasoning}")
    return decision.is_relevant


async def grade_reveries_in_parallel(
    runner: ClassifierRunner,
    context: str,
    insights: list[Insight],
    min_relevance: float = 0.7,
    parallel: bool = True,
) -> list[Insight]:
    """
    Grade high-scoring insights and return the approved ones in input order.

    Insights below `min_relevance` are dropped without a model call. In
    parallel mode every call is issued at once (no concurrency cap);
    verdicts are matched to insights by position, not completion order.

    Args:
        runner: Classifier runner
        context: Description of the current work
        insights: Candidates
        min_relevance: Grading threshold
        parallel: Issue all calls concurrently (False grades one at a time)

    Returns:
        list[Insight]: Approved insights
    """
    if not 0.0 <= min_relevance <= 1.0:
        raise ValueError(f"min_relevance must be within [0, 1], got {min_relevance}")

    high_scoring = [insight for insight in insights if insight.relevance >= min_relevance]
    if not high_scoring:
        return []

    if parallel:
        verdicts = await asyncio.gather(
            *(grade_reverie_relevance(runner, context, insight) for insight in high_scoring)
        )
        return [insight for insight, approved in zip(high_scoring, verdicts) if approved]

    approved: list[Insight] = []
    for insight in high_scoring:
        if await grade_reverie_relevance(runner, context, insight):
            approved.append(insight)
    return approved


# ============================================================================
# OPENROUTER RUNNER
# ============================================================================


class OpenRouterClassifierRunner:
    """
    ClassifierRunner backed by an OpenAI-compatible chat endpoint (OpenRouter).

    Transient transport errors are retried with exponential backoff; what
    still fails surfaces as ExternalServiceError. Unparseable content
    returns None.

    Security: the API key is never logged.
    """

    def __init__(self, config: Optional[LLMConfig] = None):
        self.config = config or get_settings().llm

        if not self.config.has_api_key:
            raise ValueError("LLM_OPENROUTER_API_KEY is required for the OpenRouter grader")

        self.client = AsyncOpenAI(
            api_key=self.config.openrouter_api_key,
            base_url=self.config.openrouter_base_url,
            timeout=self.config.timeout_seconds,
            max_retries=0,  # Retries handled by with_retry
        )
        self.total_requests = 0
        self.total_tokens_used = 0

    async def _complete(self, agent: AgentSpec, prompt: str) -> Optional[str]:
        response = await self.client.chat.completions.create(
            model=self.config.grader_model,
            messages=[
                {"role": "system", "content": agent.instructions},
                {"role": "user", "content": prompt},
            ],
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            response_format={
                "type": "json_schema",
                "json_schema": {
                    "name": agent.schema_name,
                    "schema": agent.output_schema,
                    "strict": agent.strict,
                },
            },
        )

        self.total_requests += 1
        if response.usage is not None:
            self.total_tokens_used += response.usage.total_tokens

        if not response.choices:
            return None
        return response.choices[0].message.content

    async def run(self, agent: AgentSpec, prompt: str) -> Optional[Any]:
        retrying = with_retry(
            max_attempts=self.config.max_retries,
            min_wait=self.config.retry_backoff_seconds,
            max_wait=10,
            exceptions=(RateLimitError, APIConnectionError, APITimeoutError),
        )

        try:
            content = await retrying(self._complete)(agent, prompt)
        except Exception as e:
            raise ExternalServiceError("llm", f"{e.__class__.__name__}: {e}") from e

        if not content:
            return None
        try:
            return json.loads(content)
        except json.JSONDecodeError:
            logger.debug(f"{agent.name} returned non-JSON content")
            return None

    def get_stats(self) -> dict[str, Any]:
        return {
            "model": self.config.grader_model,
            "total_requests": self.total_requests,
            "total_tokens_used": self.total_tokens_used,
        }
