"""
Configuration management for the Reverie insight retrieval pipeline.

Uses Pydantic Settings for type-safe configuration with multiple sources:
- Environment variables (highest priority)
- .env file
- Defaults (lowest priority)
"""

import logging
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SearchConfig(BaseSettings):
    """Candidate retrieval configuration (semantic index + reranker)."""

    model_config = SettingsConfigDict(
        env_prefix="SEARCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    limit: int = Field(default=6, ge=0, le=1000, description="Insights returned per search")
    max_candidates: int = Field(default=80, ge=1, le=10000)

    # Over-fetch ahead of filtering (fetch more, filter down)
    candidate_multiplier: int = Field(default=3, ge=1, le=10)

    # Cross-encoder reranking of the embedding shortlist
    use_reranker: bool = Field(default=True)
    reranker_model: str = Field(default="rozgo/bge-reranker-v2-m3")
    reranker_top_k: int = Field(default=20, ge=1, le=1000)
    reranker_batch_size: int = Field(default=8, ge=1, le=256)

    # Per-level candidate scaling
    project_candidate_scale: float = Field(
        default=1.5,
        gt=0.0,
        le=10.0,
        description="Project-level searches fetch this multiple of max_candidates (diffuse relevance)",
    )
    file_candidate_divisor: int = Field(
        default=2,
        ge=1,
        le=10,
        description="File-level searches fetch max_candidates // divisor",
    )

    @property
    def fetch_count(self) -> int:
        """Raw candidates requested from the semantic index."""
        return self.max_candidates * self.candidate_multiplier


class FilterConfig(BaseSettings):
    """Post-retrieval filtering and LLM grading configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FILTER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    boilerplate_threshold: float = Field(
        default=0.8,
        ge=-1.0,
        le=1.0,
        description="Cosine similarity to any boilerplate seed at or above which an excerpt is dropped",
    )
    boilerplate_max_excerpt_length: int = Field(default=512, ge=16, le=8192)

    min_relevance_for_grading: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Only candidates at or above this relevance are graded; the rest are discarded",
    )
    skip_llm_grading: bool = Field(default=False)
    parallel_grading: bool = Field(
        default=True,
        description="Grade all high-scoring candidates concurrently (no built-in concurrency cap)",
    )
    grading_excerpt_chars: int = Field(default=400, ge=50, le=4000)


class EpisodeConfig(BaseSettings):
    """Episode summary store and boost configuration."""

    model_config = SettingsConfigDict(
        env_prefix="EPISODE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    store_filename: str = Field(default="reverie_episodes.json", min_length=1)
    candidate_factor: int = Field(
        default=4, ge=1, le=20, description="Episodes considered = limit * candidate_factor"
    )
    boost_divisor: float = Field(
        default=10.0, gt=0.0, description="Blended score = relevance + importance / boost_divisor"
    )


class EmbeddingConfig(BaseSettings):
    """Embedding model configuration."""

    model_config = SettingsConfigDict(
        env_prefix="EMBEDDING_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    model_name: str = Field(default="BAAI/bge-large-en-v1.5")
    dimension: int = Field(default=1024, ge=1)
    batch_size: int = Field(default=32, ge=1)

    # Device allocation
    device: Literal["cpu", "cuda", "mps"] = Field(default="cpu")
    enable_gpu: bool = Field(default=False)

    # In-process vector cache (per text)
    cache_size: int = Field(default=4096, ge=0, le=1_000_000)

    @field_validator("dimension")
    @classmethod
    def validate_dimension(cls, v: int) -> int:
        if v <= 0 or v > 10000:
            raise ValueError(f"Embedding dimension must be 1-10000, got {v}")
        return v


class LLMConfig(BaseSettings):
    """
    LLM configuration for relevance grading.

    Uses OpenRouter as unified API gateway (OpenAI-compatible).

    Security: API keys are never logged or exposed in errors.
    """

    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    openrouter_api_key: str = Field(
        default="",
        description="OpenRouter API key for unified LLM access"
    )
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        description="OpenRouter API base URL"
    )

    grader_model: str = Field(
        default="x-ai/grok-4.1-fast:free",
        description="Cheap model used for binary relevance grading"
    )

    max_tokens: int = Field(default=300, ge=50, le=4000)
    temperature: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Temperature for grading (lower = more consistent)"
    )
    timeout_seconds: int = Field(default=30, ge=1, le=180)

    # Retry configuration
    max_retries: int = Field(
        default=3,
        ge=1,
        le=5,
        description="Attempts per grading call for transient failures"
    )
    retry_backoff_seconds: float = Field(
        default=1.0,
        ge=0.0,
        le=10.0,
        description="Initial backoff for exponential retry"
    )

    @field_validator("openrouter_api_key")
    @classmethod
    def validate_api_key_security(cls, v: str, info) -> str:
        """
        Security: Validate API key format and prevent common mistakes.

        Never expose API keys in logs or errors.
        """
        if not v:
            return ""

        placeholder_patterns = [
            "your-api-key-here",
            "example",
            "dummy"
        ]

        v_lower = v.lower()
        if any(pattern in v_lower for pattern in placeholder_patterns):
            logging.warning(
                f"{info.field_name} appears to be a placeholder - LLM grading will be disabled"
            )
            return ""

        if len(v) < 20:
            logging.warning(
                f"{info.field_name} seems too short to be valid - LLM grading may fail"
            )

        return v

    @property
    def has_api_key(self) -> bool:
        return bool(self.openrouter_api_key)


class LoggingConfig(BaseSettings):
    """Structured logging configuration."""

    model_config = SettingsConfigDict(env_prefix="LOGGING_", extra="ignore")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Minimum log level"
    )

    # Output format
    json_output: bool = Field(
        default=False, description="Use JSON output (True for aggregation, False for terminals)"
    )
    colorized: bool = Field(
        default=False, description="Colorize console output (only for non-JSON output)"
    )

    # Service metadata (injected into all logs)
    service_name: str = Field(default="reverie")
    service_version: str = Field(default="0.1.0")
    environment: Literal["development", "staging", "production"] = Field(
        default="development"
    )


class Settings(BaseSettings):
    """Root configuration for the Reverie pipeline."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    codex_home: Path = Field(
        default_factory=lambda: Path.home() / ".codex",
        description="Home directory holding the conversation corpus and episode store",
    )

    search: SearchConfig = Field(default_factory=SearchConfig)
    filter: FilterConfig = Field(default_factory=FilterConfig)
    episodes: EpisodeConfig = Field(default_factory=EpisodeConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("codex_home", mode="before")
    @classmethod
    def expand_codex_home(cls, v):
        if isinstance(v, str):
            return Path(v).expanduser()
        if isinstance(v, Path):
            return v.expanduser()
        return v

    def validate_configuration(self) -> None:
        """
        Validate cross-field constraints and log warnings.
        Called once when the settings singleton is built.
        """
        if not self.llm.has_api_key and not self.filter.skip_llm_grading:
            logging.warning(
                "LLM API key not configured - relevance grading needs an explicit classifier runner"
            )

        if self.search.reranker_top_k > self.search.fetch_count:
            logging.warning(
                f"reranker_top_k ({self.search.reranker_top_k}) exceeds fetched candidates "
                f"({self.search.fetch_count}); reranker will see the whole shortlist"
            )

        if self.embedding.dimension not in {384, 512, 768, 1024, 1536}:
            logging.warning(f"Non-standard embedding dimension: {self.embedding.dimension}")


# Global settings instance (lazy-loaded)
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get global settings instance (singleton pattern).

    Returns:
        Settings: Pipeline configuration
    """
    global _settings
    if _settings is None:
        _settings = Settings()
        _settings.validate_configuration()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
