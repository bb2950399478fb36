"""
Search context models for multi-level reverie search.

A search runs at one of three scopes: the whole project, the current
branch, or a single file. Each scope carries the inputs needed to project it
into a query string (see reverie.retrieval.context).
"""

from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class SearchLevel(str, Enum):
    """Scope of a reverie search."""

    PROJECT = "project"
    BRANCH = "branch"
    FILE = "file"


class _BaseContext(BaseModel):
    repo_path: str = Field(..., min_length=1, description="Repository root used to scope the corpus")


class ProjectContext(_BaseContext):
    """Project-wide search: architecture, conventions, recurring patterns."""

    level: Literal[SearchLevel.PROJECT] = SearchLevel.PROJECT
    query: str = Field(..., description="Free-text description of the task")
    file_patterns: Optional[list[str]] = Field(default=None)


class BranchContext(_BaseContext):
    """Branch-level search: the intent behind the current set of changes."""

    level: Literal[SearchLevel.BRANCH] = SearchLevel.BRANCH
    branch: str = Field(..., min_length=1)
    base_branch: Optional[str] = Field(default=None)
    changed_files: list[str] = Field(default_factory=list)
    recent_commits: Optional[str] = Field(default=None)


class FileContext(_BaseContext):
    """File-level search: history of one file and its touched symbols."""

    level: Literal[SearchLevel.FILE] = SearchLevel.FILE
    file_path: str = Field(..., min_length=1)
    diff: Optional[str] = Field(default=None)
    symbols: Optional[list[str]] = Field(default=None)


SearchContext = Annotated[
    Union[ProjectContext, BranchContext, FileContext],
    Field(discriminator="level"),
]

search_context_adapter: TypeAdapter[SearchContext] = TypeAdapter(SearchContext)
