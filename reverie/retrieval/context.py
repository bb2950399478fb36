"""
Search context builders and query projections.

Each search level projects its context into a plain-text query:

    project -> "Project-wide: {query}" [+ "Scope: {patterns}"]
    branch  -> "Branch: {branch} (base: {base})" + "Files changed: ..." [+ commits]
    file    -> "File: {path}" [+ "Symbols: ..."] [+ "Changes:" diff, 500 chars]
"""

import os
import re
from typing import Optional

from reverie.models.context import (
    BranchContext,
    FileContext,
    ProjectContext,
    SearchContext,
)

DIFF_QUERY_CHARS = 500
MAX_SYMBOLS = 5

_SYMBOL_RE = re.compile(r"(?:function|class|const|let|var|export|interface|type)\s+(\w+)")
_LITERALS = {"true", "false", "null", "undefined", "const", "let", "var"}


def extract_key_symbols(diff: str) -> str:
    """
    Pull declared identifiers out of a diff.

    Returns:
        str: Up to five unique names, comma-separated, or "code changes"
        when nothing recognisable was declared
    """
    symbols: list[str] = []
    for name in _SYMBOL_RE.findall(diff):
        if len(name) > 2 and name not in _LITERALS and name not in symbols:
            symbols.append(name)

    if not symbols:
        return "code changes"
    return ", ".join(symbols[:MAX_SYMBOLS])


def build_project_context(
    query: str,
    repo_path: Optional[str] = None,
    file_patterns: Optional[list[str]] = None,
) -> ProjectContext:
    return ProjectContext(
        repo_path=repo_path or os.getcwd(),
        query=query,
        file_patterns=file_patterns,
    )


def build_branch_context(
    branch: str,
    changed_files: list[str],
    repo_path: Optional[str] = None,
    base_branch: Optional[str] = None,
    recent_commits: Optional[str] = None,
) -> BranchContext:
    return BranchContext(
        repo_path=repo_path or os.getcwd(),
        branch=branch,
        base_branch=base_branch,
        changed_files=changed_files,
        recent_commits=recent_commits,
    )


def build_file_context(
    file_path: str,
    repo_path: Optional[str] = None,
    diff: Optional[str] = None,
    extract_symbols: bool = False,
) -> FileContext:
    """
    Build a file-level context.

    With extract_symbols, symbols declared in the diff are attached
    (the "code changes" placeholder is attached as-is when none are found).
    """
    symbols = None
    if extract_symbols and diff:
        symbols = [s.strip() for s in extract_key_symbols(diff).split(",") if s.strip()]

    return FileContext(
        repo_path=repo_path or os.getcwd(),
        file_path=file_path,
        diff=diff,
        symbols=symbols,
    )


def context_to_query(context: SearchContext) -> str:
    """Project a search context into the query text sent to the search gateway."""
    if isinstance(context, ProjectContext):
        query = f"Project-wide: {context.query}"
        if context.file_patterns:
            query += f"\nScope: {', '.join(context.file_patterns)}"
        return query

    if isinstance(context, BranchContext):
        query = f"Branch: {context.branch}"
        if context.base_branch:
            query += f" (base: {context.base_branch})"
        query += f"\nFiles changed: {', '.join(context.changed_files)}"
        if context.recent_commits:
            query += f"\nRecent commits: {context.recent_commits}"
        return query

    if isinstance(context, FileContext):
        query = f"File: {context.file_path}"
        if context.symbols:
            query += f"\nSymbols: {', '.join(context.symbols)}"
        if context.diff:
            diff = context.diff
            if len(diff) > DIFF_QUERY_CHARS:
                diff = diff[:DIFF_QUERY_CHARS] + "..."
            query += f"\nChanges:\n{diff}"
        return query

    raise TypeError(f"Unsupported search context: {type(context).__name__}")


def format_file_list(files: list[str], max_files: int = 10) -> str:
    """Comma-separated file list, truncated with "... and N more"."""
    if not files:
        return "(no files)"
    if len(files) <= max_files:
        return ", ".join(files)
    return f"{', '.join(files[:max_files])} ... and {len(files) - max_files} more"
