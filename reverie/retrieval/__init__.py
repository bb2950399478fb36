"""
Retrieval pipeline for reverie insights.

Exports:
    - ReverieSearch: Candidate retrieval gateway
    - apply_pipeline / apply_file_pipeline: Full filtering pipeline
    - search_multi_level: Project/branch/file orchestrator
    - is_valid_reverie_excerpt: Structural quality filter
"""

from reverie.retrieval.multilevel import search_multi_level
from reverie.retrieval.pipeline import PipelineOptions, apply_file_pipeline, apply_pipeline
from reverie.retrieval.quality import apply_quality_pipeline, is_valid_reverie_excerpt
from reverie.retrieval.search import ReverieSearch, SearchOptions, looks_like_structured_query

__all__ = [
    "ReverieSearch",
    "SearchOptions",
    "PipelineOptions",
    "apply_pipeline",
    "apply_file_pipeline",
    "search_multi_level",
    "apply_quality_pipeline",
    "is_valid_reverie_excerpt",
    "looks_like_structured_query",
]
