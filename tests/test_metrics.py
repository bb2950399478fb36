"""
Tests for Prometheus metrics.

Tests:
- Exposition format
- Pipeline run, grading and backend failure tracking
- Boilerplate filter state gauge
"""

import pytest
from prometheus_client import REGISTRY

from conftest import FakeEmbedder, FakeRunner, make_insight
from reverie.config import FilterConfig
from reverie.gating.grader import grade_reverie_relevance
from reverie.hygiene.boilerplate import BoilerplateFilter
from reverie.observability.metrics import (
    generate_metrics,
    set_boilerplate_filter_state,
    track_backend_failure,
    track_boilerplate_removed,
    track_grading_decision,
    track_pipeline_run,
)


def sample(name, labels=None):
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


def test_metrics_prometheus_format():
    content, content_type = generate_metrics()
    text = content.decode("utf-8")

    assert "text/plain" in content_type
    assert "# TYPE" in text
    assert "# HELP" in text
    assert "reverie_pipeline_runs_total" in text
    assert "reverie_grading_decisions_total" in text


def test_track_pipeline_run():
    before_runs = sample("reverie_pipeline_runs_total", {"level": "branch"})
    before_final = sample("reverie_stage_candidates_count", {"stage": "final"})
    before_duration = sample("reverie_pipeline_duration_seconds_count", {"level": "branch"})

    track_pipeline_run("branch", 0.42, {"total": 12, "final": 3})

    assert sample("reverie_pipeline_runs_total", {"level": "branch"}) == before_runs + 1
    assert sample("reverie_stage_candidates_count", {"stage": "final"}) == before_final + 1
    assert sample("reverie_pipeline_duration_seconds_count", {"level": "branch"}) == before_duration + 1


def test_track_grading_decision():
    before = sample("reverie_grading_decisions_total", {"outcome": "rejected"})
    track_grading_decision("rejected")
    assert sample("reverie_grading_decisions_total", {"outcome": "rejected"}) == before + 1


def test_track_backend_failure():
    before = sample("reverie_backend_failures_total", {"service": "semantic_search"})
    track_backend_failure("semantic_search")
    assert sample("reverie_backend_failures_total", {"service": "semantic_search"}) == before + 1


def test_boilerplate_removed_ignores_zero():
    before = sample("reverie_boilerplate_removed_total")
    track_boilerplate_removed(0)
    track_boilerplate_removed(2)
    assert sample("reverie_boilerplate_removed_total") == before + 2


def test_boilerplate_state_gauge():
    states = ["not_started", "in_flight", "ready", "disabled"]
    set_boilerplate_filter_state("ready", states)

    assert sample("reverie_boilerplate_filter_state", {"state": "ready"}) == 1
    assert sample("reverie_boilerplate_filter_state", {"state": "disabled"}) == 0


@pytest.mark.asyncio
async def test_grading_outcomes_are_counted():
    before_approved = sample("reverie_grading_decisions_total", {"outcome": "approved"})
    before_failed = sample("reverie_grading_decisions_total", {"outcome": "failed"})
    insight = make_insight("We pinned the grpc version because 1.60 broke the health check stub.")

    await grade_reverie_relevance(FakeRunner(), "ctx", insight)
    await grade_reverie_relevance(FakeRunner(output="garbage"), "ctx", insight)

    assert sample("reverie_grading_decisions_total", {"outcome": "approved"}) == before_approved + 1
    assert sample("reverie_grading_decisions_total", {"outcome": "failed"}) == before_failed + 1


@pytest.mark.asyncio
async def test_disabled_filter_updates_gauge():
    before_failures = sample("reverie_backend_failures_total", {"service": "embedding"})
    bp_filter = BoilerplateFilter(FakeEmbedder(fail=True), FilterConfig())

    await bp_filter.filter([make_insight("We moved the cron job into the worker container.")])

    assert sample("reverie_boilerplate_filter_state", {"state": "disabled"}) == 1
    assert sample("reverie_boilerplate_filter_state", {"state": "ready"}) == 0
    assert sample("reverie_backend_failures_total", {"service": "embedding"}) == before_failures + 1
