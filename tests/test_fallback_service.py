from datetime import datetime, timedelta, timezone

import pytest

from econlens.data_models.ai_insight import AIInsight, FallbackReason, InsightSections, SourceMode
from econlens.data_models.user_profile import UserProfile
from econlens.services import fallback_service
from econlens.services.cache_service import SingleFlightCache
from econlens.services.fallback_service import (
    build_fallback_insight,
    build_minimal_insight,
    build_template_insight,
)
from econlens.services.fingerprint_service import INSIGHT_PREFIX, compute_fingerprint
from econlens.services.insight_parser import ParseResult
from econlens.services.scenario_impact_service import calculate_scenario_impact
from econlens.services.validation_service import find_forbidden_phrases, validate_insight
from factories import make_catalog, make_worked_example_portfolio

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _setup():
    catalog = make_catalog()
    portfolio = make_worked_example_portfolio()
    result = calculate_scenario_impact(portfolio, "recession", catalog, now=NOW)
    fp = compute_fingerprint(portfolio, "recession", catalog.version, UserProfile())
    return catalog.scenarios["recession"], result, fp


def test_template_insight_reflects_result_numbers():
    scenario, result, fp = _setup()
    insight = build_template_insight(result, fp.digest, FallbackReason.PROVIDER_TIMEOUT, NOW, 3600, scenario)

    assert insight.source_mode == SourceMode.TEMPLATE_FALLBACK
    assert insight.fallback_reason == FallbackReason.PROVIDER_TIMEOUT
    assert insight.quality_score == 60.0
    assert insight.expires_at == NOW + timedelta(hours=1)
    assert "-21.00%" in insight.sections.summary
    assert insight.sections.risks[0].startswith("VTI")
    assert insight.sections.opportunities[0].startswith("BND")
    assert "2008 Global Financial Crisis" in insight.sections.historical_context
    assert find_forbidden_phrases(insight.sections) == []


def test_template_insight_has_every_section():
    scenario, result, fp = _setup()
    insight = build_template_insight(result, fp.digest, FallbackReason.BUDGET_EXCEEDED, NOW, 3600, scenario)
    outcome = validate_insight(ParseResult(sections=insight.sections), min_chars=0)
    assert not any(i.startswith("missing_section") for i in outcome.issues)


def test_minimal_insight():
    _, result, fp = _setup()
    insight = build_minimal_insight(result, fp.digest, FallbackReason.VALIDATION_EXHAUSTED, NOW, 3600)
    assert insight.source_mode == SourceMode.MINIMAL_FALLBACK
    assert "unavailable" in insight.sections.summary
    assert "-21.00%" in insight.sections.summary


def test_similar_ai_insight_is_reissued():
    scenario, result, fp = _setup()
    neighbor = fp.neighbors()[0]
    cached = AIInsight(
        fingerprint=neighbor.digest,
        sections=InsightSections(summary="cached", risks=["r"], opportunities=["o"], risk_management=["m"], historical_context="h"),
        quality_score=90.0,
        source_mode=SourceMode.AI_GENERATED,
        generated_at=NOW - timedelta(hours=2),
        expires_at=NOW + timedelta(hours=22),
    )
    cache = SingleFlightCache()
    cache.put(neighbor.key(INSIGHT_PREFIX), cached, 3600)

    insight = build_fallback_insight(result, FallbackReason.PROVIDER_ERROR, fp, 3600, scenario, cache, now=NOW)

    assert insight.source_mode == SourceMode.CACHED_SIMILAR
    assert insight.fingerprint == fp.digest
    assert insight.sections.summary == "cached"
    assert insight.quality_score == 80.0
    assert insight.fallback_reason == FallbackReason.PROVIDER_ERROR


def test_degraded_neighbors_are_not_reused():
    scenario, result, fp = _setup()
    cache = SingleFlightCache()
    neighbor = fp.neighbors()[0]
    degraded = build_template_insight(result, neighbor.digest, FallbackReason.PROVIDER_ERROR, NOW, 3600, scenario)
    cache.put(neighbor.key(INSIGHT_PREFIX), degraded, 3600)

    insight = build_fallback_insight(result, FallbackReason.PROVIDER_ERROR, fp, 3600, scenario, cache, now=NOW)
    assert insight.source_mode == SourceMode.TEMPLATE_FALLBACK


def test_template_failure_degrades_to_minimal(monkeypatch):
    scenario, result, fp = _setup()

    def broken(*args, **kwargs):
        raise KeyError("missing field")

    monkeypatch.setattr(fallback_service, "build_template_insight", broken)
    insight = build_fallback_insight(result, FallbackReason.PROVIDER_ERROR, fp, 3600, scenario, now=NOW)
    assert insight.source_mode == SourceMode.MINIMAL_FALLBACK


@pytest.mark.parametrize("reason", list(FallbackReason))
def test_every_reason_produces_an_insight(reason):
    scenario, result, fp = _setup()
    insight = build_fallback_insight(result, reason, fp, 3600, scenario, now=NOW)
    assert insight.fallback_reason == reason
