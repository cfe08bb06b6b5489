import threading
import time
from datetime import timedelta

import pytest

from econlens.config import PipelineSettings
from econlens.data_models.ai_insight import FallbackReason, SourceMode
from econlens.data_models.user_profile import UserProfile
from econlens.errors import (
    InferenceProviderError,
    InferenceRateLimitedError,
    InferenceTimeoutError,
    PipelineBusyError,
)
from econlens.services.cache_service import SingleFlightCache
from econlens.services.inference_provider import BoundedWorkerPool
from econlens.services.insight_pipeline import InsightPipeline
from econlens.services.scenario_impact_service import calculate_scenario_impact
from factories import (
    SHORT_RESPONSE,
    VALID_RESPONSE,
    FailingProvider,
    ScriptedProvider,
    make_catalog,
    make_worked_example_portfolio,
)

PROFILE = UserProfile()
FALLBACK_MODES = {SourceMode.TEMPLATE_FALLBACK, SourceMode.MINIMAL_FALLBACK}


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def make_pipeline():
    created = []

    def factory(provider, cache=None, pool=None, **settings):
        pipeline = InsightPipeline(provider, settings=PipelineSettings(**settings), cache=cache, pool=pool)
        created.append(pipeline)
        return pipeline

    yield factory
    for p in created:
        p.shutdown()


def _request(total_value=100_000.0):
    catalog = make_catalog()
    portfolio = make_worked_example_portfolio(total_value=total_value)
    scenario = catalog.scenarios["recession"]
    result = calculate_scenario_impact(portfolio, "recession", catalog)
    return portfolio, scenario, result


def test_accepted_response_is_ai_generated(make_pipeline):
    provider = ScriptedProvider([VALID_RESPONSE])
    pipeline = make_pipeline(provider)

    insight = pipeline.generate_insight(*_request(), PROFILE)

    assert insight.source_mode == SourceMode.AI_GENERATED
    assert insight.fallback_reason is None
    assert insight.quality_score == 100.0
    assert insight.expires_at - insight.generated_at == timedelta(hours=24)
    assert provider.calls == 1
    assert "## Impact Summary" in provider.prompts[0]
    assert "Economic Recession" in provider.prompts[0]
    assert pipeline.metrics.sample("econlens_insights_completed_total", {"source_mode": "ai_generated"}) == 1


def test_repeat_requests_are_byte_identical_with_one_inference(make_pipeline):
    provider = ScriptedProvider([VALID_RESPONSE])
    pipeline = make_pipeline(provider)
    portfolio, scenario, result = _request()

    first = pipeline.generate_insight(portfolio, scenario, result, PROFILE)
    second = pipeline.generate_insight(portfolio, scenario, result, PROFILE)

    assert first.model_dump_json() == second.model_dump_json()
    assert provider.calls == 1


def test_concurrent_identical_requests_share_one_inference(make_pipeline):
    provider = ScriptedProvider([VALID_RESPONSE], delay=0.2)
    pipeline = make_pipeline(provider)
    portfolio, scenario, result = _request()
    insights = []
    barrier = threading.Barrier(20)

    def worker():
        barrier.wait()
        insights.append(pipeline.generate_insight(portfolio, scenario, result, PROFILE))

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert provider.calls == 1
    assert len({i.model_dump_json() for i in insights}) == 1


def test_rejected_response_is_retried_with_issues_named(make_pipeline):
    provider = ScriptedProvider([SHORT_RESPONSE, VALID_RESPONSE])
    pipeline = make_pipeline(provider)

    insight = pipeline.generate_insight(*_request(), PROFILE)

    assert insight.source_mode == SourceMode.AI_GENERATED
    assert provider.calls == 2
    assert "too_short" in provider.prompts[1]
    assert pipeline.metrics.sample("econlens_validation_rejections_total", {"issue": "too_short"}) == 1


def test_retries_are_bounded_then_fall_back(make_pipeline):
    provider = ScriptedProvider([SHORT_RESPONSE])
    pipeline = make_pipeline(provider)

    insight = pipeline.generate_insight(*_request(), PROFILE)

    assert provider.calls == 3
    assert insight.source_mode in FALLBACK_MODES
    assert insight.fallback_reason == FallbackReason.VALIDATION_EXHAUSTED
    assert insight.expires_at - insight.generated_at == timedelta(hours=1)


@pytest.mark.parametrize(
    "exc, reason",
    [
        (InferenceTimeoutError("slow"), FallbackReason.PROVIDER_TIMEOUT),
        (InferenceRateLimitedError("429"), FallbackReason.PROVIDER_RATE_LIMITED),
        (InferenceProviderError("500"), FallbackReason.PROVIDER_ERROR),
    ],
)
def test_always_failing_provider_still_completes(make_pipeline, exc, reason):
    provider = FailingProvider(exc)
    pipeline = make_pipeline(provider)

    insight = pipeline.generate_insight(*_request(), PROFILE)

    assert insight.source_mode in FALLBACK_MODES
    assert insight.fallback_reason == reason
    assert provider.calls == 1
    assert pipeline.metrics.sample(
        "econlens_fallbacks_total", {"reason": reason.value, "source_mode": insight.source_mode.value}
    ) == 1


def test_exhausted_budget_skips_inference(make_pipeline):
    provider = ScriptedProvider([VALID_RESPONSE])
    pipeline = make_pipeline(provider, monthly_budget_usd=0.0)

    insight = pipeline.generate_insight(*_request(), PROFILE)

    assert provider.calls == 0
    assert insight.fallback_reason == FallbackReason.BUDGET_EXCEEDED
    assert insight.source_mode == SourceMode.TEMPLATE_FALLBACK


def test_spend_is_settled_after_each_call(make_pipeline):
    pipeline = make_pipeline(ScriptedProvider([VALID_RESPONSE]))
    pipeline.generate_insight(*_request(), PROFILE)

    assert 0.0 < pipeline.budget.spent < 0.05
    assert pipeline.budget.remaining == pytest.approx(100.0 - pipeline.budget.spent)


def test_missing_provider_falls_back(make_pipeline):
    insight = make_pipeline(None).generate_insight(*_request(), PROFILE)
    assert insight.fallback_reason == FallbackReason.PROVIDER_UNAVAILABLE


def test_fallback_is_cached_for_the_shorter_ttl(make_pipeline):
    clock = _Clock()
    provider = FailingProvider(InferenceProviderError("down"))
    pipeline = make_pipeline(provider, cache=SingleFlightCache(clock=clock))
    request = _request()

    pipeline.generate_insight(*request, PROFILE)
    clock.now += 3500
    pipeline.generate_insight(*request, PROFILE)
    assert provider.calls == 1

    clock.now += 200
    pipeline.generate_insight(*request, PROFILE)
    assert provider.calls == 2


def test_neighbouring_ai_insight_is_served_when_provider_fails(make_pipeline):
    pipeline = make_pipeline(ScriptedProvider([VALID_RESPONSE]))
    original = pipeline.generate_insight(*_request(100_000.0), PROFILE)

    pipeline.provider = FailingProvider(InferenceTimeoutError("slow"))
    similar = pipeline.generate_insight(*_request(110_000.0), PROFILE)

    assert similar.source_mode == SourceMode.CACHED_SIMILAR
    assert similar.fallback_reason == FallbackReason.PROVIDER_TIMEOUT
    assert similar.sections == original.sections
    assert similar.fingerprint != original.fingerprint


def test_saturated_pool_raises_busy_and_caches_nothing(make_pipeline):
    pool = BoundedWorkerPool(max_workers=1, max_queued=0)
    gate = threading.Event()
    blocker = pool.submit(gate.wait, 5)
    provider = ScriptedProvider([VALID_RESPONSE])
    pipeline = make_pipeline(provider, pool=pool)
    request = _request()

    try:
        with pytest.raises(PipelineBusyError):
            pipeline.generate_insight(*request, PROFILE)
        assert pipeline.budget.remaining == pytest.approx(100.0)
    finally:
        gate.set()
        blocker.result(5)

    time.sleep(0.1)
    insight = pipeline.generate_insight(*request, PROFILE)
    assert insight.source_mode == SourceMode.AI_GENERATED
    assert provider.calls == 1
