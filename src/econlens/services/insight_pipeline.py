"""AI insight generation pipeline.

Per request:

    REQUESTED -> CACHE_HIT -> COMPLETED
              -> CACHE_MISS -> PROMPTING -> INFERRING -> VALIDATING
                   -> ACCEPTED -> COMPLETED
                   -> REJECTED -> RETRY (at most max_retries) -> INFERRING ...
                   -> EXHAUSTED -> FALLBACK -> COMPLETED

Concurrent requests for the same fingerprint share one computation through
the single-flight cache. Provider errors and an exhausted budget go straight
to the fallback chain; only a saturated inference pool escapes as
`PipelineBusyError`.
"""
from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from econlens.config import PROMPT_VERSION, PipelineSettings
from econlens.data_models.ai_insight import AIInsight, FallbackReason, SourceMode
from econlens.data_models.portfolio_snapshot import PortfolioSnapshot
from econlens.data_models.scenario_definition import ScenarioDefinition
from econlens.data_models.scenario_result import ScenarioResult
from econlens.data_models.user_profile import UserProfile
from econlens.errors import InferenceError, PipelineBusyError
from econlens.services.budget_service import MonthlyBudget, estimate_cost, estimate_tokens
from econlens.services.cache_service import SingleFlightCache
from econlens.services.fallback_service import build_fallback_insight
from econlens.services.fingerprint_service import INSIGHT_PREFIX, Fingerprint, compute_fingerprint
from econlens.services.inference_provider import BoundedWorkerPool, InferenceProvider, call_provider
from econlens.services.insight_parser import parse_insight_response
from econlens.services.metrics import InsightMetrics
from econlens.services.prompt_service import build_prompt, build_retry_prompt
from econlens.services.validation_service import validate_insight

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InsightPipeline:
    def __init__(
        self,
        provider: Optional[InferenceProvider],
        settings: Optional[PipelineSettings] = None,
        cache: Optional[SingleFlightCache] = None,
        budget: Optional[MonthlyBudget] = None,
        metrics: Optional[InsightMetrics] = None,
        pool: Optional[BoundedWorkerPool] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.provider = provider
        self.settings = settings or PipelineSettings()
        self.metrics = metrics or InsightMetrics()
        self.cache = cache or SingleFlightCache(metrics=self.metrics)
        self.budget = budget or MonthlyBudget(self.settings.monthly_budget_usd, metrics=self.metrics)
        self.pool = pool or BoundedWorkerPool(
            self.settings.max_concurrent_inferences, self.settings.max_queued_inferences
        )
        self._clock = clock

    def _ttl_for(self, insight: AIInsight) -> float:
        if insight.source_mode == SourceMode.AI_GENERATED:
            return self.settings.insight_ttl_seconds
        return self.settings.fallback_ttl_seconds

    def generate_insight(
        self,
        portfolio: PortfolioSnapshot,
        scenario: ScenarioDefinition,
        scenario_result: ScenarioResult,
        user_profile: UserProfile,
    ) -> AIInsight:
        """Return the insight for this request, from cache, from the provider or from the fallback chain.

        Raises:
            PipelineBusyError: the inference pool and its queue are full.
        """
        fingerprint = compute_fingerprint(portfolio, scenario.id, scenario_result.catalog_version, user_profile)
        key = fingerprint.key(INSIGHT_PREFIX)
        logger.debug("REQUESTED %s (portfolio %s, scenario %s)", key, portfolio.id, scenario.id)

        computed = []

        def compute() -> AIInsight:
            computed.append(True)
            logger.debug("CACHE_MISS %s", key)
            return self._compute(fingerprint, portfolio, scenario, scenario_result, user_profile)

        insight = self.cache.get_or_compute(
            key, self._ttl_for, compute, wait_timeout=self.settings.wait_timeout_seconds
        )
        if not computed:
            logger.debug("CACHE_HIT %s", key)

        self.metrics.record_completed(insight.source_mode.value)
        logger.debug("COMPLETED %s as %s", key, insight.source_mode.value)
        return insight

    def _compute(
        self,
        fingerprint: Fingerprint,
        portfolio: PortfolioSnapshot,
        scenario: ScenarioDefinition,
        result: ScenarioResult,
        user_profile: UserProfile,
    ) -> AIInsight:
        key = fingerprint.key(INSIGHT_PREFIX)
        if self.provider is None:
            return self._fallback(fingerprint, scenario, result, FallbackReason.PROVIDER_UNAVAILABLE)

        logger.debug("PROMPTING %s", key)
        base_prompt = build_prompt(portfolio, scenario, result, user_profile)
        prompt = base_prompt
        symbols = [h.symbol for h in portfolio.holdings]
        issues: List[str] = []
        s = self.settings

        for attempt in range(s.max_retries + 1):
            if attempt:
                logger.debug("RETRY %s attempt %d", key, attempt)
                prompt = build_retry_prompt(base_prompt, issues, attempt)

            reserved = estimate_cost(
                estimate_tokens(prompt), s.max_tokens, s.input_cost_per_1k_tokens, s.output_cost_per_1k_tokens
            )
            if not self.budget.try_reserve(reserved):
                return self._fallback(fingerprint, scenario, result, FallbackReason.BUDGET_EXCEEDED)

            logger.debug("INFERRING %s", key)
            started = time.monotonic()
            try:
                raw = call_provider(
                    self.pool, self.provider, prompt, s.max_tokens, s.temperature, s.inference_timeout_seconds
                )
            except PipelineBusyError:
                self.budget.release(reserved)
                raise
            except InferenceError as exc:
                self.budget.release(reserved)
                self.metrics.record_inference(exc.reason, time.monotonic() - started)
                logger.warning("Inference failed for %s (%s): %s", key, exc.reason, exc)
                return self._fallback(fingerprint, scenario, result, FallbackReason(exc.reason))

            self.metrics.record_inference("ok", time.monotonic() - started)
            actual = estimate_cost(
                estimate_tokens(prompt), estimate_tokens(raw), s.input_cost_per_1k_tokens, s.output_cost_per_1k_tokens
            )
            self.budget.settle(reserved, actual)

            logger.debug("VALIDATING %s", key)
            parsed = parse_insight_response(raw)
            outcome = validate_insight(
                parsed,
                min_chars=s.min_insight_chars,
                max_chars=s.max_insight_chars,
                quality_threshold=s.quality_threshold,
                symbols=symbols,
            )
            if outcome.accepted:
                logger.debug("ACCEPTED %s with quality %.1f", key, outcome.quality_score)
                now = self._clock()
                return AIInsight(
                    fingerprint=fingerprint.digest,
                    sections=parsed.sections,
                    quality_score=outcome.quality_score,
                    source_mode=SourceMode.AI_GENERATED,
                    generated_at=now,
                    expires_at=now + timedelta(seconds=s.insight_ttl_seconds),
                    prompt_version=PROMPT_VERSION,
                )

            issues = outcome.issues
            for issue in issues:
                self.metrics.record_rejection(issue.split(":", 1)[0])
            logger.warning("REJECTED %s (attempt %d): %s", key, attempt + 1, ", ".join(issues))

        logger.debug("EXHAUSTED %s after %d attempts", key, s.max_retries + 1)
        return self._fallback(fingerprint, scenario, result, FallbackReason.VALIDATION_EXHAUSTED)

    def _fallback(
        self,
        fingerprint: Fingerprint,
        scenario: ScenarioDefinition,
        result: ScenarioResult,
        reason: FallbackReason,
    ) -> AIInsight:
        logger.debug("FALLBACK %s (%s)", fingerprint.key(INSIGHT_PREFIX), reason.value)
        insight = build_fallback_insight(
            result,
            reason,
            fingerprint,
            self.settings.fallback_ttl_seconds,
            scenario=scenario,
            cache=self.cache,
            now=self._clock(),
        )
        self.metrics.record_fallback(reason.value, insight.source_mode.value)
        return insight

    def shutdown(self) -> None:
        self.pool.shutdown(wait=True)
