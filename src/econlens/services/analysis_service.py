"""Request entry point: portfolio id + scenario id + user profile -> result and insight."""
from __future__ import annotations

import logging
from threading import Lock
from typing import Dict, Optional, Set

from pydantic import BaseModel, ConfigDict

from econlens.data_models.ai_insight import AIInsight
from econlens.data_models.scenario_definition import ScenarioCatalog
from econlens.data_models.scenario_result import ScenarioResult
from econlens.data_models.user_profile import UserProfile
from econlens.services.cache_service import SingleFlightCache
from econlens.services.fingerprint_service import (
    INSIGHT_PREFIX,
    RESULT_PREFIX,
    compute_fingerprint,
    result_cache_key,
)
from econlens.services.insight_pipeline import InsightPipeline
from econlens.services.repositories import PortfolioStore, ResultStore
from econlens.services.scenario_catalog_service import get_scenario
from econlens.services.scenario_impact_service import calculate_scenario_impact

logger = logging.getLogger(__name__)


class ScenarioAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    result: ScenarioResult
    insight: AIInsight


class ScenarioAnalysisService:
    def __init__(
        self,
        catalog: ScenarioCatalog,
        portfolio_store: PortfolioStore,
        pipeline: InsightPipeline,
        result_store: Optional[ResultStore] = None,
        cache: Optional[SingleFlightCache] = None,
    ):
        self.catalog = catalog
        self.portfolio_store = portfolio_store
        self.pipeline = pipeline
        self.result_store = result_store
        self.cache = cache or pipeline.cache
        self._insight_keys_lock = Lock()
        # insight keys each portfolio has resolved to, for invalidation on edit
        self._insight_keys: Dict[str, Set[str]] = {}

    def calculate(self, portfolio_id: str, scenario_id: str, user_profile: Optional[UserProfile] = None) -> ScenarioResult:
        """Scenario result for a stored portfolio, cached per portfolio and fingerprint.

        Raises:
            PortfolioNotFoundError, UnknownScenarioError, InvalidPortfolioError
        """
        user_profile = user_profile or UserProfile()
        portfolio = self.portfolio_store.get_portfolio(portfolio_id)
        scenario = get_scenario(self.catalog, scenario_id)

        fingerprint = compute_fingerprint(portfolio, scenario.id, self.catalog.version, user_profile)
        key = result_cache_key(portfolio.id, fingerprint)

        def compute() -> ScenarioResult:
            result = calculate_scenario_impact(portfolio, scenario.id, self.catalog)
            if self.result_store is not None:
                self.result_store.save_result(result)
            return result

        return self.cache.get_or_compute(key, self.pipeline.settings.result_ttl_seconds, compute)

    def analyze(self, portfolio_id: str, scenario_id: str, user_profile: Optional[UserProfile] = None) -> ScenarioAnalysis:
        user_profile = user_profile or UserProfile()
        result = self.calculate(portfolio_id, scenario_id, user_profile)
        portfolio = self.portfolio_store.get_portfolio(portfolio_id)
        scenario = get_scenario(self.catalog, scenario_id)

        fingerprint = compute_fingerprint(portfolio, scenario.id, result.catalog_version, user_profile)
        with self._insight_keys_lock:
            self._insight_keys.setdefault(portfolio_id, set()).add(fingerprint.key(INSIGHT_PREFIX))

        insight = self.pipeline.generate_insight(portfolio, scenario, result, user_profile)
        if self.result_store is not None:
            self.result_store.save_insight(portfolio_id, scenario_id, insight)

        logger.info(
            "Analysis of %s under %s complete: %.2f%% impact, insight %s (quality %.0f)",
            portfolio_id,
            scenario_id,
            result.total_impact_percentage,
            insight.source_mode.value,
            insight.quality_score,
        )
        return ScenarioAnalysis(result=result, insight=insight)

    def invalidate_portfolio(self, portfolio_id: str) -> int:
        """Drop the cached results and insights of a portfolio after a material edit.

        Insight keys ignore risk ratings and symbols, so an edited portfolio can
        land on the same insight entry; every insight key the portfolio has
        resolved to is dropped as well. Returns the number of entries removed.
        """
        dropped = self.cache.invalidate_prefix(f"{RESULT_PREFIX}{portfolio_id}:")
        with self._insight_keys_lock:
            keys = self._insight_keys.pop(portfolio_id, set())
        for key in keys:
            if self.pipeline.cache.invalidate(key):
                dropped += 1
        if keys:
            logger.info("Invalidated %d cached entries for portfolio %s", dropped, portfolio_id)
        return dropped
