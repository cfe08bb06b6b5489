from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field

from econlens.data_models.portfolio_snapshot import AssetCategory


class AssetImpact(BaseModel):
    """
    Impact of a scenario on one portfolio holding.

    `adjusted_impact_percentage` is the holding's own expected move after the
    risk-rating adjustment and clamping. `weighted_impact_percentage` is its
    contribution to the portfolio total, including any concentration penalty,
    so the weighted values of all holdings sum to the portfolio total.
    """

    model_config = ConfigDict(frozen=True)

    symbol: str
    category: AssetCategory
    allocation_percentage: float
    adjusted_impact_percentage: float
    weighted_impact_percentage: float
    dollar_delta: float
    unclassified: bool = False


class ConfidenceBreakdown(BaseModel):
    """The four sub-scores (each 0-100) behind a confidence score."""

    model_config = ConfigDict(frozen=True)

    historical_precedent: float
    portfolio_similarity: float
    parameter_certainty: float
    model_validation: float


class ScenarioResult(BaseModel):
    """
    Quantitative impact of one scenario on one portfolio.

    Everything except `calculation_timestamp` is a pure function of the
    portfolio, the scenario and the catalog version.
    """

    model_config = ConfigDict(frozen=True)

    portfolio_id: str
    scenario_id: str
    catalog_version: str

    total_impact_percentage: float
    total_impact_dollar: float
    confidence_score: float
    confidence_breakdown: ConfidenceBreakdown

    concentration_index: float      # Herfindahl index over holding allocations (0-1)
    concentration_multiplier: float # 1.0 when no penalty applied

    asset_impacts: List[AssetImpact]
    diagnostics: List[str] = Field(default_factory=list)

    calculation_timestamp: datetime
