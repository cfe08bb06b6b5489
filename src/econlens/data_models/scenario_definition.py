from __future__ import annotations

from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field

from econlens.data_models.portfolio_snapshot import AssetCategory


class ImpactFactor(BaseModel):
    """
    How one asset category is expected to move under a scenario.

    All impacts are percentage changes (e.g. -25.0 means a 25% decline).
    `volatility_multiplier` scales how far riskier holdings deviate from the
    median; `correlation_adjustment` scales the concentration penalty.
    """

    model_config = ConfigDict(frozen=True)

    min: float
    max: float
    median: float
    volatility_multiplier: float = 1.0
    correlation_adjustment: float = 0.0
    primary_drivers: List[str] = Field(default_factory=list)

    @property
    def range_width(self) -> float:
        return self.max - self.min


class ScenarioDefinition(BaseModel):
    """
    A predefined macroeconomic scenario from the catalog.

    `reference_allocation` describes the category mix of the portfolios the
    historical precedents were measured on. It feeds the portfolio-similarity
    part of the confidence score.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    severity: int
    duration_months: int
    economic_parameters: Dict[str, float] = Field(default_factory=dict)
    impact_factors: Dict[AssetCategory, ImpactFactor] = Field(default_factory=dict)
    historical_precedents: List[str] = Field(default_factory=list)
    reference_allocation: Dict[AssetCategory, float] = Field(default_factory=dict)


class ScenarioCatalog(BaseModel):
    """Versioned scenario catalog plus the model constants shared by all scenarios."""

    model_config = ConfigDict(frozen=True)

    version: str
    # risk rating considered "typical" for each category (1-10)
    category_baseline_risk: Dict[AssetCategory, float]
    # percentage points of impact per risk-rating step, before volatility scaling
    risk_adjustment_coefficient: float = 1.0
    # Herfindahl index above which the concentration penalty applies
    concentration_threshold: float = 0.25
    # back-test quality of the impact model, 0-100
    model_validation_score: float = 70.0
    unclassified_factor: ImpactFactor = ImpactFactor(min=0.0, max=0.0, median=0.0)
    scenarios: Dict[str, ScenarioDefinition] = Field(default_factory=dict)
