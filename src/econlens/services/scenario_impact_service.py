from datetime import datetime, timezone
from typing import List, Optional, Tuple
import logging

from econlens.data_models.portfolio_snapshot import PortfolioSnapshot
from econlens.data_models.scenario_definition import ImpactFactor, ScenarioCatalog
from econlens.data_models.scenario_result import AssetImpact, ScenarioResult
from econlens.services.confidence_service import compute_confidence
from econlens.services.portfolio_service import (
    compute_category_allocation,
    compute_herfindahl_index,
    concentration_warnings,
    validate_portfolio,
)
from econlens.services.scenario_catalog_service import get_scenario, resolve_factor

logger = logging.getLogger(__name__)


def compute_adjusted_impact(
    factor: ImpactFactor,
    risk_rating: float,
    baseline_risk: float,
    coefficient: float,
) -> float:
    """Expected move of one holding, in percent.

        adjusted = median + (risk_rating - baseline_risk) * step,  clamped to [min, max]

    where step = coefficient * volatility_multiplier and carries the sign of
    the median, so a riskier-than-typical holding moves further away from zero
    in the direction the category moves. A zero median gets no adjustment.
    """
    median = float(factor.median)
    if median > 0:
        direction = 1.0
    elif median < 0:
        direction = -1.0
    else:
        direction = 0.0

    step = coefficient * factor.volatility_multiplier * direction
    adjusted = median + (float(risk_rating) - float(baseline_risk)) * step
    return float(min(max(adjusted, factor.min), factor.max))


def compute_concentration_multiplier(hhi: float, threshold: float, correlation_adjustment: float) -> float:
    """Scale applied to the portfolio impact: 1 + corr * (hhi - threshold) above the threshold, else 1."""
    if hhi <= threshold:
        return 1.0
    return max(0.0, 1.0 + correlation_adjustment * (hhi - threshold))


def calculate_scenario_impact(
    portfolio: PortfolioSnapshot,
    scenario_id: str,
    catalog: ScenarioCatalog,
    now: Optional[datetime] = None,
) -> ScenarioResult:
    """Compute the ScenarioResult for a portfolio under one catalog scenario.

    The portfolio is validated before anything else, so an invalid snapshot
    never produces a partial result. The computation is pure: identical
    inputs and catalog version give an identical result apart from
    `calculation_timestamp`.

    Raises:
        InvalidPortfolioError: allocation/value invariants violated.
        UnknownScenarioError: scenario_id not in the catalog.
    """
    validate_portfolio(portfolio)
    scenario = get_scenario(catalog, scenario_id)

    diagnostics: List[str] = concentration_warnings(portfolio)
    used: List[Tuple[float, ImpactFactor, bool]] = []
    rows = []

    for h in portfolio.holdings:
        factor, unclassified = resolve_factor(catalog, scenario, h.asset_category)
        if unclassified:
            logger.warning(
                "Holding %s (%s) has no impact factor in scenario %s; using zero-impact unclassified entry",
                h.symbol,
                h.asset_category.value,
                scenario.id,
            )
            diagnostics.append(
                f"unclassified_holding: {h.symbol} ({h.asset_category.value}) has no impact factor in {scenario.id}"
            )

        baseline = catalog.category_baseline_risk[h.asset_category]
        adjusted = compute_adjusted_impact(factor, h.risk_rating, baseline, catalog.risk_adjustment_coefficient)
        contribution = adjusted * (h.allocation_percentage / 100.0)

        rows.append((h, factor, adjusted, contribution, unclassified))
        used.append((float(h.allocation_percentage), factor, unclassified))

    unadjusted_total = sum(r[3] for r in rows)

    hhi = compute_herfindahl_index(portfolio)
    weighted_corr = sum(h.allocation_percentage * f.correlation_adjustment for h, f, _, _, _ in rows) / 100.0
    multiplier = compute_concentration_multiplier(hhi, catalog.concentration_threshold, weighted_corr)
    if multiplier != 1.0:
        diagnostics.append(
            f"concentration_penalty: herfindahl {hhi:.4f} above {catalog.concentration_threshold:.2f}, "
            f"impact scaled by {multiplier:.4f}"
        )

    asset_impacts = [
        AssetImpact(
            symbol=h.symbol,
            category=h.asset_category,
            allocation_percentage=float(h.allocation_percentage),
            adjusted_impact_percentage=adjusted,
            weighted_impact_percentage=contribution * multiplier,
            dollar_delta=float(h.dollar_amount) * adjusted / 100.0 * multiplier,
            unclassified=unclassified,
        )
        for h, _, adjusted, contribution, unclassified in rows
    ]

    confidence, breakdown = compute_confidence(
        catalog, scenario, compute_category_allocation(portfolio), used
    )

    result = ScenarioResult(
        portfolio_id=portfolio.id,
        scenario_id=scenario.id,
        catalog_version=catalog.version,
        total_impact_percentage=float(unadjusted_total * multiplier),
        total_impact_dollar=float(sum(a.dollar_delta for a in asset_impacts)),
        confidence_score=confidence,
        confidence_breakdown=breakdown,
        concentration_index=hhi,
        concentration_multiplier=multiplier,
        asset_impacts=asset_impacts,
        diagnostics=diagnostics,
        calculation_timestamp=now or datetime.now(timezone.utc),
    )

    logger.info(
        "Scenario %s on portfolio %s: total impact %.2f%% (confidence %.1f, %d holdings)",
        scenario.id,
        portfolio.id,
        result.total_impact_percentage,
        result.confidence_score,
        len(asset_impacts),
    )
    return result
