"""Confidence scoring for scenario results.

The confidence score is a weighted sum of four sub-scores, each bounded to
[0, 100]:

- historical precedent strength (40%): how many documented precedents back
  the scenario, 25 points each up to 100;
- portfolio similarity (30%): cosine similarity between the portfolio's
  category allocation vector and the scenario's reference allocation (the
  mix the precedents were measured on), scaled to 0-100. Scenarios without a
  reference allocation score a neutral 50;
- parameter certainty (20%): allocation-weighted narrowness of the impact
  ranges actually used, `100 / (1 + width / WIDTH_SCALE)`; unclassified
  holdings contribute 0;
- model validation (10%): the catalog's back-test score times the classified
  share of the portfolio.
"""
from __future__ import annotations

from typing import Dict, List, Tuple

import numpy as np

from econlens.config import CONFIDENCE_WEIGHTS
from econlens.data_models.portfolio_snapshot import AssetCategory
from econlens.data_models.scenario_definition import ImpactFactor, ScenarioCatalog, ScenarioDefinition
from econlens.data_models.scenario_result import ConfidenceBreakdown

POINTS_PER_PRECEDENT = 25.0
NEUTRAL_SIMILARITY = 50.0
# impact range width (percentage points) at which certainty halves
WIDTH_SCALE = 20.0


def _bounded(value: float) -> float:
    return float(min(max(value, 0.0), 100.0))


def historical_precedent_score(scenario: ScenarioDefinition) -> float:
    return _bounded(POINTS_PER_PRECEDENT * len(scenario.historical_precedents))


def cosine_similarity(a: Dict[AssetCategory, float], b: Dict[AssetCategory, float]) -> float:
    """Cosine similarity of two category-weight maps over the full category set (0 when either is empty)."""
    cats = list(AssetCategory)
    va = np.array([float(a.get(c, 0.0)) for c in cats])
    vb = np.array([float(b.get(c, 0.0)) for c in cats])
    na = np.linalg.norm(va)
    nb = np.linalg.norm(vb)
    if na == 0.0 or nb == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (na * nb))


def portfolio_similarity_score(
    category_allocation: Dict[AssetCategory, float],
    scenario: ScenarioDefinition,
) -> float:
    if not scenario.reference_allocation:
        return NEUTRAL_SIMILARITY
    return _bounded(100.0 * cosine_similarity(category_allocation, scenario.reference_allocation))


def parameter_certainty_score(used: List[Tuple[float, ImpactFactor, bool]]) -> float:
    """`used` holds (allocation_pct, factor, unclassified) for every holding."""
    total_alloc = sum(a for a, _, _ in used)
    if total_alloc <= 0.0:
        return 0.0
    acc = 0.0
    for alloc, factor, unclassified in used:
        certainty = 0.0 if unclassified else 100.0 / (1.0 + factor.range_width / WIDTH_SCALE)
        acc += alloc * certainty
    return _bounded(acc / total_alloc)


def model_validation_score(catalog: ScenarioCatalog, classified_share: float) -> float:
    return _bounded(catalog.model_validation_score * min(max(classified_share, 0.0), 1.0))


def compute_confidence(
    catalog: ScenarioCatalog,
    scenario: ScenarioDefinition,
    category_allocation: Dict[AssetCategory, float],
    used: List[Tuple[float, ImpactFactor, bool]],
) -> Tuple[float, ConfidenceBreakdown]:
    """Return (confidence_score, breakdown) for one calculation."""
    total_alloc = sum(a for a, _, _ in used)
    classified = sum(a for a, _, unc in used if not unc)
    classified_share = classified / total_alloc if total_alloc > 0 else 0.0

    breakdown = ConfidenceBreakdown(
        historical_precedent=historical_precedent_score(scenario),
        portfolio_similarity=portfolio_similarity_score(category_allocation, scenario),
        parameter_certainty=parameter_certainty_score(used),
        model_validation=model_validation_score(catalog, classified_share),
    )

    score = (
        CONFIDENCE_WEIGHTS["historical_precedent"] * breakdown.historical_precedent
        + CONFIDENCE_WEIGHTS["portfolio_similarity"] * breakdown.portfolio_similarity
        + CONFIDENCE_WEIGHTS["parameter_certainty"] * breakdown.parameter_certainty
        + CONFIDENCE_WEIGHTS["model_validation"] * breakdown.model_validation
    )
    return round(_bounded(score), 2), breakdown
