"""Scenario catalog loading and validation.

The catalog is static, versioned configuration. It is validated once at load
time so that a missing baseline risk or an inverted impact range is a startup
failure rather than a surprise during a calculation.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional

from econlens.data_models.portfolio_snapshot import AssetCategory
from econlens.data_models.scenario_definition import (
    ImpactFactor,
    ScenarioCatalog,
    ScenarioDefinition,
)
from econlens.errors import CatalogValidationError, UnknownScenarioError

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parents[1] / "data" / "scenario_catalog.json"


def _factor_problems(label: str, factor: ImpactFactor) -> List[str]:
    problems = []
    if not (factor.min <= factor.median <= factor.max):
        problems.append(f"{label}: expected min <= median <= max, got {factor.min}/{factor.median}/{factor.max}")
    if factor.volatility_multiplier < 0:
        problems.append(f"{label}: volatility_multiplier must be >= 0")
    return problems


def validate_catalog(catalog: ScenarioCatalog) -> List[str]:
    """Return the list of completeness/consistency problems in a catalog (empty when valid)."""
    problems: List[str] = []

    for cat in AssetCategory:
        if cat not in catalog.category_baseline_risk:
            problems.append(f"missing baseline risk for category {cat.value}")

    unc = catalog.unclassified_factor
    if unc.min != 0.0 or unc.max != 0.0 or unc.median != 0.0:
        problems.append("unclassified factor must be a zero-impact entry")

    if catalog.concentration_threshold <= 0 or catalog.concentration_threshold > 1:
        problems.append("concentration_threshold must be in (0, 1]")
    if not (0.0 <= catalog.model_validation_score <= 100.0):
        problems.append("model_validation_score must be in [0, 100]")

    if not catalog.scenarios:
        problems.append("catalog defines no scenarios")

    for key, scenario in catalog.scenarios.items():
        if key != scenario.id:
            problems.append(f"scenario key {key!r} does not match id {scenario.id!r}")
        if not (1 <= scenario.severity <= 10):
            problems.append(f"{scenario.id}: severity {scenario.severity} outside [1, 10]")
        if scenario.duration_months <= 0:
            problems.append(f"{scenario.id}: duration_months must be positive")
        if AssetCategory.UNCLASSIFIED in scenario.impact_factors:
            problems.append(f"{scenario.id}: unclassified impact is defined at catalog level only")
        for cat, factor in scenario.impact_factors.items():
            problems.extend(_factor_problems(f"{scenario.id}/{cat.value}", factor))
        if any(w < 0 for w in scenario.reference_allocation.values()):
            problems.append(f"{scenario.id}: reference_allocation weights must be non-negative")

    return problems


def build_catalog(payload: dict) -> ScenarioCatalog:
    """Build and validate a catalog from its JSON payload."""
    scenarios = {}
    for raw in payload.get("scenarios", []):
        scenario = ScenarioDefinition.model_validate(raw)
        if scenario.id in scenarios:
            raise CatalogValidationError([f"duplicate scenario id {scenario.id!r}"])
        scenarios[scenario.id] = scenario

    catalog = ScenarioCatalog.model_validate({**payload, "scenarios": scenarios})
    problems = validate_catalog(catalog)
    if problems:
        raise CatalogValidationError(problems)

    missing = {
        s.id: sorted(c.value for c in AssetCategory if c != AssetCategory.UNCLASSIFIED and c not in s.impact_factors)
        for s in catalog.scenarios.values()
    }
    for scenario_id, cats in missing.items():
        if cats:
            logger.info("Scenario %s has no impact factor for %s; these resolve to unclassified", scenario_id, cats)
    return catalog


def load_scenario_catalog(json_path: Optional[Path | str] = None) -> ScenarioCatalog:
    """Load the scenario catalog JSON (the packaged seed catalog by default)."""
    path = Path(json_path) if json_path is not None else DEFAULT_CATALOG_PATH
    if not path.exists():
        raise FileNotFoundError(f"Scenario catalog file not found: {path}")

    payload = json.loads(path.read_text(encoding="utf-8"))
    catalog = build_catalog(payload)
    logger.info("Loaded scenario catalog %s with %d scenarios from %s", catalog.version, len(catalog.scenarios), path)
    return catalog


def get_scenario(catalog: ScenarioCatalog, scenario_id: str) -> ScenarioDefinition:
    scenario = catalog.scenarios.get(scenario_id)
    if scenario is None:
        raise UnknownScenarioError(scenario_id, catalog.version)
    return scenario


def list_scenarios(catalog: ScenarioCatalog) -> List[ScenarioDefinition]:
    return sorted(catalog.scenarios.values(), key=lambda s: (s.severity, s.id))


def resolve_factor(
    catalog: ScenarioCatalog,
    scenario: ScenarioDefinition,
    category: AssetCategory,
) -> tuple[ImpactFactor, bool]:
    """Return (factor, is_unclassified) for a category, using the zero-impact entry when absent."""
    factor = scenario.impact_factors.get(category)
    if factor is None:
        return catalog.unclassified_factor, True
    return factor, False
