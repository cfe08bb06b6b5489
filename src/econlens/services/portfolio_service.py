"""Portfolio validation, composition metrics and CSV import.

The impact calculator only ever sees snapshots that passed
`validate_portfolio`. The composition helpers (category allocation vector,
Herfindahl index, risk profile) are shared by the calculator, the fingerprint
and the prompt builder.
"""
from __future__ import annotations

import logging
import math
import re
from io import StringIO
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from econlens.config import (
    ALLOCATION_TOLERANCE,
    DOLLAR_TOLERANCE,
    MAX_CASH_ALLOCATION_PCT,
    MAX_RISK_RATING,
    MAX_SINGLE_HOLDING_PCT,
    MIN_RISK_RATING,
)
from econlens.data_models.portfolio_snapshot import (
    AssetCategory,
    AssetHolding,
    PortfolioSnapshot,
    Region,
    RiskProfile,
)
from econlens.errors import InvalidPortfolioError

logger = logging.getLogger(__name__)

SYMBOL_PATTERN = re.compile(r"^[A-Za-z0-9.\-]{1,20}$")
FLOAT_EPS = 1e-9

# Typical risk level per category, used when an imported row has no rating.
DEFAULT_CATEGORY_RISK: Dict[AssetCategory, int] = {
    AssetCategory.DOMESTIC_EQUITY: 6,
    AssetCategory.INTERNATIONAL_EQUITY: 7,
    AssetCategory.EMERGING_MARKETS_EQUITY: 9,
    AssetCategory.GOVERNMENT_BONDS: 2,
    AssetCategory.CORPORATE_BONDS: 3,
    AssetCategory.HIGH_YIELD_BONDS: 6,
    AssetCategory.INFLATION_PROTECTED: 2,
    AssetCategory.REAL_ESTATE: 6,
    AssetCategory.COMMODITIES: 7,
    AssetCategory.CASH_EQUIVALENTS: 1,
    AssetCategory.UNCLASSIFIED: 5,
}


def validate_portfolio(snapshot: PortfolioSnapshot) -> None:
    """Check the snapshot invariants and raise `InvalidPortfolioError` on any violation.

    Checks:
    - at least one holding;
    - every allocation within [0, 100], every risk rating within [1, 10];
    - symbols are 1-20 characters of letters, digits, '.' or '-';
    - sum of allocations equals 100 within 0.01;
    - total_value and every dollar amount are finite and non-negative;
    - sum of dollar amounts equals total_value within 0.01.

    All problems are collected so that the caller sees them at once.
    """
    problems: List[str] = []

    if not snapshot.holdings:
        problems.append("portfolio has no holdings")
    if not (math.isfinite(snapshot.total_value) and snapshot.total_value >= 0.0):
        problems.append(f"total value {snapshot.total_value} is not a finite non-negative amount")

    for h in snapshot.holdings:
        if not SYMBOL_PATTERN.match(h.symbol or ""):
            problems.append(f"invalid symbol format: {h.symbol!r}")
        if not (0.0 <= h.allocation_percentage <= 100.0):
            problems.append(f"{h.symbol}: allocation {h.allocation_percentage} outside [0, 100]")
        if not (MIN_RISK_RATING <= h.risk_rating <= MAX_RISK_RATING):
            problems.append(f"{h.symbol}: risk rating {h.risk_rating} outside [{MIN_RISK_RATING}, {MAX_RISK_RATING}]")
        if not (math.isfinite(h.dollar_amount) and h.dollar_amount >= 0.0):
            problems.append(f"{h.symbol}: dollar amount {h.dollar_amount} is not a finite non-negative amount")

    if snapshot.holdings:
        total_alloc = float(sum(h.allocation_percentage for h in snapshot.holdings))
        if not abs(total_alloc - 100.0) <= ALLOCATION_TOLERANCE + FLOAT_EPS:
            problems.append(f"allocations sum to {total_alloc:.4f}%, expected 100%")

        total_dollars = float(sum(h.dollar_amount for h in snapshot.holdings))
        # NaN sums fail this check
        if not abs(total_dollars - snapshot.total_value) <= DOLLAR_TOLERANCE + FLOAT_EPS:
            problems.append(
                f"dollar amounts sum to {total_dollars:.2f}, portfolio total is {snapshot.total_value:.2f}"
            )

    if problems:
        raise InvalidPortfolioError(snapshot.id, problems)


def concentration_warnings(snapshot: PortfolioSnapshot) -> List[str]:
    """Soft warnings for concentrated portfolios; these never block a calculation."""
    warnings: List[str] = []
    if not snapshot.holdings:
        return warnings

    top = max(snapshot.holdings, key=lambda h: h.allocation_percentage)
    if top.allocation_percentage > MAX_SINGLE_HOLDING_PCT:
        warnings.append(
            f"concentration_warning: {top.symbol} is {top.allocation_percentage:.1f}% of the portfolio "
            f"(limit {MAX_SINGLE_HOLDING_PCT:.0f}%)"
        )

    cash = sum(
        h.allocation_percentage for h in snapshot.holdings if h.asset_category == AssetCategory.CASH_EQUIVALENTS
    )
    if cash > MAX_CASH_ALLOCATION_PCT:
        warnings.append(
            f"concentration_warning: cash equivalents are {cash:.1f}% of the portfolio "
            f"(limit {MAX_CASH_ALLOCATION_PCT:.0f}%)"
        )
    return warnings


def compute_herfindahl_index(snapshot: PortfolioSnapshot) -> float:
    """Herfindahl index over holding allocations, as fractions (1/n for equal weights, 1.0 for one holding)."""
    weights = np.array([h.allocation_percentage / 100.0 for h in snapshot.holdings], dtype=float)
    if weights.size == 0:
        return 0.0
    return float(np.sum(weights * weights))


def compute_category_allocation(snapshot: PortfolioSnapshot) -> Dict[AssetCategory, float]:
    """Aggregate allocation percent per asset category, normalised to sum to 100.

    Categories are returned in enum order so downstream consumers (fingerprint,
    similarity vectors) see a stable ordering.
    """
    totals: Dict[AssetCategory, float] = {}
    for h in snapshot.holdings:
        totals[h.asset_category] = totals.get(h.asset_category, 0.0) + float(h.allocation_percentage)

    grand_total = sum(totals.values())
    if grand_total <= FLOAT_EPS:
        return {}

    return {cat: totals[cat] * 100.0 / grand_total for cat in AssetCategory if cat in totals}


def compute_risk_profile(snapshot: PortfolioSnapshot) -> RiskProfile:
    """Summarise concentration, sector/region shares and weighted risk of a snapshot."""
    if not snapshot.holdings:
        return RiskProfile(
            concentration_index=0.0,
            max_sector_share=0.0,
            max_region_share=0.0,
            weighted_risk_rating=0.0,
        )

    df = pd.DataFrame(
        [
            {
                "sector": h.sector or "unknown",
                "region": h.geographic_region.value,
                "allocation": float(h.allocation_percentage),
                "risk": float(h.risk_rating),
            }
            for h in snapshot.holdings
        ]
    )
    total_alloc = df["allocation"].sum()
    weighted_risk = float((df["allocation"] * df["risk"]).sum() / total_alloc) if total_alloc > 0 else 0.0

    return RiskProfile(
        concentration_index=compute_herfindahl_index(snapshot),
        max_sector_share=float(df.groupby("sector")["allocation"].sum().max()),
        max_region_share=float(df.groupby("region")["allocation"].sum().max()),
        weighted_risk_rating=weighted_risk,
        category_breakdown=compute_category_allocation(snapshot),
    )


def _parse_category(raw: Optional[str]) -> AssetCategory:
    if raw is None or str(raw).strip() == "":
        return AssetCategory.UNCLASSIFIED
    key = str(raw).strip().lower().replace(" ", "_").replace("-", "_")
    try:
        return AssetCategory(key)
    except ValueError:
        logger.warning("Unknown asset category %r; treating holding as unclassified", raw)
        return AssetCategory.UNCLASSIFIED


def _parse_region(raw: Optional[str]) -> Region:
    if raw is None or str(raw).strip() == "":
        return Region.US
    key = str(raw).strip().lower().replace(" ", "_").replace("-", "_")
    try:
        return Region(key)
    except ValueError:
        logger.warning("Unknown region %r; defaulting to global", raw)
        return Region.GLOBAL


def _safe_float(val: Optional[str]) -> Optional[float]:
    if val is None:
        return None
    s = str(val).strip()
    if s == "" or s.lower() in {"unknown", "na", "n/a", "-"}:
        return None
    # tolerate currency symbols, thousands separators and trailing percent signs
    s = s.replace("$", "").replace(",", "").replace("'", "").rstrip("%").strip()
    try:
        return float(s)
    except ValueError:
        return None


def load_portfolio_snapshot_from_csv(
    csv_path: Path | str,
    portfolio_id: Optional[str] = None,
    name: Optional[str] = None,
) -> PortfolioSnapshot:
    """Load a holdings CSV into a PortfolioSnapshot.

    Expected columns (case-insensitive): Symbol, Allocation %, Dollar Amount.
    Optional columns: Name, Asset Category, Sector, Region, Risk Rating.

    The loader is tolerant to Markdown code fences around the CSV. The
    snapshot's total value is the sum of the dollar amounts; the invariants are
    not enforced here, `validate_portfolio` does that.
    """
    path = Path(csv_path)
    if not path.exists():
        raise FileNotFoundError(f"Portfolio CSV file not found: {path}")

    text = path.read_text(encoding="utf-8")
    cleaned_lines = [ln for ln in text.splitlines() if not ln.strip().startswith("```")]
    df = pd.read_csv(StringIO("\n".join(cleaned_lines)), dtype=str, keep_default_na=False)

    df.columns = [str(c).strip().lower() for c in df.columns]
    required_cols = {"symbol", "allocation %", "dollar amount"}
    missing = required_cols - set(df.columns)
    if missing:
        raise ValueError(f"Missing required columns in portfolio CSV: {sorted(missing)}")
    if df.empty:
        raise ValueError(f"No rows found in {path} after parsing")

    holdings: List[AssetHolding] = []
    for _, row in df.iterrows():
        symbol = str(row["symbol"]).strip()
        allocation = _safe_float(row["allocation %"])
        dollars = _safe_float(row["dollar amount"])
        if allocation is None or dollars is None:
            logger.warning("Unparseable allocation or dollar amount for row: %s", symbol)
            allocation = allocation or 0.0
            dollars = dollars or 0.0

        category = _parse_category(row.get("asset category"))
        rating = _safe_float(row.get("risk rating"))

        holdings.append(
            AssetHolding(
                symbol=symbol,
                name=(row.get("name") or None),
                asset_category=category,
                allocation_percentage=float(allocation),
                dollar_amount=float(dollars),
                sector=(row.get("sector") or None),
                geographic_region=_parse_region(row.get("region")),
                risk_rating=int(round(rating)) if rating is not None else DEFAULT_CATEGORY_RISK[category],
            )
        )

    snapshot = PortfolioSnapshot(
        id=portfolio_id or path.stem,
        name=name or path.stem,
        total_value=float(sum(h.dollar_amount for h in holdings)),
        holdings=holdings,
    )

    logger.info(
        "Loaded portfolio snapshot %s with %d holdings (total allocation %.2f%%, value %.2f)",
        snapshot.id,
        len(holdings),
        sum(h.allocation_percentage for h in holdings),
        snapshot.total_value,
    )
    return snapshot
