"""Portfolio snapshot models.

`PortfolioSnapshot` is the read-only view of a user's portfolio handed to the
scenario core by the external portfolio store. `AssetHolding` stores the
per-holding classification and sizing used by the impact calculator.
"""
from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AssetCategory(str, Enum):
    """Closed set of asset categories understood by the scenario catalog.

    `UNCLASSIFIED` is the explicit fallback for holdings that cannot be mapped;
    it always resolves to the catalog's zero-impact entry.
    """

    DOMESTIC_EQUITY = "domestic_equity"
    INTERNATIONAL_EQUITY = "international_equity"
    EMERGING_MARKETS_EQUITY = "emerging_markets_equity"
    GOVERNMENT_BONDS = "government_bonds"
    CORPORATE_BONDS = "corporate_bonds"
    HIGH_YIELD_BONDS = "high_yield_bonds"
    INFLATION_PROTECTED = "inflation_protected"
    REAL_ESTATE = "real_estate"
    COMMODITIES = "commodities"
    CASH_EQUIVALENTS = "cash_equivalents"
    UNCLASSIFIED = "unclassified"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


class Region(str, Enum):
    US = "us"
    DEVELOPED_INTERNATIONAL = "developed_international"
    EMERGING_MARKETS = "emerging_markets"
    GLOBAL = "global"


class AssetHolding(BaseModel):
    """A single holding entry of a portfolio snapshot.

    Range checks (allocation 0-100, risk rating 1-10) are enforced by
    `validate_portfolio` rather than at construction, so that a snapshot
    coming from the store can always be represented and then rejected with
    a typed error.
    """

    model_config = ConfigDict(frozen=True)

    symbol: str
    name: Optional[str] = None
    asset_category: AssetCategory = AssetCategory.UNCLASSIFIED
    allocation_percentage: float
    dollar_amount: float
    sector: Optional[str] = None
    geographic_region: Region = Region.US
    risk_rating: int = 5


class PortfolioSnapshot(BaseModel):
    """An immutable portfolio snapshot.

    Attributes:
        id: Portfolio identifier in the external store.
        name: User-defined portfolio name.
        total_value: Total value in `currency`.
        holdings: Ordered list of `AssetHolding`.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    total_value: float
    currency: str = "USD"
    holdings: List[AssetHolding] = Field(default_factory=list)


class RiskProfile(BaseModel):
    """Descriptive risk characteristics of a snapshot, used in prompt summaries."""

    concentration_index: float       # Herfindahl index over holdings (0-1)
    max_sector_share: float          # largest single-sector allocation, percent
    max_region_share: float          # largest single-region allocation, percent
    weighted_risk_rating: float      # allocation-weighted average risk rating (1-10)
    category_breakdown: Dict[AssetCategory, float] = Field(default_factory=dict)
