"""Request fingerprints shared by the result and insight caches.

A fingerprint keeps only what changes the analysis: the category allocation
vector rounded to 1%, the portfolio value on a 10% logarithmic ladder, the
scenario, the catalog version and the user's experience tier. Two portfolios
with the same rounded shape and size share an insight.
"""
from __future__ import annotations

import hashlib
import json
import math
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict

from econlens.config import ALLOCATION_BUCKET_PCT, VALUE_BUCKET_RATIO
from econlens.data_models.portfolio_snapshot import AssetCategory, PortfolioSnapshot
from econlens.data_models.user_profile import UserProfile
from econlens.services.portfolio_service import compute_category_allocation

INSIGHT_PREFIX = "insight:"
RESULT_PREFIX = "scenario_result:"


def canonical_json(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


def value_bucket(total_value: float) -> int:
    """Index of `total_value` on a ladder whose steps are 10% apart."""
    if total_value <= 0:
        return 0
    return int(round(math.log(total_value) / math.log(VALUE_BUCKET_RATIO)))


class Fingerprint(BaseModel):
    model_config = ConfigDict(frozen=True)

    allocation_buckets: Dict[str, int]
    value_bucket: int
    scenario_id: str
    catalog_version: str
    user_tier: str

    @property
    def digest(self) -> str:
        return hashlib.sha256(canonical_json(self.model_dump()).encode("utf-8")).hexdigest()

    def key(self, prefix: str = INSIGHT_PREFIX) -> str:
        return f"{prefix}{self.digest}"

    def neighbors(self) -> List["Fingerprint"]:
        """Fingerprints one rounding bucket away, in one allocation category or in value."""
        out: List[Fingerprint] = []
        for cat in sorted(self.allocation_buckets):
            for delta in (-1, 1):
                bucket = self.allocation_buckets[cat] + delta
                if bucket < 0:
                    continue
                buckets = dict(self.allocation_buckets)
                buckets[cat] = bucket
                out.append(self.model_copy(update={"allocation_buckets": buckets}))
        for delta in (-1, 1):
            out.append(self.model_copy(update={"value_bucket": self.value_bucket + delta}))
        return out


def compute_fingerprint(
    portfolio: PortfolioSnapshot,
    scenario_id: str,
    catalog_version: str,
    user_profile: UserProfile,
) -> Fingerprint:
    allocation = compute_category_allocation(portfolio)
    buckets = {
        cat.value: int(round(allocation.get(cat, 0.0) / ALLOCATION_BUCKET_PCT)) for cat in AssetCategory
    }
    return Fingerprint(
        allocation_buckets=buckets,
        value_bucket=value_bucket(portfolio.total_value),
        scenario_id=scenario_id,
        catalog_version=catalog_version,
        user_tier=user_profile.experience_level.value,
    )


def result_cache_key(portfolio_id: str, fingerprint: Fingerprint) -> str:
    """Result entries are per portfolio so that an edit can invalidate them."""
    return f"{RESULT_PREFIX}{portfolio_id}:{fingerprint.digest}"
