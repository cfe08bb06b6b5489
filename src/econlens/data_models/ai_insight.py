from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SourceMode(str, Enum):
    """Where the text of an insight came from, from richest to most degraded."""

    AI_GENERATED = "ai_generated"
    CACHED_SIMILAR = "cached_similar"
    TEMPLATE_FALLBACK = "template_fallback"
    MINIMAL_FALLBACK = "minimal_fallback"


class FallbackReason(str, Enum):
    BUDGET_EXCEEDED = "budget_exceeded"
    PROVIDER_TIMEOUT = "provider_timeout"
    PROVIDER_RATE_LIMITED = "provider_rate_limited"
    PROVIDER_ERROR = "provider_error"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    VALIDATION_EXHAUSTED = "validation_exhausted"


class InsightSections(BaseModel):
    model_config = ConfigDict(frozen=True)

    summary: str = ""
    risks: List[str] = Field(default_factory=list)
    opportunities: List[str] = Field(default_factory=list)
    risk_management: List[str] = Field(default_factory=list)
    historical_context: str = ""

    def total_length(self) -> int:
        """Characters of actual content across all sections."""
        parts = [self.summary, self.historical_context]
        parts.extend(self.risks)
        parts.extend(self.opportunities)
        parts.extend(self.risk_management)
        return sum(len(p.strip()) for p in parts)


class AIInsight(BaseModel):
    """
    A human-readable explanation of a scenario result.

    Insights are never mutated once created; a newer cache entry supersedes
    them. `fallback_reason` is set whenever `source_mode` is not
    AI_GENERATED.
    """

    model_config = ConfigDict(frozen=True)

    fingerprint: str
    sections: InsightSections
    quality_score: float
    source_mode: SourceMode
    generated_at: datetime
    expires_at: datetime

    fallback_reason: Optional[FallbackReason] = None
    prompt_version: Optional[str] = None
    disclaimer: str = (
        "This analysis is educational and hypothetical. It is not investment, tax or legal advice."
    )
