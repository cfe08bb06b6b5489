"""
Central configuration for the scenario calculator and the insight pipeline.

Domain thresholds are module-level constants. Runtime knobs for the pipeline
live in `PipelineSettings`, which can be overridden from ECONLENS_* environment
variables.
"""
from __future__ import annotations

import os
from typing import Optional

from pydantic import BaseModel, Field

# Portfolio invariants (percent points and currency units)
ALLOCATION_TOLERANCE: float = 0.01
DOLLAR_TOLERANCE: float = 0.01
MIN_RISK_RATING: int = 1
MAX_RISK_RATING: int = 10

# Concentration warnings surfaced as diagnostics, not errors
MAX_SINGLE_HOLDING_PCT: float = 80.0
MAX_CASH_ALLOCATION_PCT: float = 50.0

# Confidence score weights; must sum to 1.0
CONFIDENCE_WEIGHTS = {
    "historical_precedent": 0.40,
    "portfolio_similarity": 0.30,
    "parameter_certainty": 0.20,
    "model_validation": 0.10,
}

# Fingerprint bucketing
ALLOCATION_BUCKET_PCT: float = 1.0
VALUE_BUCKET_RATIO: float = 1.10

# Insight validation bounds
MIN_INSIGHT_CHARS: int = 800
MAX_INSIGHT_CHARS: int = 2500
QUALITY_THRESHOLD: float = 70.0

PROMPT_VERSION = "insight-prompt/v1"
GRAMMAR_VERSION = "insight-grammar/v1"

ENV_PREFIX = "ECONLENS_"


def env_value(name: str) -> Optional[str]:
    value = os.getenv(ENV_PREFIX + name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


class PipelineSettings(BaseModel):
    """Runtime settings for the insight pipeline."""

    inference_timeout_seconds: float = Field(default=30.0, gt=0)
    max_tokens: int = Field(default=4000, gt=0)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_retries: int = Field(default=2, ge=0)

    insight_ttl_seconds: float = Field(default=24 * 3600, gt=0)
    fallback_ttl_seconds: float = Field(default=3600, gt=0)
    result_ttl_seconds: float = Field(default=24 * 3600, gt=0)

    monthly_budget_usd: float = Field(default=100.0, ge=0)
    input_cost_per_1k_tokens: float = Field(default=0.003, ge=0)
    output_cost_per_1k_tokens: float = Field(default=0.015, ge=0)

    max_concurrent_inferences: int = Field(default=8, gt=0)
    max_queued_inferences: int = Field(default=32, ge=0)

    min_insight_chars: int = MIN_INSIGHT_CHARS
    max_insight_chars: int = MAX_INSIGHT_CHARS
    quality_threshold: float = QUALITY_THRESHOLD

    # How long a caller waits on a shared computation before giving up; None waits forever.
    wait_timeout_seconds: Optional[float] = None

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        """Build settings from ECONLENS_* variables, falling back to defaults."""
        overrides = {}
        for name in cls.model_fields:
            raw = env_value(name.upper())
            if raw is not None:
                overrides[name] = raw
        # pydantic coerces the raw strings to the declared field types
        return cls.model_validate(overrides)
