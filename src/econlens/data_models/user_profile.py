from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class ExperienceLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class RiskTolerance(str, Enum):
    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


class AnalysisDepth(str, Enum):
    SIMPLE = "simple"
    DETAILED = "detailed"
    COMPREHENSIVE = "comprehensive"


class UserProfile(BaseModel):
    """Profile supplied by the identity service. Only shapes prompt tone; never persisted."""

    model_config = ConfigDict(frozen=True)

    experience_level: ExperienceLevel = ExperienceLevel.INTERMEDIATE
    risk_tolerance: RiskTolerance = RiskTolerance.MODERATE
    analysis_depth: AnalysisDepth = AnalysisDepth.DETAILED
