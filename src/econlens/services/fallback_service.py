"""Fallback insights for when AI generation is unavailable or keeps failing.

Chain, first success wins:

1. an AI-generated insight cached under a neighbouring fingerprint,
   re-issued under the requested one (CACHED_SIMILAR);
2. a template insight written purely from the scenario result numbers
   (TEMPLATE_FALLBACK);
3. a minimal numeric summary with an "insight unavailable" note
   (MINIMAL_FALLBACK).

`build_fallback_insight` never raises.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from econlens.config import PROMPT_VERSION
from econlens.data_models.ai_insight import AIInsight, FallbackReason, InsightSections, SourceMode
from econlens.data_models.scenario_definition import ScenarioDefinition
from econlens.data_models.scenario_result import AssetImpact, ScenarioResult
from econlens.services.cache_service import SingleFlightCache
from econlens.services.fingerprint_service import INSIGHT_PREFIX, Fingerprint

logger = logging.getLogger(__name__)

TEMPLATE_QUALITY = 60.0
MINIMAL_QUALITY = 20.0
SIMILAR_QUALITY_DISCOUNT = 10.0

UNAVAILABLE_NOTE = (
    "A detailed written insight is unavailable right now; the figures above come directly "
    "from the scenario model."
)


def _impact_word(pct: float) -> str:
    if pct <= -15.0:
        return "a severe decline"
    if pct <= -5.0:
        return "a material decline"
    if pct < 0.0:
        return "a modest decline"
    if pct == 0.0:
        return "no change"
    return "a gain"


def _describe(a: AssetImpact) -> str:
    return (
        f"{a.symbol} ({a.category.label}, {a.allocation_percentage:.1f}% of the portfolio) is modelled at "
        f"{a.adjusted_impact_percentage:+.1f}%, contributing {a.weighted_impact_percentage:+.2f} points to the total."
    )


def find_similar_insight(cache: SingleFlightCache, fingerprint: Fingerprint) -> Optional[AIInsight]:
    """First AI-generated insight cached under a neighbouring fingerprint, if any."""
    for neighbor in fingerprint.neighbors():
        cached = cache.peek(neighbor.key(INSIGHT_PREFIX))
        if isinstance(cached, AIInsight) and cached.source_mode == SourceMode.AI_GENERATED:
            return cached
    return None


def reissue_similar_insight(
    similar: AIInsight,
    fingerprint: Fingerprint,
    reason: FallbackReason,
    now: datetime,
    ttl_seconds: float,
) -> AIInsight:
    return similar.model_copy(
        update={
            "fingerprint": fingerprint.digest,
            "source_mode": SourceMode.CACHED_SIMILAR,
            "quality_score": max(0.0, similar.quality_score - SIMILAR_QUALITY_DISCOUNT),
            "fallback_reason": reason,
            "generated_at": now,
            "expires_at": now + timedelta(seconds=ttl_seconds),
        }
    )


def build_template_insight(
    result: ScenarioResult,
    fingerprint: str,
    reason: FallbackReason,
    now: datetime,
    ttl_seconds: float,
    scenario: Optional[ScenarioDefinition] = None,
) -> AIInsight:
    """Build an insight from the result numbers alone; wording follows the sign of each impact."""
    scenario_name = scenario.name if scenario is not None else result.scenario_id
    total = result.total_impact_percentage

    summary = (
        f"Under the {scenario_name} scenario the model estimates {_impact_word(total)} for this portfolio: "
        f"{total:+.2f}% ({result.total_impact_dollar:+,.0f} in value), with a confidence score of "
        f"{result.confidence_score:.0f}/100."
    )

    ordered = sorted(result.asset_impacts, key=lambda a: a.weighted_impact_percentage)
    negatives = [a for a in ordered if a.weighted_impact_percentage < 0]
    positives = [a for a in reversed(ordered) if a.weighted_impact_percentage > 0]

    risks: List[str] = [_describe(a) for a in negatives[:4]]
    if not risks:
        risks = ["No holding is modelled with a negative move in this scenario; model estimates can still be wrong."]

    opportunities: List[str] = [_describe(a) for a in positives[:4]]
    if not opportunities:
        opportunities = ["No holding is modelled with a positive move in this scenario."]

    risk_management: List[str] = [
        "Compare the modelled loss with the amount you could tolerate without changing your plans.",
        "Review whether the category mix still matches your time horizon and risk tolerance.",
    ]
    if result.concentration_multiplier > 1.0:
        risk_management.append(
            f"Concentration raised the estimated impact by {(result.concentration_multiplier - 1.0) * 100:.1f}%; "
            "diversification across categories reduces this effect."
        )
    if any(a.unclassified for a in result.asset_impacts):
        risk_management.append("Some holdings could not be classified and are modelled with no impact.")

    historical = (
        f"Precedents for this scenario include {', '.join(scenario.historical_precedents)}."
        if scenario is not None and scenario.historical_precedents
        else "No documented historical precedent is attached to this scenario."
    )

    return AIInsight(
        fingerprint=fingerprint,
        sections=InsightSections(
            summary=summary,
            risks=risks,
            opportunities=opportunities,
            risk_management=risk_management,
            historical_context=historical,
        ),
        quality_score=TEMPLATE_QUALITY,
        source_mode=SourceMode.TEMPLATE_FALLBACK,
        generated_at=now,
        expires_at=now + timedelta(seconds=ttl_seconds),
        fallback_reason=reason,
        prompt_version=PROMPT_VERSION,
    )


def build_minimal_insight(
    result: ScenarioResult,
    fingerprint: str,
    reason: FallbackReason,
    now: datetime,
    ttl_seconds: float,
) -> AIInsight:
    summary = (
        f"Estimated impact of scenario {result.scenario_id}: {result.total_impact_percentage:+.2f}% "
        f"({result.total_impact_dollar:+,.0f}), confidence {result.confidence_score:.0f}/100. {UNAVAILABLE_NOTE}"
    )
    return AIInsight(
        fingerprint=fingerprint,
        sections=InsightSections(summary=summary),
        quality_score=MINIMAL_QUALITY,
        source_mode=SourceMode.MINIMAL_FALLBACK,
        generated_at=now,
        expires_at=now + timedelta(seconds=ttl_seconds),
        fallback_reason=reason,
    )


def build_fallback_insight(
    result: ScenarioResult,
    reason: FallbackReason,
    fingerprint: Fingerprint,
    ttl_seconds: float,
    scenario: Optional[ScenarioDefinition] = None,
    cache: Optional[SingleFlightCache] = None,
    now: Optional[datetime] = None,
) -> AIInsight:
    now = now or datetime.now(timezone.utc)

    if cache is not None:
        similar = find_similar_insight(cache, fingerprint)
        if similar is not None:
            logger.warning("Serving similar cached insight for %s (reason %s)", fingerprint.digest[:12], reason.value)
            return reissue_similar_insight(similar, fingerprint, reason, now, ttl_seconds)

    try:
        insight = build_template_insight(result, fingerprint.digest, reason, now, ttl_seconds, scenario)
    except Exception:
        logger.exception("Template insight failed for %s; serving minimal insight", fingerprint.digest[:12])
        return build_minimal_insight(result, fingerprint.digest, reason, now, ttl_seconds)

    logger.warning("Serving template insight for %s (reason %s)", fingerprint.digest[:12], reason.value)
    return insight
