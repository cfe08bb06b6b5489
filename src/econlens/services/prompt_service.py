from __future__ import annotations

from typing import List

from econlens.config import MAX_INSIGHT_CHARS, MIN_INSIGHT_CHARS
from econlens.data_models.portfolio_snapshot import PortfolioSnapshot
from econlens.data_models.scenario_definition import ScenarioDefinition
from econlens.data_models.scenario_result import ScenarioResult
from econlens.data_models.user_profile import AnalysisDepth, ExperienceLevel, UserProfile
from econlens.services.insight_parser import HEADING_ORDER
from econlens.services.portfolio_service import compute_risk_profile

TONE_BY_EXPERIENCE = {
    ExperienceLevel.BEGINNER: "Use plain language, define any financial term you use and avoid jargon.",
    ExperienceLevel.INTERMEDIATE: "Use standard investment vocabulary with brief explanations.",
    ExperienceLevel.ADVANCED: "Be concise and technical; duration, spreads and correlations may be discussed directly.",
}

BULLETS_BY_DEPTH = {
    AnalysisDepth.SIMPLE: "2-3",
    AnalysisDepth.DETAILED: "3-4",
    AnalysisDepth.COMPREHENSIVE: "4-5",
}

SYSTEM_RULES = [
    "You are an educational financial analysis assistant.",
    "Explain hypothetical scenario outcomes; never give personalised investment advice.",
    "Never tell the reader to buy or sell a specific security and never promise or guarantee an outcome.",
    "Do not describe the same asset as both a risk of falling and an opportunity to rise.",
]


def _portfolio_lines(portfolio: PortfolioSnapshot, result: ScenarioResult) -> List[str]:
    profile = compute_risk_profile(portfolio)
    lines = [
        f"Portfolio value: {portfolio.total_value:,.0f} {portfolio.currency}",
        f"Holdings: {len(portfolio.holdings)}; concentration index {profile.concentration_index:.3f}; "
        f"weighted risk rating {profile.weighted_risk_rating:.1f}/10",
        "Allocation by category:",
    ]
    for cat, pct in profile.category_breakdown.items():
        lines.append(f"- {cat.label}: {pct:.1f}%")
    lines.append("Largest contributions to the scenario impact:")
    top = sorted(result.asset_impacts, key=lambda a: abs(a.weighted_impact_percentage), reverse=True)[:5]
    for a in top:
        lines.append(
            f"- {a.symbol} ({a.category.label}, {a.allocation_percentage:.1f}%): "
            f"{a.adjusted_impact_percentage:+.1f}% move, {a.weighted_impact_percentage:+.2f}% of portfolio"
        )
    return lines


def build_prompt(
    portfolio: PortfolioSnapshot,
    scenario: ScenarioDefinition,
    result: ScenarioResult,
    user_profile: UserProfile,
) -> str:
    """Assemble the structured prompt for one insight request."""
    bullets = BULLETS_BY_DEPTH[user_profile.analysis_depth]
    lines: List[str] = list(SYSTEM_RULES)
    lines += [
        "",
        f"Scenario: {scenario.name} (severity {scenario.severity}/10, about {scenario.duration_months} months)",
        scenario.description,
    ]
    if scenario.historical_precedents:
        lines.append("Historical precedents: " + "; ".join(scenario.historical_precedents))
    lines += [
        "",
        f"Estimated portfolio impact: {result.total_impact_percentage:+.2f}% "
        f"({result.total_impact_dollar:+,.0f} {portfolio.currency}), confidence {result.confidence_score:.0f}/100",
    ]
    lines += _portfolio_lines(portfolio, result)
    lines += [
        "",
        f"Reader: {user_profile.experience_level.value} investor with {user_profile.risk_tolerance.value} risk tolerance.",
        TONE_BY_EXPERIENCE[user_profile.experience_level],
        "",
        f"Answer in Markdown, between {MIN_INSIGHT_CHARS} and {MAX_INSIGHT_CHARS} characters, "
        "with exactly these headings in this order:",
    ]
    lines += [f"## {h}" for h in HEADING_ORDER]
    lines += [
        "Impact Summary and Historical Context are short paragraphs. "
        f"Key Risks, Opportunities and Risk Management are lists of {bullets} bullets starting with '-'.",
    ]
    return "\n".join(lines)


def build_retry_prompt(base_prompt: str, issues: List[str], attempt: int) -> str:
    """Perturb a prompt after a rejected answer by naming what was wrong."""
    notes = [
        "",
        f"Revision {attempt}: the previous answer was rejected for these reasons: {', '.join(issues)}.",
    ]
    if "too_short" in issues:
        notes.append(f"Write at least {MIN_INSIGHT_CHARS} characters.")
    if "too_long" in issues:
        notes.append(f"Stay under {MAX_INSIGHT_CHARS} characters.")
    if any(i.startswith("forbidden_phrase") for i in issues):
        notes.append("Remove every buy/sell instruction and every guarantee of outcome.")
    if any(i.startswith("contradiction") for i in issues):
        notes.append("Make risks and opportunities consistent for each asset class.")
    if any(i.startswith("missing_section") or i == "grammar_mismatch" for i in issues):
        notes.append("Use all five headings exactly as listed.")
    return base_prompt + "\n".join(notes)
