"""Quality gate for AI-generated insights.

All checks must pass for an insight to be accepted:

1. total content length within [min_chars, max_chars];
2. every section present and non-empty;
3. no forbidden directive phrases (buy/sell instructions, guarantees);
4. no risk/opportunity contradiction on the same asset or category.

Issues are short codes (``too_short``, ``missing_section:risks``,
``forbidden_phrase:guarantee``, ``contradiction:bonds`` ...) so that they can
be counted in metrics and named in a retry prompt. The quality score starts
at 100, loses 20 points per issue and a few more for thin or unbalanced
sections; acceptance also requires the score to reach the threshold.
"""
from __future__ import annotations

import logging
import re
from typing import Iterable, List

from pydantic import BaseModel, Field

from econlens.config import MAX_INSIGHT_CHARS, MIN_INSIGHT_CHARS, QUALITY_THRESHOLD
from econlens.data_models.ai_insight import InsightSections
from econlens.services.insight_parser import ParseResult

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ["summary", "risks", "opportunities", "risk_management", "historical_context"]

FORBIDDEN_PATTERNS = {
    "directive": [
        r"\b(you should|you must|we recommend(?: that you)?|i recommend)\s+(buy|sell|short|dump)\b",
        r"\b(buy|sell)\s+(now|immediately|today|all)\b",
        r"^\s*(buy|sell)\s+[A-Za-z]",
    ],
    "guarantee": [
        r"\bguarantee[ds]?\b",
        r"\brisk[- ]free\b",
        r"\bcan(?:not|'t| not) lose\b",
        r"\bwill definitely\b",
        r"\bcertain to (rise|fall|gain|lose|recover)\b",
    ],
}

ASSET_KEYWORDS = {
    "equities": r"\b(equit(?:y|ies)|stocks?)\b",
    "bonds": r"\b(bonds?|treasur(?:y|ies)|fixed income)\b",
    "real_estate": r"\b(real estate|reits?)\b",
    "commodities": r"\b(commodit(?:y|ies)|gold|oil)\b",
    "cash": r"\b(cash|money market)\b",
}
NEGATIVE_RE = re.compile(r"\b(fall|falls|decline|declines|drop|drops|loss|losses|underperform\w*|weaken\w*|sell-?off)\b")
POSITIVE_RE = re.compile(r"\b(rise|rises|rally|rallies|gain|gains|appreciate\w*|outperform\w*|benefit\w*|climb\w*|surge\w*)\b")

ISSUE_PENALTY = 20.0
THIN_LIST_PENALTY = 8.0
SHORT_TEXT_PENALTY = 6.0
RISK_PROMINENCE_PENALTY = 5.0


class ValidationOutcome(BaseModel):
    accepted: bool
    issues: List[str] = Field(default_factory=list)
    quality_score: float = 0.0


def _all_texts(sections: InsightSections) -> List[str]:
    return [sections.summary, sections.historical_context, *sections.risks, *sections.opportunities, *sections.risk_management]


def find_forbidden_phrases(sections: InsightSections) -> List[str]:
    hits: List[str] = []
    for kind, patterns in FORBIDDEN_PATTERNS.items():
        for text in _all_texts(sections):
            if any(re.search(p, text, flags=re.IGNORECASE) for p in patterns):
                hits.append(f"forbidden_phrase:{kind}")
                break
    return hits


def _mentions(text: str, symbols: Iterable[str]) -> set:
    lowered = text.lower()
    found = {name for name, pattern in ASSET_KEYWORDS.items() if re.search(pattern, lowered)}
    for sym in symbols:
        if re.search(rf"\b{re.escape(sym)}\b", text):
            found.add(sym)
    return found


def find_contradictions(sections: InsightSections, symbols: Iterable[str] = ()) -> List[str]:
    """Assets named as falling in a risk and as rising in an opportunity."""
    symbols = list(symbols)
    falling = set()
    for item in sections.risks:
        if NEGATIVE_RE.search(item.lower()):
            falling |= _mentions(item, symbols)
    rising = set()
    for item in sections.opportunities:
        if POSITIVE_RE.search(item.lower()):
            rising |= _mentions(item, symbols)
    return [f"contradiction:{name}" for name in sorted(falling & rising)]


def _balance_penalty(sections: InsightSections) -> float:
    penalty = 0.0
    for items in (sections.risks, sections.opportunities, sections.risk_management):
        if 0 < len(items) < 2:
            penalty += THIN_LIST_PENALTY
    if 0 < len(sections.summary.strip()) < 120:
        penalty += SHORT_TEXT_PENALTY
    if 0 < len(sections.historical_context.strip()) < 80:
        penalty += SHORT_TEXT_PENALTY
    if len(sections.risks) < len(sections.opportunities):
        penalty += RISK_PROMINENCE_PENALTY
    return penalty


def validate_insight(
    parsed: ParseResult,
    min_chars: int = MIN_INSIGHT_CHARS,
    max_chars: int = MAX_INSIGHT_CHARS,
    quality_threshold: float = QUALITY_THRESHOLD,
    symbols: Iterable[str] = (),
) -> ValidationOutcome:
    issues = list(parsed.issues)
    sections = parsed.sections
    if sections is None:
        return ValidationOutcome(accepted=False, issues=issues or ["grammar_mismatch"], quality_score=0.0)

    for field in REQUIRED_FIELDS:
        value = getattr(sections, field)
        empty = not value.strip() if isinstance(value, str) else not any(v.strip() for v in value)
        if empty:
            issues.append(f"missing_section:{field}")

    length = sections.total_length()
    if length < min_chars:
        issues.append("too_short")
    elif length > max_chars:
        issues.append("too_long")

    issues.extend(find_forbidden_phrases(sections))
    issues.extend(find_contradictions(sections, symbols))

    score = 100.0 - ISSUE_PENALTY * len(issues) - _balance_penalty(sections)
    score = float(min(max(score, 0.0), 100.0))

    if not issues and score < quality_threshold:
        issues.append("low_quality")

    accepted = not issues
    if not accepted:
        logger.debug("Insight rejected (score %.1f, %d chars): %s", score, length, issues)
    return ValidationOutcome(accepted=accepted, issues=issues, quality_score=score)
