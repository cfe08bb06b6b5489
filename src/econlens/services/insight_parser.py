"""Parser for the insight section grammar (insight-grammar/v1).

A response is Markdown with one heading per section:

    ## Impact Summary
    ## Key Risks
    ## Opportunities
    ## Risk Management
    ## Historical Context

Headings use one to three '#' and are matched case-insensitively. The
summary and historical context are free text; the other three sections are
bullet lists ('-', '*', '•' or '1.'). Lines that continue a bullet are
folded into it.
"""
from __future__ import annotations

import re
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from econlens.config import GRAMMAR_VERSION
from econlens.data_models.ai_insight import InsightSections

SECTION_HEADINGS: Dict[str, str] = {
    "impact summary": "summary",
    "key risks": "risks",
    "opportunities": "opportunities",
    "risk management": "risk_management",
    "historical context": "historical_context",
}
HEADING_ORDER = ["Impact Summary", "Key Risks", "Opportunities", "Risk Management", "Historical Context"]
LIST_FIELDS = {"risks", "opportunities", "risk_management"}

HEADING_RE = re.compile(r"^\s{0,3}#{1,3}\s*(.+?)\s*#*\s*$")
BULLET_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+(.*)$")


class ParseResult(BaseModel):
    grammar_version: str = GRAMMAR_VERSION
    sections: Optional[InsightSections] = None
    issues: List[str] = Field(default_factory=list)


def _strip_fences(raw: str) -> List[str]:
    return [ln for ln in raw.splitlines() if not ln.strip().startswith("```")]


def _to_items(lines: List[str]) -> List[str]:
    items: List[str] = []
    for ln in lines:
        text = ln.strip()
        if not text:
            continue
        m = BULLET_RE.match(ln)
        if m:
            items.append(m.group(1).strip())
        elif items:
            items[-1] = f"{items[-1]} {text}"
        else:
            items.append(text)
    return [i for i in items if i]


def _to_text(lines: List[str]) -> str:
    parts = []
    for ln in lines:
        text = ln.strip()
        if not text:
            continue
        m = BULLET_RE.match(ln)
        parts.append(m.group(1).strip() if m else text)
    return " ".join(parts)


def parse_insight_response(raw: str) -> ParseResult:
    """Split a raw model response into sections.

    Grammar problems are reported as issues rather than raised, so that the
    pipeline can treat them as an ordinary validation rejection:

    - ``grammar_mismatch``: no recognised section heading at all;
    - ``duplicate_section:<field>``: a heading appears twice.
    """
    if not raw or not raw.strip():
        return ParseResult(issues=["grammar_mismatch"])

    buckets: Dict[str, List[str]] = {}
    issues: List[str] = []
    current: Optional[str] = None

    for ln in _strip_fences(raw):
        m = HEADING_RE.match(ln)
        if m:
            name = m.group(1).strip().rstrip(":").lower()
            field = SECTION_HEADINGS.get(name)
            if field is not None:
                if field in buckets:
                    issues.append(f"duplicate_section:{field}")
                buckets.setdefault(field, [])
                current = field
            else:
                # unknown headings close the current section; their content is dropped
                current = None
            continue
        if current is not None:
            buckets[current].append(ln)

    if not buckets:
        return ParseResult(issues=["grammar_mismatch"])

    values = {}
    for field, lines in buckets.items():
        values[field] = _to_items(lines) if field in LIST_FIELDS else _to_text(lines)

    return ParseResult(sections=InsightSections(**values), issues=issues)


def render_sections(sections: InsightSections) -> str:
    """Render sections back to the grammar, e.g. for templates and logs."""
    out: List[str] = []
    for heading in HEADING_ORDER:
        field = SECTION_HEADINGS[heading.lower()]
        value = getattr(sections, field)
        out.append(f"## {heading}")
        if field in LIST_FIELDS:
            out.extend(f"- {item}" for item in value)
        else:
            out.append(value)
        out.append("")
    return "\n".join(out).strip() + "\n"
