from econlens.data_models.ai_insight import InsightSections
from econlens.services.insight_parser import parse_insight_response, render_sections
from factories import VALID_RESPONSE


def test_parse_valid_response():
    parsed = parse_insight_response(VALID_RESPONSE)

    assert parsed.issues == []
    s = parsed.sections
    assert s.summary.startswith("Under a recession scenario")
    assert len(s.risks) == 3
    assert len(s.opportunities) == 2
    assert s.opportunities[1].endswith("of diversified funds.")
    assert len(s.risk_management) == 3
    assert "2008 financial crisis" in s.historical_context


def test_headings_are_case_insensitive_and_any_level():
    raw = (
        "# IMPACT SUMMARY\nText.\n"
        "### key risks:\n* one\n1. two\n"
        "## Opportunities ##\n• three\n"
        "##Risk Management\n- four\n"
        "## Historical context\nBefore.\n"
    )
    s = parse_insight_response(raw).sections
    assert s.summary == "Text."
    assert s.risks == ["one", "two"]
    assert s.opportunities == ["three"]
    assert s.risk_management == ["four"]
    assert s.historical_context == "Before."


def test_code_fences_are_ignored():
    parsed = parse_insight_response("```markdown\n" + VALID_RESPONSE + "```\n")
    assert parsed.issues == []
    assert len(parsed.sections.risks) == 3


def test_free_text_without_headings_is_a_grammar_mismatch():
    parsed = parse_insight_response("Markets might wobble. Stay calm and diversified.")
    assert parsed.sections is None
    assert parsed.issues == ["grammar_mismatch"]
    assert parse_insight_response("").issues == ["grammar_mismatch"]


def test_duplicate_heading_is_reported():
    raw = VALID_RESPONSE + "\n## Key Risks\n- again\n"
    assert "duplicate_section:risks" in parse_insight_response(raw).issues


def test_unknown_heading_content_is_dropped():
    raw = VALID_RESPONSE.replace("## Historical Context", "## Fun Facts\nignored\n## Historical Context")
    s = parse_insight_response(raw).sections
    assert "ignored" not in s.historical_context
    assert all("ignored" not in r for r in s.risk_management)


def test_render_then_parse_keeps_sections():
    sections = InsightSections(
        summary="A summary.",
        risks=["r1", "r2"],
        opportunities=["o1"],
        risk_management=["m1"],
        historical_context="History.",
    )
    assert parse_insight_response(render_sections(sections)).sections == sections
