import json
from pathlib import Path

from typer.testing import CliRunner

from econlens.cli import run_scenario_analysis
from econlens.cli.run_scenario_analysis import app
from econlens.errors import InferenceProviderError

SAMPLE = Path(__file__).resolve().parents[1] / "data" / "sample_portfolio.csv"

runner = CliRunner()


def test_list_scenarios():
    result = runner.invoke(app, ["list-scenarios"])
    assert result.exit_code == 0
    assert "recession" in result.output


def test_analyze_writes_result_and_template_insight(tmp_path):
    result = runner.invoke(app, ["analyze", str(SAMPLE), "--scenario", "recession", "--output-dir", str(tmp_path)])

    assert result.exit_code == 0, result.output
    result_json = json.loads((tmp_path / "result_sample_portfolio_recession.json").read_text())
    insight_json = json.loads((tmp_path / "insight_sample_portfolio_recession.json").read_text())

    assert result_json["scenario_id"] == "recession"
    assert result_json["total_impact_percentage"] < 0
    assert insight_json["source_mode"] == "template_fallback"
    assert insight_json["fallback_reason"] == "provider_unavailable"


def test_unknown_scenario_exits_with_error(tmp_path):
    result = runner.invoke(app, ["analyze", str(SAMPLE), "-s", "alien_invasion", "--output-dir", str(tmp_path)])
    assert result.exit_code == 1
    assert not list(tmp_path.iterdir())


def test_missing_file_exits_with_error(tmp_path):
    result = runner.invoke(app, ["analyze", str(tmp_path / "missing.csv"), "--output-dir", str(tmp_path)])
    assert result.exit_code == 1


def test_configured_provider_is_closed(tmp_path, monkeypatch):
    closed = []

    class _DownProvider:
        @classmethod
        def from_env(cls):
            return cls()

        def invoke(self, prompt, max_tokens, temperature, timeout):
            raise InferenceProviderError("down")

        def close(self):
            closed.append(True)

    monkeypatch.setenv("ECONLENS_PROVIDER_API_KEY", "k")
    monkeypatch.setattr(run_scenario_analysis, "OpenAICompatibleProvider", _DownProvider)

    result = runner.invoke(app, ["analyze", str(SAMPLE), "--output-dir", str(tmp_path)])

    assert result.exit_code == 0, result.output
    assert closed == [True]
    insight_json = json.loads((tmp_path / "insight_sample_portfolio_recession.json").read_text())
    assert insight_json["fallback_reason"] == "provider_error"
