"""Command line entry point for running a scenario analysis on a portfolio CSV.

Commands:
  analyze         - load a portfolio, compute the scenario impact and insight, write JSON
  list-scenarios  - print the scenarios of the catalog

The insight provider is used only when ECONLENS_PROVIDER_API_KEY is set;
otherwise the insight comes from the template fallback.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer

from econlens.config import PipelineSettings, env_value
from econlens.data_models.user_profile import AnalysisDepth, ExperienceLevel, RiskTolerance, UserProfile
from econlens.errors import EconLensError
from econlens.services.analysis_service import ScenarioAnalysisService
from econlens.services.inference_provider import OpenAICompatibleProvider
from econlens.services.insight_pipeline import InsightPipeline
from econlens.services.portfolio_service import load_portfolio_snapshot_from_csv
from econlens.services.repositories import InMemoryPortfolioStore, InMemoryResultStore
from econlens.services.scenario_catalog_service import list_scenarios, load_scenario_catalog

logger = logging.getLogger(__name__)

app = typer.Typer(help="Hypothetical macroeconomic scenario analysis for a portfolio.")


@app.command("list-scenarios")
def list_scenarios_cmd(
    catalog_file: Optional[Path] = typer.Option(None, help="Scenario catalog JSON (defaults to the packaged catalog)."),
):
    catalog = load_scenario_catalog(catalog_file)
    typer.echo(f"Scenario catalog {catalog.version}")
    for s in list_scenarios(catalog):
        typer.echo(f"  {s.id:<16} severity {s.severity:>2}  {s.duration_months:>3} months  {s.name}")


@app.command()
def analyze(
    portfolio_file: Path = typer.Argument(..., help="Holdings CSV (Symbol, Allocation %, Dollar Amount, ...)."),
    scenario: str = typer.Option("recession", "--scenario", "-s", help="Scenario id from the catalog."),
    output_dir: Path = typer.Option(Path("out"), help="Directory for the result and insight JSON files."),
    experience: ExperienceLevel = typer.Option(ExperienceLevel.INTERMEDIATE, case_sensitive=False),
    risk_tolerance: RiskTolerance = typer.Option(RiskTolerance.MODERATE, case_sensitive=False),
    depth: AnalysisDepth = typer.Option(AnalysisDepth.DETAILED, case_sensitive=False),
    catalog_file: Optional[Path] = typer.Option(None, help="Scenario catalog JSON (defaults to the packaged catalog)."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log pipeline state transitions."),
):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        catalog = load_scenario_catalog(catalog_file)
        snapshot = load_portfolio_snapshot_from_csv(portfolio_file)
    except (FileNotFoundError, ValueError, EconLensError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)

    provider = OpenAICompatibleProvider.from_env() if env_value("PROVIDER_API_KEY") else None
    if provider is None:
        logger.info("No inference provider configured; insights will use the template fallback")

    pipeline = InsightPipeline(provider, settings=PipelineSettings.from_env())
    results = InMemoryResultStore()
    service = ScenarioAnalysisService(catalog, InMemoryPortfolioStore([snapshot]), pipeline, result_store=results)
    profile = UserProfile(experience_level=experience, risk_tolerance=risk_tolerance, analysis_depth=depth)

    try:
        analysis = service.analyze(snapshot.id, scenario, profile)
    except EconLensError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)
    finally:
        pipeline.shutdown()
        if provider is not None:
            provider.close()

    result = analysis.result
    typer.echo(
        f"{scenario}: {result.total_impact_percentage:+.2f}% ({result.total_impact_dollar:+,.0f} {snapshot.currency}), "
        f"confidence {result.confidence_score:.0f}/100"
    )
    for note in result.diagnostics:
        typer.echo(f"  note: {note}")
    typer.echo(f"Insight source: {analysis.insight.source_mode.value} (quality {analysis.insight.quality_score:.0f})")

    output_dir.mkdir(parents=True, exist_ok=True)
    result_path = output_dir / f"result_{snapshot.id}_{scenario}.json"
    insight_path = output_dir / f"insight_{snapshot.id}_{scenario}.json"
    result_path.write_text(result.model_dump_json(indent=2), encoding="utf-8")
    insight_path.write_text(analysis.insight.model_dump_json(indent=2), encoding="utf-8")
    typer.echo(f"Wrote {result_path} and {insight_path}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
