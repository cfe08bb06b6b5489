"""Portfolio and result store interfaces with in-memory implementations.

The real stores live outside this package; the in-memory versions back the
CLI and the tests. Frozen pydantic models are shared safely, so no copies are
made.
"""
from __future__ import annotations

from threading import Lock
from typing import Dict, List, Optional, Protocol, Tuple

from econlens.data_models.ai_insight import AIInsight
from econlens.data_models.portfolio_snapshot import PortfolioSnapshot
from econlens.data_models.scenario_result import ScenarioResult
from econlens.errors import PortfolioNotFoundError


class PortfolioStore(Protocol):
    def get_portfolio(self, portfolio_id: str) -> PortfolioSnapshot:
        ...


class ResultStore(Protocol):
    def save_result(self, result: ScenarioResult) -> None:
        ...

    def save_insight(self, portfolio_id: str, scenario_id: str, insight: AIInsight) -> None:
        ...


class InMemoryPortfolioStore:
    def __init__(self, portfolios: Optional[List[PortfolioSnapshot]] = None):
        self._lock = Lock()
        self._portfolios: Dict[str, PortfolioSnapshot] = {p.id: p for p in portfolios or []}

    def save_portfolio(self, portfolio: PortfolioSnapshot) -> None:
        with self._lock:
            self._portfolios[portfolio.id] = portfolio

    def get_portfolio(self, portfolio_id: str) -> PortfolioSnapshot:
        with self._lock:
            portfolio = self._portfolios.get(portfolio_id)
        if portfolio is None:
            raise PortfolioNotFoundError(portfolio_id)
        return portfolio


class InMemoryResultStore:
    def __init__(self) -> None:
        self._lock = Lock()
        self._results: Dict[Tuple[str, str], ScenarioResult] = {}
        self._insights: Dict[Tuple[str, str], AIInsight] = {}

    def save_result(self, result: ScenarioResult) -> None:
        with self._lock:
            self._results[(result.portfolio_id, result.scenario_id)] = result

    def save_insight(self, portfolio_id: str, scenario_id: str, insight: AIInsight) -> None:
        with self._lock:
            self._insights[(portfolio_id, scenario_id)] = insight

    def get_result(self, portfolio_id: str, scenario_id: str) -> Optional[ScenarioResult]:
        with self._lock:
            return self._results.get((portfolio_id, scenario_id))

    def get_insight(self, portfolio_id: str, scenario_id: str) -> Optional[AIInsight]:
        with self._lock:
            return self._insights.get((portfolio_id, scenario_id))
