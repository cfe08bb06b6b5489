from datetime import datetime, timezone

import pytest

from econlens.config import PipelineSettings
from econlens.services.budget_service import MonthlyBudget, estimate_cost, estimate_tokens
from econlens.services.metrics import InsightMetrics


class _Clock:
    def __init__(self, ts):
        self.ts = ts

    def __call__(self):
        return self.ts


def test_reserve_and_settle():
    budget = MonthlyBudget(1.0)
    assert budget.try_reserve(0.6)
    assert not budget.try_reserve(0.6)

    budget.settle(0.6, 0.2)
    assert budget.spent == pytest.approx(0.2)
    assert budget.try_reserve(0.6)
    budget.release(0.6)
    assert budget.remaining == pytest.approx(0.8)


def test_zero_budget_is_exhausted():
    budget = MonthlyBudget(0.0)
    assert budget.exhausted
    assert not budget.try_reserve(0.0001)


def test_budget_resets_on_utc_month_boundary():
    clock = _Clock(datetime(2025, 1, 31, 23, 59, tzinfo=timezone.utc))
    metrics = InsightMetrics()
    budget = MonthlyBudget(1.0, clock=clock, metrics=metrics)
    assert budget.try_reserve(1.0)
    budget.settle(1.0, 1.0)
    assert budget.exhausted
    assert metrics.sample("econlens_monthly_cost_usd") == pytest.approx(1.0)

    clock.ts = datetime(2025, 2, 1, 0, 0, tzinfo=timezone.utc)
    assert not budget.exhausted
    assert budget.spent == 0.0
    assert metrics.sample("econlens_monthly_cost_usd") == 0.0


def test_cost_estimates():
    assert estimate_tokens("abcd" * 100) == 100
    assert estimate_tokens("") == 1
    assert estimate_cost(1000, 1000, 0.003, 0.015) == pytest.approx(0.018)


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("ECONLENS_MAX_RETRIES", "5")
    monkeypatch.setenv("ECONLENS_MONTHLY_BUDGET_USD", "12.5")
    settings = PipelineSettings.from_env()

    assert settings.max_retries == 5
    assert settings.monthly_budget_usd == 12.5
    assert settings.inference_timeout_seconds == 30.0
    assert settings.max_tokens == 4000
