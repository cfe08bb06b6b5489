"""Exception types raised by the EconLens scenario core.

Input errors are the caller's fault and are never retried. Provider errors are
absorbed by the insight fallback chain and only escape the provider layer.
"""
from __future__ import annotations

from typing import List, Optional


class EconLensError(Exception):
    """Base class for all EconLens errors."""

    retryable: bool = False


class InvalidPortfolioError(EconLensError):
    """The portfolio snapshot violates its allocation or value invariants."""

    def __init__(self, portfolio_id: str, problems: List[str]):
        self.portfolio_id = portfolio_id
        self.problems = list(problems)
        super().__init__(f"Portfolio {portfolio_id!r} is invalid: {'; '.join(self.problems)}")


class UnknownScenarioError(EconLensError):
    def __init__(self, scenario_id: str, catalog_version: Optional[str] = None):
        self.scenario_id = scenario_id
        self.catalog_version = catalog_version
        msg = f"Scenario {scenario_id!r} is not in the catalog"
        if catalog_version:
            msg += f" (version {catalog_version})"
        super().__init__(msg)


class PortfolioNotFoundError(EconLensError):
    def __init__(self, portfolio_id: str):
        self.portfolio_id = portfolio_id
        super().__init__(f"Portfolio {portfolio_id!r} not found")


class CatalogValidationError(EconLensError):
    """Raised at load time when the scenario catalog is incomplete or inconsistent."""

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        super().__init__("Scenario catalog failed validation: " + "; ".join(self.problems))


class PipelineBusyError(EconLensError):
    """The inference worker pool and its queue are full. Try again later."""

    retryable = True


class InferenceError(EconLensError):
    """Base class for failures of the external inference provider."""

    retryable = True
    reason = "provider_error"


class InferenceTimeoutError(InferenceError):
    reason = "provider_timeout"


class InferenceRateLimitedError(InferenceError):
    reason = "provider_rate_limited"


class InferenceProviderError(InferenceError):
    reason = "provider_error"
