import pytest

from econlens.data_models.portfolio_snapshot import AssetCategory, AssetHolding, PortfolioSnapshot
from econlens.errors import InvalidPortfolioError
from econlens.services.portfolio_service import (
    compute_category_allocation,
    compute_herfindahl_index,
    compute_risk_profile,
    concentration_warnings,
    validate_portfolio,
)
from factories import D, G, I, make_portfolio, make_worked_example_portfolio


def test_valid_portfolio_passes():
    validate_portfolio(make_worked_example_portfolio())


def test_allocation_within_tolerance_is_accepted():
    holdings = [
        AssetHolding(symbol="VTI", asset_category=D, allocation_percentage=60.005, dollar_amount=60_000.0),
        AssetHolding(symbol="BND", asset_category=G, allocation_percentage=40.0, dollar_amount=40_000.0),
    ]
    validate_portfolio(PortfolioSnapshot(id="pf", total_value=100_000.0, holdings=holdings))


def test_allocation_sum_outside_tolerance_raises():
    with pytest.raises(InvalidPortfolioError) as exc:
        validate_portfolio(make_portfolio([("VTI", D, 60.02), ("BND", G, 40.0)]))
    assert exc.value.portfolio_id == "pf-1"


def test_dollar_sum_mismatch_raises():
    holdings = [
        AssetHolding(symbol="VTI", asset_category=D, allocation_percentage=50.0, dollar_amount=50_000.0),
        AssetHolding(symbol="BND", asset_category=G, allocation_percentage=50.0, dollar_amount=49_000.0),
    ]
    with pytest.raises(InvalidPortfolioError) as exc:
        validate_portfolio(PortfolioSnapshot(id="pf", total_value=100_000.0, holdings=holdings))
    assert any("dollar amounts" in p for p in exc.value.problems)


@pytest.mark.parametrize("bad", [float("nan"), float("inf"), -float("inf")])
def test_non_finite_dollar_amount_raises(bad):
    holdings = [
        AssetHolding(symbol="VTI", asset_category=D, allocation_percentage=60.0, dollar_amount=bad),
        AssetHolding(symbol="BND", asset_category=G, allocation_percentage=40.0, dollar_amount=40_000.0),
    ]
    with pytest.raises(InvalidPortfolioError) as exc:
        validate_portfolio(PortfolioSnapshot(id="pf", total_value=100_000.0, holdings=holdings))
    assert any(p.startswith("VTI: dollar amount") for p in exc.value.problems)


@pytest.mark.parametrize("bad", [float("nan"), float("inf")])
def test_non_finite_total_value_raises(bad):
    holdings = [
        AssetHolding(symbol="VTI", asset_category=D, allocation_percentage=60.0, dollar_amount=60_000.0),
        AssetHolding(symbol="BND", asset_category=G, allocation_percentage=40.0, dollar_amount=40_000.0),
    ]
    with pytest.raises(InvalidPortfolioError) as exc:
        validate_portfolio(PortfolioSnapshot(id="pf", total_value=bad, holdings=holdings))
    assert any(p.startswith("total value") for p in exc.value.problems)


def test_nan_allocation_raises():
    holdings = [
        AssetHolding(symbol="VTI", asset_category=D, allocation_percentage=float("nan"), dollar_amount=60_000.0),
        AssetHolding(symbol="BND", asset_category=G, allocation_percentage=40.0, dollar_amount=40_000.0),
    ]
    with pytest.raises(InvalidPortfolioError):
        validate_portfolio(PortfolioSnapshot(id="pf", total_value=100_000.0, holdings=holdings))


def test_all_problems_are_reported_together():
    holdings = [
        AssetHolding(symbol="bad symbol!", asset_category=D, allocation_percentage=50.0, dollar_amount=50.0, risk_rating=11),
        AssetHolding(symbol="BND", asset_category=G, allocation_percentage=50.0, dollar_amount=50.0),
    ]
    with pytest.raises(InvalidPortfolioError) as exc:
        validate_portfolio(PortfolioSnapshot(id="pf", total_value=100.0, holdings=holdings))
    assert len(exc.value.problems) == 2


def test_empty_portfolio_raises():
    with pytest.raises(InvalidPortfolioError):
        validate_portfolio(PortfolioSnapshot(id="pf", total_value=0.0, holdings=[]))


def test_concentration_warnings():
    assert concentration_warnings(make_worked_example_portfolio()) == []

    single = concentration_warnings(make_portfolio([("VTI", D, 85.0), ("BND", G, 15.0)]))
    assert len(single) == 1 and "VTI" in single[0]

    cash = concentration_warnings(
        make_portfolio([("SGOV", AssetCategory.CASH_EQUIVALENTS, 60.0), ("VTI", D, 40.0)])
    )
    assert len(cash) == 1 and "cash" in cash[0]


def test_herfindahl_index():
    assert compute_herfindahl_index(make_portfolio([("VTI", D, 100.0)])) == pytest.approx(1.0)
    four = make_portfolio([("A", D, 25.0), ("B", I, 25.0), ("C", G, 25.0), ("E", D, 25.0)])
    assert compute_herfindahl_index(four) == pytest.approx(0.25)


def test_category_allocation_merges_holdings():
    alloc = compute_category_allocation(make_portfolio([("A", D, 30.0), ("B", D, 30.0), ("C", G, 40.0)]))
    assert alloc == {D: pytest.approx(60.0), G: pytest.approx(40.0)}


def test_risk_profile():
    portfolio = make_worked_example_portfolio()
    profile = compute_risk_profile(portfolio)

    assert profile.concentration_index == pytest.approx(0.445)
    assert profile.weighted_risk_rating == pytest.approx(5.0)
    assert profile.max_region_share == pytest.approx(100.0)
