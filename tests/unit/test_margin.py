"""Tests for the margin mathematics."""

import math

import pytest

from keeper.src.keeper import margin
from keeper.src.keeper.errors import MarginConfigError


def test_liquidation_price_scenario() -> None:
    assert margin.liquidation_price(100.0, 5, True, 100) == pytest.approx(81.0)
    assert margin.liquidation_price(100.0, 5, False, 100) == pytest.approx(119.0)


@pytest.mark.parametrize("entry", [0.5, 100.0, 12345.678])
def test_liquidation_price_moves_away_as_leverage_drops(entry: float) -> None:
    longs = [margin.liquidation_price(entry, lev, True) for lev in range(1, 11)]
    shorts = [margin.liquidation_price(entry, lev, False) for lev in range(1, 11)]
    assert all(price < entry for price in longs)
    assert all(price > entry for price in shorts)
    # Index 0 is 1x; lower leverage means a liquidation price further from entry.
    assert all(lower < higher for lower, higher in zip(longs, longs[1:]))
    assert all(lower > higher for lower, higher in zip(shorts, shorts[1:]))


def test_liquidation_price_rejects_bad_config() -> None:
    with pytest.raises(MarginConfigError):
        margin.liquidation_price(100.0, 0, True)
    with pytest.raises(MarginConfigError):
        margin.liquidation_price(100.0, 10, True, maintenance_margin_bps=2000)


def test_pnl_scenario() -> None:
    result = margin.pnl(100.0, 110.0, 500.0, True)
    assert result.pnl == pytest.approx(50.0)
    assert result.pnl_percent == pytest.approx(10.0)
    assert margin.pnl(100.0, 90.0, 500.0, False).pnl == pytest.approx(50.0)


def test_pnl_degenerate_inputs_are_zero() -> None:
    assert margin.pnl(100.0, 120.0, 0.0, True) == margin.PnlResult(0.0, 0.0)
    assert margin.pnl(0.0, 120.0, 10.0, False) == margin.PnlResult(0.0, 0.0)


@pytest.mark.parametrize(
    "entry,current,size",
    [(1e-300, 1e300, 1e300), (1e300, -1e300, 1e-300), (5.0, 5.0, 1e308), (-3.0, 7.0, 2.0)],
)
@pytest.mark.parametrize("is_long", [True, False])
def test_pnl_is_always_finite(entry: float, current: float, size: float, is_long: bool) -> None:
    result = margin.pnl(entry, current, size, is_long)
    assert math.isfinite(result.pnl)
    assert math.isfinite(result.pnl_percent)


def test_threshold_and_distance() -> None:
    assert margin.is_below_liquidation_price(True, 91.0, 91.0)
    assert not margin.is_below_liquidation_price(False, 109.0, 110.0)
    assert margin.distance_to_liquidation(True, 90.0, 91.0) == 0.0
    assert margin.distance_to_liquidation_pct(False, 100.0, 110.0) == pytest.approx(10.0)


def test_reward_and_distribution() -> None:
    assert margin.keeper_reward(100.0, 500) == pytest.approx(5.0)
    assert margin.keeper_reward(-1.0, 500) == 0.0
    to_vault, to_keeper, bad_debt = margin.liquidation_distribution(100.0, 1000.0, 100.0, 92.0, True, 500)
    assert to_keeper == pytest.approx(1.0)
    assert to_vault == pytest.approx(19.0)
    assert bad_debt == 0.0
    assert margin.liquidation_distribution(100.0, 1000.0, 100.0, 85.0, True, 500) == pytest.approx(
        (0.0, 0.0, 50.0)
    )


def test_leverage_helpers() -> None:
    assert margin.effective_leverage(1000.0, 100.0) == 10
    assert margin.effective_leverage(50.0, 100.0) == 1
    assert margin.effective_leverage(100.0, 0.0) == 0
    assert margin.margin_ratio(100.0, 0.0) == 1.0
    assert margin.has_sufficient_margin(10.0, 1000.0, 100)
    with pytest.raises(ValueError, match="invalid leverage"):
        margin.validate_position_params(100.0, 11, 10.0, 10, 100_000.0)


def test_funding_estimates() -> None:
    assert margin.funding_rate_bps(200.0, 100.0, 1) == pytest.approx(0.5)
    assert margin.funding_rate_bps(100.0, 200.0, 1) == pytest.approx(-0.5)
    assert margin.funding_rate_bps(100.0, 100.0, 1) == 0.0
    assert margin.funding_payment(1000.0, 0.5, True, 2) == pytest.approx(0.1)
    assert margin.funding_payment(1000.0, 0.5, False, 2) == pytest.approx(-0.1)
    assert margin.hours_since(0, 7199) == 1
    assert margin.estimate_accrued_funding(1000.0, True, 0, 0.5, 7200) == pytest.approx(0.1)
    assert margin.time_until_next_funding(1000, 1600) == 3000
    assert margin.annualized_rate_bps(1) == 8760
