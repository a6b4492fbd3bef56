"""
Margin mathematics for leveraged perpetual positions.

These functions are pure and deterministic.  They mirror the formulas the
market contract applies so that the keeper can cross-check the ledger's
liquidation answer and so that reporting surfaces can display consistent
numbers.  None of them is authoritative: the ledger's ``is_liquidatable``
decides liquidations and the contract settles funding.

Prices and amounts are plain floats in display units.  Basis-point
parameters are integers (``100`` bps = 1%).

Callers never receive NaN or infinity from :func:`pnl`; degenerate inputs
(zero entry price, zero size) produce zero.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple

from .errors import MarginConfigError
from .precision import BASIS_POINTS

HOURS_PER_YEAR = 8760
FUNDING_INTERVAL_S = 3600


@dataclass(frozen=True)
class PnlResult:
    pnl: float
    pnl_percent: float


def _finite(value: float) -> float:
    return value if math.isfinite(value) else 0.0


def liquidation_price(
    entry_price: float,
    leverage: float,
    is_long: bool,
    maintenance_margin_bps: int = 100,
) -> float:
    """Return the mark price at which collateral erodes to the maintenance margin.

    ``move = 1/leverage - maintenance_margin_bps/10000``.  Longs liquidate at
    ``entry * (1 - move)``, shorts at ``entry * (1 + move)``.

    Raises:
        MarginConfigError: if ``leverage`` is not positive or the maintenance
            margin exceeds the inverse leverage.
    """
    if leverage <= 0:
        raise MarginConfigError(f"leverage must be positive, got {leverage}")
    move = 1.0 / leverage - maintenance_margin_bps / BASIS_POINTS
    if move < 0:
        raise MarginConfigError(
            f"maintenance margin {maintenance_margin_bps} bps exceeds 1/leverage at {leverage}x"
        )
    if is_long:
        return entry_price * (1.0 - move)
    return entry_price * (1.0 + move)


def pnl(entry_price: float, current_price: float, size: float, is_long: bool) -> PnlResult:
    """Unrealised PnL of a position and the same value as a percent of size.

    >>> pnl(100.0, 110.0, 500.0, True)
    PnlResult(pnl=50.0, pnl_percent=10.0)
    """
    if entry_price == 0 or size == 0:
        return PnlResult(0.0, 0.0)
    change = current_price - entry_price
    value = (change / entry_price) * size if is_long else (-change / entry_price) * size
    value = _finite(value)
    percent = _finite(value / size * 100.0)
    return PnlResult(value, percent)


def position_size(collateral: float, leverage: float) -> float:
    """Notional size opened by ``collateral`` at ``leverage``."""
    return collateral * leverage


def effective_leverage(size: float, collateral: float) -> int:
    """Whole-number leverage implied by size and collateral (at least 1)."""
    if collateral <= 0:
        return 0
    return max(int(size / collateral), 1)


def margin_ratio(collateral: float, size: float) -> float:
    """Collateral as a fraction of size; 1.0 when there is no size."""
    if size <= 0:
        return 1.0
    return collateral / size


def has_sufficient_margin(collateral: float, size: float, maintenance_margin_bps: int) -> bool:
    return collateral >= size * maintenance_margin_bps / BASIS_POINTS


def current_margin(
    collateral: float,
    size: float,
    entry_price: float,
    current_price: float,
    is_long: bool,
    accumulated_funding: float = 0.0,
) -> float:
    """Collateral plus unrealised PnL minus funding already owed."""
    return collateral + pnl(entry_price, current_price, size, is_long).pnl - accumulated_funding


def margin_ratio_bps(
    collateral: float,
    size: float,
    entry_price: float,
    current_price: float,
    is_long: bool,
    accumulated_funding: float = 0.0,
) -> float:
    if size == 0:
        return float(BASIS_POINTS)
    margin = current_margin(collateral, size, entry_price, current_price, is_long, accumulated_funding)
    return margin * BASIS_POINTS / size


def is_below_liquidation_price(is_long: bool, current_price: float, liq_price: float) -> bool:
    """Price-threshold liquidation test used by the contract.

    Longs are liquidatable at or below the liquidation price, shorts at or
    above it.
    """
    if is_long:
        return current_price <= liq_price
    return current_price >= liq_price


def distance_to_liquidation(is_long: bool, current_price: float, liq_price: float) -> float:
    """Adverse price move left before liquidation, clamped at zero."""
    distance = current_price - liq_price if is_long else liq_price - current_price
    return max(distance, 0.0)


def distance_to_liquidation_pct(is_long: bool, current_price: float, liq_price: float) -> float:
    if current_price <= 0:
        return 0.0
    return distance_to_liquidation(is_long, current_price, liq_price) / current_price * 100.0


def keeper_reward(remaining_collateral: float, liquidation_fee_bps: int) -> float:
    """Reward paid to the liquidating keeper out of what is left of the collateral."""
    if remaining_collateral <= 0:
        return 0.0
    return remaining_collateral * liquidation_fee_bps / BASIS_POINTS


def liquidation_distribution(
    collateral: float,
    size: float,
    entry_price: float,
    current_price: float,
    is_long: bool,
    liquidation_fee_bps: int,
    accumulated_funding: float = 0.0,
) -> Tuple[float, float, float]:
    """Split a liquidation into ``(to_vault, to_keeper, bad_debt)``."""
    remaining = current_margin(collateral, size, entry_price, current_price, is_long, accumulated_funding)
    if remaining <= 0:
        return 0.0, 0.0, -remaining
    reward = keeper_reward(remaining, liquidation_fee_bps)
    return remaining - reward, reward, 0.0


def trading_fee(size: float, fee_bps: int) -> float:
    return size * fee_bps / BASIS_POINTS


def validate_position_params(
    collateral: float,
    leverage: int,
    min_collateral: float,
    max_leverage: int,
    max_position_size: float,
) -> None:
    """Raise ``ValueError`` describing the first violated opening limit."""
    if collateral < min_collateral:
        raise ValueError("collateral below minimum")
    if leverage < 1 or leverage > max_leverage:
        raise ValueError("invalid leverage")
    if collateral * leverage > max_position_size:
        raise ValueError("position too large")


# Funding.  The contract owns the real schedule; these are display estimates.


def funding_rate_bps(total_long_size: float, total_short_size: float, base_rate_bps: float) -> float:
    """Hourly funding rate weighted by open-interest imbalance.

    Positive means longs pay shorts, negative means shorts pay longs.
    """
    if total_long_size == total_short_size:
        return 0.0
    if total_long_size > total_short_size:
        imbalance = (total_long_size - total_short_size) / total_long_size
        return base_rate_bps * imbalance
    imbalance = (total_short_size - total_long_size) / total_short_size
    return -base_rate_bps * imbalance


def funding_payment(size: float, rate_bps: float, is_long: bool, hours_elapsed: int) -> float:
    """Funding owed by a position: positive pays, negative receives."""
    if hours_elapsed <= 0 or rate_bps == 0:
        return 0.0
    payment = size * abs(rate_bps) * hours_elapsed / BASIS_POINTS
    pays = (rate_bps > 0) == is_long
    return payment if pays else -payment


def hours_since(last_funding_at: int, now: int) -> int:
    if now <= last_funding_at:
        return 0
    return (now - last_funding_at) // FUNDING_INTERVAL_S


def estimate_accrued_funding(
    size: float, is_long: bool, last_funding_at: int, rate_bps: float, now: int
) -> float:
    """Funding a position would owe if settled at ``now``, in whole hours."""
    return funding_payment(size, rate_bps, is_long, hours_since(last_funding_at, now))


def annualized_rate_bps(hourly_rate_bps: float) -> float:
    return hourly_rate_bps * HOURS_PER_YEAR


def estimate_daily_funding(size: float, hourly_rate_bps: float) -> float:
    return size * abs(hourly_rate_bps) * 24 / BASIS_POINTS


def time_until_next_funding(last_funding_at: int, now: int, interval: int = FUNDING_INTERVAL_S) -> int:
    elapsed = max(now - last_funding_at, 0)
    if elapsed >= interval:
        return 0
    return interval - elapsed


__all__ = [
    "PnlResult",
    "liquidation_price",
    "pnl",
    "position_size",
    "effective_leverage",
    "margin_ratio",
    "has_sufficient_margin",
    "current_margin",
    "margin_ratio_bps",
    "is_below_liquidation_price",
    "distance_to_liquidation",
    "distance_to_liquidation_pct",
    "keeper_reward",
    "liquidation_distribution",
    "trading_fee",
    "validate_position_params",
    "funding_rate_bps",
    "funding_payment",
    "hours_since",
    "estimate_accrued_funding",
    "annualized_rate_bps",
    "estimate_daily_funding",
    "time_until_next_funding",
]
