"""
Keeper package for the perpetual futures market.

This package contains the long-running processes that keep the market
healthy: the liquidation keeper, which closes positions whose collateral
has eroded to the maintenance margin, and the order executor, which
fires conditional limit, stop-loss and take-profit orders.  Both are
started by ``keeper_main.py``.
"""

from .liquidation_keeper import KeeperStats, LiquidationKeeper  # noqa: F401
from .order_evaluator import OrderExecutor  # noqa: F401
