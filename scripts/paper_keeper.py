#!/usr/bin/env python
"""
Paper keeper simulation.

Seeds the in-memory paper ledger with a handful of leveraged positions,
then runs the liquidation keeper for a number of ticks while the oracle
price falls by a fixed step each tick.  Positions are liquidated as the
price crosses their liquidation price, and the session summary is
printed at the end.

Example::

    python scripts/paper_keeper.py --positions 5 --ticks 10 --step-pct 2
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging

from keeper.src.keeper.clients.paper_ledger import PaperLedgerClient
from keeper.src.keeper.config import KeeperConfig
from keeper.src.keeper.liquidation_keeper import LiquidationKeeper
from keeper.src.keeper.models import Direction
from keeper.src.keeper.precision import SCALE, format_amount, to_fixed
from keeper.src.keeper.services.ledger_adapter import LedgerAdapter
from keeper.src.keeper.services.price_guard import PriceGuard


async def simulate(positions: int, ticks: int, step_pct: float, start_price: float, asset: str) -> None:
    config = KeeperConfig(paper_trading=True, market_contract_id="paper-market", keeper_address="paper-keeper")
    ledger = PaperLedgerClient(config.market)
    price = to_fixed(start_price)
    ledger.set_price(asset, price)
    for i in range(positions):
        leverage = 2 + (i % 9)
        ledger.open_position(f"trader-{i}", asset, Direction.LONG, 100 * SCALE, leverage)
    # A step can exceed the deviation bound; the paper run is about liquidation flow.
    guard = PriceGuard(config.max_price_staleness_s, 0)
    keeper = LiquidationKeeper(LedgerAdapter(ledger, config, guard), config)
    for tick in range(1, ticks + 1):
        report = await keeper.tick()
        print(f"tick {tick}: price={format_amount(price)} {dataclasses.asdict(report)}")
        price = int(price * (1 - step_pct / 100))
        ledger.set_price(asset, price)
    print(keeper.stats.summary())


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the liquidation keeper against a paper ledger.")
    parser.add_argument("--positions", type=int, default=5, help="Number of long positions to seed.")
    parser.add_argument("--ticks", type=int, default=10, help="Number of keeper ticks to run.")
    parser.add_argument("--step-pct", type=float, default=2.0, help="Price drop per tick in percent.")
    parser.add_argument("--start-price", type=float, default=100.0, help="Initial oracle price.")
    parser.add_argument("--asset", default="XLM", help="Asset symbol.")
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args()
    logging.basicConfig(level=args.log_level)
    asyncio.run(simulate(args.positions, args.ticks, args.step_pct, args.start_price, args.asset))


if __name__ == "__main__":
    main()
