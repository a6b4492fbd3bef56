"""Builders for keeper test fixtures.

These helpers produce a paper-mode configuration, positions and orders
with sensible defaults, and a ledger adapter whose retries do not sleep,
so tests can focus on the behaviour under test.
"""

from __future__ import annotations

import dataclasses
from typing import Any

from tenacity import wait_none

from keeper.src.keeper.clients.paper_ledger import PaperLedgerClient
from keeper.src.keeper.config import KeeperConfig
from keeper.src.keeper.models import (
    Direction,
    MarketParams,
    Order,
    OrderType,
    Position,
    TriggerCondition,
)
from keeper.src.keeper.precision import SCALE
from keeper.src.keeper.services.ledger_adapter import LedgerAdapter
from keeper.src.keeper.services.price_guard import PriceGuard

NOW = 1_700_000_000
ASSET = "XLM"


def clock_at(t: float = NOW):
    return lambda: t


def make_config(**overrides: Any) -> KeeperConfig:
    base = KeeperConfig(
        paper_trading=True,
        keeper_address="GKEEPER",
        market_contract_id="market",
        oracle_contract_id="oracle",
        poll_interval_ms=10,
        order_poll_interval_ms=10,
    )
    return dataclasses.replace(base, **overrides)


def make_ledger(**kwargs: Any) -> PaperLedgerClient:
    kwargs.setdefault("clock", clock_at())
    return PaperLedgerClient(MarketParams(), **kwargs)


def make_adapter(client, config: KeeperConfig = None, guard: PriceGuard = None) -> LedgerAdapter:
    return LedgerAdapter(client, config or make_config(), guard, retry_wait=wait_none())


def make_position(
    id: int,
    *,
    direction: Direction = Direction.LONG,
    entry: int = 100 * SCALE,
    leverage: int = 10,
    collateral: int = 100 * SCALE,
    asset: str = ASSET,
) -> Position:
    return Position.opened(
        id=id,
        trader=f"trader-{id}",
        asset=asset,
        direction=direction,
        collateral=collateral,
        leverage=leverage,
        entry_price=entry,
        params=MarketParams(),
        now=NOW,
    )


def make_order(id: int = 1, **overrides: Any) -> Order:
    fields = dict(
        id=id,
        trader="trader-1",
        asset=ASSET,
        order_type=OrderType.LIMIT_ENTRY,
        direction=Direction.LONG,
        collateral=100 * SCALE,
        leverage=5,
        trigger_price=90 * SCALE,
        trigger_condition=TriggerCondition.BELOW,
        slippage_tolerance_bps=50,
        created_at=NOW - 100,
    )
    fields.update(overrides)
    return Order(**fields)
