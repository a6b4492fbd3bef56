"""End-to-end flow against the paper ledger.

A limit entry order is placed through the adapter, the order executor
opens the position once the oracle crosses the trigger, and the
liquidation keeper closes it after the price collapses.  No network is
involved; the paper ledger answers with the same payload shapes as the
JSON-RPC gateway.
"""

import pytest

from keeper.src.keeper.liquidation_keeper import LiquidationKeeper
from keeper.src.keeper.models import Direction, OrderStatus, TriggerCondition
from keeper.src.keeper.order_evaluator import OrderExecutor
from keeper.src.keeper.precision import SCALE
from scripts import paper_keeper
from tests.helpers.factories import ASSET, NOW, clock_at, make_adapter, make_config, make_ledger


@pytest.mark.asyncio
async def test_order_to_liquidation_lifecycle() -> None:
    ledger = make_ledger()
    ledger.set_price(ASSET, 100 * SCALE)
    config = make_config()
    adapter = make_adapter(ledger, config)
    executor = OrderExecutor(adapter, config, clock=clock_at())
    keeper = LiquidationKeeper(adapter, config)

    order_id = await adapter.place_limit_order(
        trader="trader-1",
        asset=ASSET,
        direction=Direction.LONG,
        collateral=100 * SCALE,
        leverage=10,
        trigger_price=95 * SCALE,
        trigger_condition=TriggerCondition.BELOW,
        slippage_tolerance_bps=100,
        expires_at=NOW + 3600,
    )
    assert (await executor.tick()).held == 1

    ledger.set_price(ASSET, 95 * SCALE)
    assert (await executor.tick()).executed == 1
    assert (await adapter.get_order(order_id)).status is OrderStatus.EXECUTED
    (position_id,) = await adapter.list_open_position_ids()
    position = await adapter.get_position(position_id)
    assert position.entry_price == 95 * SCALE

    assert (await keeper.tick()).liquidated == 0
    ledger.set_price(ASSET, 86 * SCALE)
    report = await keeper.tick()
    assert report.liquidated == 1
    assert await adapter.list_open_position_ids() == []
    assert keeper.stats.liquidation_count == 1


@pytest.mark.asyncio
async def test_paper_simulation_prints_summary(capsys) -> None:
    await paper_keeper.simulate(positions=3, ticks=8, step_pct=10.0, start_price=100.0, asset=ASSET)
    out = capsys.readouterr().out
    assert "tick 8:" in out
    assert "Total liquidations: 3" in out
