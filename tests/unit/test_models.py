"""Tests for the position and order models and the ledger decode boundary."""

import pytest
from pydantic import ValidationError

from keeper.src.keeper.errors import LedgerDecodeError
from keeper.src.keeper.models import (
    Direction,
    MarketParams,
    OrderStatus,
    OrderType,
    order_to_ledger,
    parse_order,
    parse_position,
    position_to_ledger,
)
from keeper.src.keeper.precision import SCALE
from tests.helpers.factories import NOW, make_order, make_position


def test_direction_decoding() -> None:
    assert Direction.decode(0) is Direction.LONG
    assert Direction.decode("Short") is Direction.SHORT
    assert Direction.decode(["Long"]) is Direction.LONG
    assert Direction.LONG.code == 0
    for bad in (True, 2, "long", None, 1.0):
        with pytest.raises(LedgerDecodeError):
            Direction.decode(bad)


def test_order_status_codes() -> None:
    assert OrderStatus.decode("CancelledSlippage") is OrderStatus.CANCELLED_SLIPPAGE
    assert OrderStatus.EXPIRED.code == 4
    assert OrderStatus.EXECUTED.is_terminal
    assert not OrderStatus.PENDING.is_terminal


def test_opened_position_respects_size_and_liquidation_price() -> None:
    position = make_position(1, leverage=10)
    assert position.size == position.collateral * 10
    assert position.leverage == 10
    assert abs(position.liquidation_price - 91 * SCALE) <= 1
    with pytest.raises(ValueError):
        make_position(2, leverage=11)


def test_parse_position_accepts_camel_case_and_string_ints() -> None:
    raw = {
        "id": 7,
        "trader": "GTRADER",
        "asset": "XLM",
        "direction": 1,
        "collateral": "1000000000",
        "size": "5000000000",
        "entryPrice": "1000000000",
        "liquidationPrice": "1190000000",
        "timestamp": NOW,
        "lastFundingTime": NOW,
        "accumulatedFunding": "0",
    }
    position = parse_position(raw)
    assert position.direction is Direction.SHORT
    assert position.size == 5_000_000_000
    assert position.leverage == 5
    assert position.opened_at == NOW
    assert position.last_funding_at == NOW


@pytest.mark.parametrize(
    "raw",
    [
        {"id": 1, "trader": "G", "asset": "XLM", "direction": "Sideways", "collateral": 1,
         "size": 1, "entry_price": 1, "liquidation_price": 1},
        {"id": 1, "trader": "G", "asset": "XLM", "direction": 0},
        {"id": 1, "trader": "G", "asset": "XLM", "direction": 0, "collateral": "lots",
         "size": 1, "entry_price": 1, "liquidation_price": 1},
        ["not", "a", "mapping"],
    ],
)
def test_parse_position_fails_loudly(raw) -> None:
    with pytest.raises(LedgerDecodeError):
        parse_position(raw)


def test_ledger_encoding_round_trips() -> None:
    position = make_position(3, direction=Direction.SHORT)
    encoded = position_to_ledger(position)
    assert encoded["direction"] == 1
    assert parse_position(encoded) == position

    order = make_order(4, order_type=OrderType.STOP_LOSS, position_id=3, has_position=True)
    encoded_order = order_to_ledger(order)
    assert encoded_order["order_type"] == OrderType.STOP_LOSS.code
    assert parse_order(encoded_order) == order


def test_order_position_link_rules() -> None:
    with pytest.raises(ValidationError):
        make_order(1, order_type=OrderType.STOP_LOSS)
    with pytest.raises(ValidationError):
        make_order(1, has_position=True, position_id=9)
    executed = make_order(1, has_position=True, position_id=9, status=OrderStatus.EXECUTED)
    assert executed.linked_position_id == 9
    with pytest.raises(LedgerDecodeError):
        parse_order(order_to_ledger(make_order(1)) | {"order_type": 1})


def test_add_collateral_recomputes_liquidation_price() -> None:
    params = MarketParams()
    position = make_position(1, leverage=10)
    topped_up = position.with_added_collateral(100 * SCALE, params)
    assert topped_up.collateral == 200 * SCALE
    assert topped_up.leverage == 5
    assert abs(topped_up.liquidation_price - 81 * SCALE) <= 1
    assert topped_up.liquidation_price < position.liquidation_price
    assert position.liquidation_price != topped_up.liquidation_price

    # Effective leverage is clamped at 1x when collateral exceeds size.
    deep = position.with_added_collateral(10_000 * SCALE, params)
    assert deep.leverage == 1
    with pytest.raises(ValueError):
        position.with_added_collateral(0, params)


def test_funding_accrues_in_whole_hours() -> None:
    position = make_position(1, leverage=10)
    assert position.with_funding(1, NOW + 3599) is position
    accrued = position.with_funding(1, NOW + 2 * 3600 + 5)
    assert accrued.accumulated_funding == 2_000_000
    assert accrued.last_funding_at == NOW + 7200


def test_estimated_reward_matches_contract_formula() -> None:
    position = make_position(1, leverage=10)
    assert abs(position.estimated_reward(92 * SCALE, 500) - 10_000_000) <= 1
    assert position.is_liquidatable_at(90 * SCALE)
    assert not position.is_liquidatable_at(95 * SCALE)


def test_market_params_reject_margin_above_inverse_leverage() -> None:
    with pytest.raises(ValidationError):
        MarketParams(maintenance_margin_bps=2000, max_leverage=10)
