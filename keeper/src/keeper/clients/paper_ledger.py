"""
Paper ledger client for simulation.

This client is used in paper trading mode and in tests to stand in for
the real ledger.  It keeps positions, conditional orders and oracle
prices in memory and answers the same contract functions the JSON-RPC
gateway does, returning the same loosely typed payloads (enum codes,
fixed-point integers, camelCase keys) so that the decode path is
exercised end to end.

Liquidation uses the contract's price-threshold rule and pays the keeper
``remaining * liquidation_fee_bps / 10000``.  A liquidated position is
deleted, so a second liquidate of the same id raises
``PositionNotFoundError``, exactly like the real contract.

Failures can be scripted with :meth:`PaperLedgerClient.fail_next` to
exercise retry and isolation logic.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import defaultdict, deque
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Tuple

from ..errors import (
    LedgerError,
    LedgerRejectedError,
    PositionNotFoundError,
    TransientLedgerError,
)
from ..models import (
    Direction,
    MarketParams,
    Order,
    OrderStatus,
    OrderType,
    Position,
    TriggerCondition,
    order_to_ledger,
    position_to_ledger,
)

logger = logging.getLogger(__name__)


class PaperLedgerClient:
    """Simulate the market and oracle contracts in memory."""

    def __init__(
        self,
        params: Optional[MarketParams] = None,
        *,
        clock: Callable[[], float] = time.time,
        latency: float = 0.0,
    ) -> None:
        self.params = params or MarketParams()
        self.clock = clock
        self.latency = latency
        self.positions: Dict[int, Position] = {}
        self.orders: Dict[int, Order] = {}
        self.prices: Dict[str, Tuple[int, int]] = {}
        self.liquidated: List[int] = []
        self.calls: List[Tuple[str, str]] = []
        self._last_position_id = 0
        self._last_order_id = 0
        self._faults: Dict[str, Deque[LedgerError]] = defaultdict(deque)

    # Seeding helpers

    def set_price(self, asset: str, price: int, timestamp: Optional[int] = None) -> None:
        self.prices[asset] = (price, int(self.clock()) if timestamp is None else timestamp)

    def add_position(self, position: Position) -> Position:
        self.positions[position.id] = position
        self._last_position_id = max(self._last_position_id, position.id)
        return position

    def open_position(
        self, trader: str, asset: str, direction: Direction, collateral: int, leverage: int
    ) -> Position:
        price, _ = self._price_of(asset)
        position = Position.opened(
            id=self._last_position_id + 1,
            trader=trader,
            asset=asset,
            direction=direction,
            collateral=collateral,
            leverage=leverage,
            entry_price=price,
            params=self.params,
            now=int(self.clock()),
        )
        return self.add_position(position)

    def add_order(self, order: Order) -> Order:
        self.orders[order.id] = order
        self._last_order_id = max(self._last_order_id, order.id)
        return order

    def fail_next(self, method: str, times: int = 1, error: Optional[LedgerError] = None) -> None:
        """Make the next ``times`` calls to ``method`` raise ``error``."""
        for _ in range(times):
            self._faults[method].append(error or TransientLedgerError("simulated outage", method=method))

    # LedgerClient protocol

    async def call(self, contract: str, method: str, args: Optional[Mapping[str, Any]] = None) -> Any:
        return await self._dispatch(contract, method, dict(args or {}))

    async def submit(
        self, contract: str, method: str, args: Optional[Mapping[str, Any]] = None
    ) -> Dict[str, Any]:
        value = await self._dispatch(contract, method, dict(args or {}))
        return {"hash": uuid.uuid4().hex, "returnValue": value, "paper": True}

    async def close(self) -> None:
        return None

    async def _dispatch(self, contract: str, method: str, args: Dict[str, Any]) -> Any:
        # Yield so concurrent callers interleave as they would over the network.
        await asyncio.sleep(self.latency)
        self.calls.append((contract, method))
        faults = self._faults.get(method)
        if faults:
            raise faults.popleft()
        handler = getattr(self, f"_fn_{method}", None)
        if handler is None:
            raise LedgerRejectedError(f"unknown contract function {method}", method=method)
        return handler(**args)

    # Contract functions

    def _price_of(self, asset: str) -> Tuple[int, int]:
        if asset not in self.prices:
            raise LedgerRejectedError(f"asset {asset} not supported by oracle", method="get_price")
        return self.prices[asset]

    def _position(self, position_id: int) -> Position:
        position = self.positions.get(position_id)
        if position is None:
            raise PositionNotFoundError(f"position {position_id} not found", method="get_position")
        return position

    def _order(self, order_id: int) -> Order:
        order = self.orders.get(order_id)
        if order is None:
            raise PositionNotFoundError(f"order {order_id} not found", method="get_order")
        return order

    def _fn_get_all_position_ids(self) -> List[int]:
        return sorted(self.positions)

    def _fn_get_position(self, position_id: int) -> Optional[Dict[str, Any]]:
        position = self.positions.get(position_id)
        return position_to_ledger(position) if position is not None else None

    def _fn_is_liquidatable(self, position_id: int) -> bool:
        position = self._position(position_id)
        price, _ = self._price_of(position.asset)
        return position.is_liquidatable_at(price)

    def _fn_liquidate(self, keeper: str, position_id: int) -> int:
        position = self._position(position_id)
        price, _ = self._price_of(position.asset)
        if not position.is_liquidatable_at(price):
            raise LedgerRejectedError(f"position {position_id} is not liquidatable", method="liquidate")
        reward = position.estimated_reward(price, self.params.liquidation_fee_bps)
        del self.positions[position_id]
        self.liquidated.append(position_id)
        logger.info("Paper liquidation of position %d by %s, reward %d", position_id, keeper, reward)
        return reward

    def _fn_get_price(self, asset: str) -> int:
        return self._price_of(asset)[0]

    def _fn_get_price_data(self, asset: str) -> Dict[str, int]:
        price, timestamp = self._price_of(asset)
        return {"price": price, "timestamp": timestamp}

    def _fn_get_config(self) -> Dict[str, Any]:
        return self.params.model_dump()

    def _fn_get_all_order_ids(self) -> List[int]:
        return sorted(self.orders)

    def _fn_get_order(self, order_id: int) -> Optional[Dict[str, Any]]:
        order = self.orders.get(order_id)
        return order_to_ledger(order) if order is not None else None

    def _fn_execute_order(self, keeper: str, order_id: int) -> int:
        order = self._order(order_id)
        if order.status is not OrderStatus.PENDING:
            raise LedgerRejectedError(f"order {order_id} is {order.status.value}", method="execute_order")
        position_id = 0
        if order.order_type is OrderType.LIMIT_ENTRY:
            position_id = self.open_position(
                order.trader, order.asset, order.direction, order.collateral, order.leverage
            ).id
        else:
            position_id = self._position(order.position_id).id
            del self.positions[position_id]
        self.orders[order_id] = order.model_copy(update={"status": OrderStatus.EXECUTED})
        logger.info("Paper execution of order %d by %s", order_id, keeper)
        return position_id

    def _fn_cancel_order(self, keeper: str, order_id: int, status: int) -> None:
        order = self._order(order_id)
        if order.status is not OrderStatus.PENDING:
            raise LedgerRejectedError(f"order {order_id} is {order.status.value}", method="cancel_order")
        self.orders[order_id] = order.model_copy(update={"status": OrderStatus.decode(status)})

    def _fn_place_limit_order(
        self,
        keeper: str,
        trader: str,
        asset: str,
        direction: int,
        collateral: int,
        leverage: int,
        trigger_price: int,
        trigger_condition: int,
        slippage_tolerance_bps: int,
        expires_at: Optional[int] = None,
    ) -> int:
        order = Order(
            id=self._last_order_id + 1,
            trader=trader,
            asset=asset,
            order_type=OrderType.LIMIT_ENTRY,
            direction=direction,
            collateral=collateral,
            leverage=leverage,
            trigger_price=trigger_price,
            trigger_condition=trigger_condition,
            slippage_tolerance_bps=slippage_tolerance_bps,
            created_at=int(self.clock()),
            expires_at=expires_at,
        )
        return self.add_order(order).id

    def _fn_place_stop_order(
        self,
        keeper: str,
        trader: str,
        position_id: int,
        order_type: int,
        trigger_price: int,
        slippage_tolerance_bps: int,
        expires_at: Optional[int] = None,
    ) -> int:
        position = self._position(position_id)
        kind = OrderType.decode(order_type)
        # Stop-loss fires on an adverse move, take-profit on a favourable one.
        adverse = TriggerCondition.BELOW if position.is_long else TriggerCondition.ABOVE
        favourable = TriggerCondition.ABOVE if position.is_long else TriggerCondition.BELOW
        order = Order(
            id=self._last_order_id + 1,
            trader=trader,
            asset=position.asset,
            order_type=kind,
            direction=position.direction,
            collateral=position.collateral,
            leverage=max(position.leverage, 1),
            trigger_price=trigger_price,
            trigger_condition=adverse if kind is OrderType.STOP_LOSS else favourable,
            slippage_tolerance_bps=slippage_tolerance_bps,
            position_id=position_id,
            has_position=True,
            created_at=int(self.clock()),
            expires_at=expires_at,
        )
        return self.add_order(order).id


__all__ = ["PaperLedgerClient"]
