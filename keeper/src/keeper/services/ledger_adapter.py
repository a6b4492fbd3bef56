"""
Ledger query adapter.

``LedgerAdapter`` is the only gateway between the keeper processes and
the ledger.  It wraps a :class:`~keeper.clients.base.LedgerClient`,
decodes every payload into the typed models of ``keeper.models`` and
applies the retry policy:

* ``TransientLedgerError`` is retried with exponential backoff up to
  ``config.retry_attempts`` attempts, then re-raised.
* ``PositionNotFoundError``, ``LedgerRejectedError`` and
  ``LedgerDecodeError`` propagate immediately.

Price reads go through the optional :class:`PriceGuard`; a stale or
deviant quote surfaces as ``UntrustedPriceError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..clients.base import LedgerClient
from ..config import KeeperConfig
from ..errors import (
    LedgerDecodeError,
    LiquidationUnconfirmedError,
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
    PriceQuote,
    TriggerCondition,
    parse_order,
    parse_position,
)
from .price_guard import PriceGuard

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CANCEL_STATUSES = (OrderStatus.CANCELLED, OrderStatus.CANCELLED_SLIPPAGE, OrderStatus.EXPIRED)


@dataclass(frozen=True)
class LiquidationReceipt:
    position_id: int
    tx_hash: str
    reward: int


def _as_int(value: Any, what: str, method: str) -> int:
    if isinstance(value, bool):
        raise LedgerDecodeError(f"{what} is not an integer: {value!r}", method=method)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            pass
    raise LedgerDecodeError(f"{what} is not an integer: {value!r}", method=method, detail=value)


def _as_id_list(value: Any, method: str) -> List[int]:
    if not isinstance(value, (list, tuple)):
        raise LedgerDecodeError(f"{method} did not return a list", method=method, detail=value)
    return [_as_int(item, "id", method) for item in value]


class LedgerAdapter:
    """Typed, retrying access to the market and oracle contracts."""

    def __init__(
        self,
        client: LedgerClient,
        config: KeeperConfig,
        price_guard: Optional[PriceGuard] = None,
        *,
        retry_wait: Any = None,
    ) -> None:
        self.client = client
        self.config = config
        self.price_guard = price_guard
        self.market = config.market_contract_id
        self.oracle = config.oracle_contract_id or config.market_contract_id
        self._retry_wait = retry_wait if retry_wait is not None else wait_exponential(min=1, max=8)

    async def _retrying(self, fn: Callable[[], Awaitable[T]]) -> T:
        retryer = AsyncRetrying(
            stop=stop_after_attempt(self.config.retry_attempts),
            wait=self._retry_wait,
            retry=retry_if_exception_type(TransientLedgerError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retryer:
            with attempt:
                result = await fn()
        return result

    async def _call(self, contract: str, method: str, args: Optional[Dict[str, Any]] = None) -> Any:
        return await self._retrying(lambda: self.client.call(contract, method, args))

    async def _submit(self, method: str, args: Dict[str, Any]) -> Dict[str, Any]:
        payload = {"keeper": self.config.keeper_address, **args}
        return await self._retrying(lambda: self.client.submit(self.market, method, payload))

    # Positions

    async def list_open_position_ids(self) -> List[int]:
        return _as_id_list(await self._call(self.market, "get_all_position_ids"), "get_all_position_ids")

    async def get_position(self, position_id: int) -> Position:
        raw = await self._call(self.market, "get_position", {"position_id": position_id})
        if raw is None:
            raise PositionNotFoundError(f"position {position_id} not found", method="get_position")
        return parse_position(raw)

    async def is_liquidatable(self, position_id: int) -> bool:
        """The ledger's authoritative liquidation answer for ``position_id``."""
        value = await self._call(self.market, "is_liquidatable", {"position_id": position_id})
        if not isinstance(value, bool):
            raise LedgerDecodeError(
                f"is_liquidatable returned {value!r}", method="is_liquidatable", detail=value
            )
        return value

    async def liquidate(self, position_id: int) -> LiquidationReceipt:
        """Submit a liquidation and return its receipt.

        Raises:
            LiquidationUnconfirmedError: the position was gone on a retry,
                so an earlier attempt that reported a transient failure may
                have landed.
        """
        attempts = 0
        payload = {"keeper": self.config.keeper_address, "position_id": position_id}

        async def submit() -> Dict[str, Any]:
            nonlocal attempts
            attempts += 1
            return await self.client.submit(self.market, "liquidate", payload)

        try:
            result = await self._retrying(submit)
        except PositionNotFoundError as exc:
            if attempts > 1:
                raise LiquidationUnconfirmedError(
                    f"position {position_id} gone after {attempts} liquidate attempts",
                    method="liquidate",
                    detail=exc.detail,
                ) from exc
            raise
        reward = _as_int(result.get("returnValue", 0) or 0, "keeper reward", "liquidate")
        return LiquidationReceipt(position_id=position_id, tx_hash=str(result["hash"]), reward=reward)

    # Prices

    async def fetch_quote(self, asset: str) -> PriceQuote:
        """Read the oracle quote for ``asset`` without vetting it."""
        raw = await self._call(self.oracle, "get_price_data", {"asset": asset})
        if not isinstance(raw, dict):
            raise LedgerDecodeError("price data is not a mapping", method="get_price_data", detail=raw)
        try:
            return PriceQuote(
                asset=asset,
                price=_as_int(raw.get("price"), "price", "get_price_data"),
                timestamp=_as_int(raw.get("timestamp"), "timestamp", "get_price_data"),
            )
        except ValidationError as exc:
            raise LedgerDecodeError(f"invalid price data: {exc}", method="get_price_data", detail=raw) from exc

    async def get_price(self, asset: str) -> PriceQuote:
        """Read and vet the oracle quote; raises ``UntrustedPriceError`` if untrusted."""
        quote = await self.fetch_quote(asset)
        if self.price_guard is not None:
            return await self.price_guard.check(quote)
        return quote

    async def get_market_params(self) -> MarketParams:
        raw = await self._call(self.market, "get_config")
        if not isinstance(raw, dict):
            raise LedgerDecodeError("market config is not a mapping", method="get_config", detail=raw)
        try:
            return MarketParams.model_validate(raw)
        except ValidationError as exc:
            raise LedgerDecodeError(f"invalid market config: {exc}", method="get_config", detail=raw) from exc

    # Orders

    async def get_order(self, order_id: int) -> Order:
        raw = await self._call(self.market, "get_order", {"order_id": order_id})
        if raw is None:
            raise PositionNotFoundError(f"order {order_id} not found", method="get_order")
        return parse_order(raw)

    async def list_pending_orders(self) -> List[Order]:
        """Every order still in Pending status.

        Orders that vanish between listing and reading are dropped; orders
        that cannot be decoded are logged and left out.
        """
        ids = _as_id_list(await self._call(self.market, "get_all_order_ids"), "get_all_order_ids")
        pending: List[Order] = []
        for order_id in ids:
            try:
                order = await self.get_order(order_id)
            except PositionNotFoundError:
                continue
            except LedgerDecodeError as exc:
                logger.error("Skipping undecodable order %d: %s (payload=%r)", order_id, exc, exc.detail)
                continue
            if order.status is OrderStatus.PENDING:
                pending.append(order)
        return pending

    async def execute_order(self, order_id: int) -> str:
        result = await self._submit("execute_order", {"order_id": order_id})
        return str(result["hash"])

    async def cancel_order(self, order_id: int, status: OrderStatus) -> str:
        if status not in _CANCEL_STATUSES:
            raise ValueError(f"{status.value} is not a cancellation status")
        result = await self._submit("cancel_order", {"order_id": order_id, "status": status.code})
        return str(result["hash"])

    async def place_limit_order(
        self,
        *,
        trader: str,
        asset: str,
        direction: Direction,
        collateral: int,
        leverage: int,
        trigger_price: int,
        trigger_condition: TriggerCondition,
        slippage_tolerance_bps: int,
        expires_at: Optional[int] = None,
    ) -> int:
        """Place a limit entry order and return its id."""
        if leverage < 1 or leverage > self.config.market.max_leverage:
            raise ValueError(f"leverage {leverage} outside [1, {self.config.market.max_leverage}]")
        if trigger_price <= 0:
            raise ValueError("trigger price must be positive")
        result = await self._submit(
            "place_limit_order",
            {
                "trader": trader,
                "asset": asset,
                "direction": direction.code,
                "collateral": collateral,
                "leverage": leverage,
                "trigger_price": trigger_price,
                "trigger_condition": trigger_condition.code,
                "slippage_tolerance_bps": slippage_tolerance_bps,
                "expires_at": expires_at,
            },
        )
        return _as_int(result.get("returnValue"), "order id", "place_limit_order")

    async def place_stop_order(
        self,
        *,
        trader: str,
        position_id: int,
        order_type: OrderType,
        trigger_price: int,
        slippage_tolerance_bps: int,
        expires_at: Optional[int] = None,
    ) -> int:
        """Attach a stop-loss or take-profit order to an open position."""
        if order_type is OrderType.LIMIT_ENTRY:
            raise ValueError("limit entry orders cannot be attached to a position")
        if trigger_price <= 0:
            raise ValueError("trigger price must be positive")
        result = await self._submit(
            "place_stop_order",
            {
                "trader": trader,
                "position_id": position_id,
                "order_type": order_type.code,
                "trigger_price": trigger_price,
                "slippage_tolerance_bps": slippage_tolerance_bps,
                "expires_at": expires_at,
            },
        )
        return _as_int(result.get("returnValue"), "order id", "place_stop_order")


__all__ = ["LedgerAdapter", "LiquidationReceipt"]
