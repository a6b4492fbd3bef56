"""
Order trigger evaluation and execution.

The module has two halves.  The pure half decides what should happen to
a pending conditional order given an oracle quote:

* ``FIRE`` when the trigger condition holds (Above: ``price >= trigger``,
  Below: ``price <= trigger``),
* ``HOLD`` when it does not,
* ``EXPIRE`` when a time-boxed order is past ``expires_at``,
* ``NO_DECISION`` when the quote is missing or stale, whatever its value,
  or when the order is no longer pending.

``settle`` then compares the realized execution price with the trigger:
a deviation beyond the order's slippage tolerance cancels the order
(``CancelledSlippage``) instead of executing it.

:class:`OrderExecutor` is the service half.  Each tick it lists pending
orders, reads a vetted price per asset, evaluates every order, re-reads
the price at execution time for the realized price and asks the ledger
to execute or cancel.  LimitEntry orders open a position; StopLoss and
TakeProfit orders close their linked position.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from . import telemetry
from .config import KeeperConfig
from .errors import KeeperError, LedgerError, PositionNotFoundError, UntrustedPriceError
from .models import Order, OrderStatus, OrderType, PriceQuote, TriggerCondition
from .precision import BASIS_POINTS, format_amount
from .services.audit_log import AuditLog
from .services.ledger_adapter import LedgerAdapter

logger = logging.getLogger(__name__)


class TriggerDecision(str, Enum):
    FIRE = "fire"
    HOLD = "hold"
    EXPIRE = "expire"
    NO_DECISION = "no_decision"


def trigger_met(condition: TriggerCondition, price: int, trigger: int) -> bool:
    if condition is TriggerCondition.ABOVE:
        return price >= trigger
    return price <= trigger


def slippage_bps(trigger: int, realized: int) -> float:
    """Absolute deviation of ``realized`` from ``trigger`` in basis points."""
    if trigger <= 0:
        raise ValueError("trigger price must be positive")
    return abs(realized - trigger) * BASIS_POINTS / trigger


def within_slippage(trigger: int, realized: int, tolerance_bps: int) -> bool:
    return slippage_bps(trigger, realized) <= tolerance_bps


def evaluate(
    order: Order,
    quote: Optional[PriceQuote],
    now: float,
    max_staleness_s: float = 60,
) -> TriggerDecision:
    """Decide what to do with ``order`` at time ``now`` given ``quote``.

    Expiry depends only on the clock, so a time-boxed order past its
    deadline expires even when no trustworthy price is available.
    """
    if order.status is not OrderStatus.PENDING:
        return TriggerDecision.NO_DECISION
    if order.expires_at is not None and now >= order.expires_at:
        return TriggerDecision.EXPIRE
    if quote is None or quote.age(now) > max_staleness_s:
        return TriggerDecision.NO_DECISION
    if quote.asset != order.asset:
        raise ValueError(f"quote for {quote.asset} cannot evaluate an order on {order.asset}")
    if trigger_met(order.trigger_condition, quote.price, order.trigger_price):
        return TriggerDecision.FIRE
    return TriggerDecision.HOLD


def settle(order: Order, realized_price: int) -> OrderStatus:
    """Terminal status for a fired order executed at ``realized_price``."""
    if within_slippage(order.trigger_price, realized_price, order.slippage_tolerance_bps):
        return OrderStatus.EXECUTED
    return OrderStatus.CANCELLED_SLIPPAGE


@dataclass
class OrderTickReport:
    pending: int = 0
    executed: int = 0
    cancelled_slippage: int = 0
    expired: int = 0
    held: int = 0
    undecided: int = 0
    failed: int = 0


class OrderExecutor:
    """Fire, cancel or expire pending conditional orders every poll interval."""

    def __init__(
        self,
        adapter: LedgerAdapter,
        config: KeeperConfig,
        audit_log: Optional[AuditLog] = None,
        *,
        clock=time.time,
    ) -> None:
        self.adapter = adapter
        self.config = config
        self.audit_log = audit_log
        self.clock = clock
        self._stop_event = asyncio.Event()

    def stop(self) -> None:
        self._stop_event.set()

    async def run(self) -> None:
        logger.info("Order executor started, polling every %dms", self.config.order_poll_interval_ms)
        while not self._stop_event.is_set():
            try:
                await self.tick()
            except KeeperError as exc:
                logger.error("Error in order executor loop: %s", exc)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.config.order_poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Order executor stopped")

    async def tick(self) -> OrderTickReport:
        report = OrderTickReport()
        orders = await self.adapter.list_pending_orders()
        report.pending = len(orders)
        if not orders:
            return report
        quotes = await self._quotes({order.asset for order in orders})
        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def bounded(order: Order) -> None:
            async with semaphore:
                await self.process_order(order, quotes.get(order.asset), report)

        results = await asyncio.gather(*(bounded(order) for order in orders), return_exceptions=True)
        for order, result in zip(orders, results):
            if isinstance(result, BaseException):
                report.failed += 1
                logger.error("Unexpected error on order %d", order.id, exc_info=result)
        return report

    async def _quotes(self, assets) -> Dict[str, Optional[PriceQuote]]:
        quotes: Dict[str, Optional[PriceQuote]] = {}
        for asset in sorted(assets):
            try:
                quotes[asset] = await self.adapter.get_price(asset)
            except UntrustedPriceError as exc:
                logger.warning("No order decisions for %s this tick: %s", asset, exc)
                quotes[asset] = None
            except LedgerError as exc:
                logger.warning("Could not read %s price: %s", asset, exc)
                quotes[asset] = None
        return quotes

    async def process_order(
        self, order: Order, quote: Optional[PriceQuote], report: OrderTickReport
    ) -> Optional[OrderStatus]:
        """Evaluate one order and act on the decision.  Returns the new status, if any."""
        decision = evaluate(order, quote, self.clock(), self.config.max_price_staleness_s)
        if decision is TriggerDecision.NO_DECISION:
            report.undecided += 1
            return None
        if decision is TriggerDecision.HOLD:
            report.held += 1
            return None
        if decision is TriggerDecision.EXPIRE:
            if await self._cancel(order, OrderStatus.EXPIRED, report):
                report.expired += 1
                return OrderStatus.EXPIRED
            return None

        # Fired: the realized price is whatever the oracle says at execution time.
        # Only freshness is vetted; a gap past the deviation bound is what the
        # slippage tolerance settles.
        try:
            realized = await self.adapter.fetch_quote(order.asset)
        except LedgerError as exc:
            report.failed += 1
            logger.error("Order %d fired but price re-read failed: %s", order.id, exc)
            return None
        age = realized.age(self.clock())
        if age > self.config.max_price_staleness_s:
            report.undecided += 1
            logger.warning(
                "Order %d fired but the execution price is %.0fs old (limit %ds)",
                order.id,
                age,
                self.config.max_price_staleness_s,
            )
            return None

        status = settle(order, realized.price)
        if status is OrderStatus.CANCELLED_SLIPPAGE:
            logger.info(
                "Order %d slipped %.1f bps (tolerance %d bps, trigger %s, realized %s)",
                order.id,
                slippage_bps(order.trigger_price, realized.price),
                order.slippage_tolerance_bps,
                format_amount(order.trigger_price, 4),
                format_amount(realized.price, 4),
            )
            if await self._cancel(order, status, report):
                report.cancelled_slippage += 1
                return status
            return None

        action = "open" if order.order_type is OrderType.LIMIT_ENTRY else "close"
        try:
            tx_hash = await self.adapter.execute_order(order.id)
        except PositionNotFoundError:
            logger.info("Order %d or its position is already gone", order.id)
            return None
        except LedgerError as exc:
            report.failed += 1
            telemetry.ORDERS.labels(outcome="failed").inc()
            logger.error("Executing order %d (%s) failed: %s", order.id, action, exc)
            return None
        report.executed += 1
        telemetry.ORDERS.labels(outcome="executed").inc()
        logger.info(
            "Order %d executed (%s %s position) tx=%s",
            order.id,
            action,
            order.asset,
            tx_hash,
        )
        await self._audit(
            "order_executed",
            {"order_id": order.id, "type": order.order_type.value, "tx_hash": tx_hash, "price": realized.price},
        )
        return status

    async def _cancel(self, order: Order, status: OrderStatus, report: OrderTickReport) -> bool:
        try:
            tx_hash = await self.adapter.cancel_order(order.id, status)
        except PositionNotFoundError:
            logger.info("Order %d already gone", order.id)
            return False
        except LedgerError as exc:
            report.failed += 1
            telemetry.ORDERS.labels(outcome="failed").inc()
            logger.error("Cancelling order %d as %s failed: %s", order.id, status.value, exc)
            return False
        telemetry.ORDERS.labels(outcome=status.value).inc()
        logger.info("Order %d -> %s tx=%s", order.id, status.value, tx_hash)
        await self._audit("order_cancelled", {"order_id": order.id, "status": status.value, "tx_hash": tx_hash})
        return True

    async def _audit(self, event_type: str, data: dict) -> None:
        if self.audit_log is not None:
            await self.audit_log.record(event_type, data)


__all__ = [
    "TriggerDecision",
    "trigger_met",
    "slippage_bps",
    "within_slippage",
    "evaluate",
    "settle",
    "OrderTickReport",
    "OrderExecutor",
]
