"""
Autonomous liquidation keeper.

The keeper polls the ledger every ``POLL_INTERVAL_MS`` milliseconds,
asks it which open positions are liquidatable and submits a
liquidation for each one, earning the keeper reward.

Each tick lists the open position ids and evaluates every id as an
independent task, bounded by ``KEEPER_MAX_CONCURRENCY``.  A failure on
one position (transient exhaustion, rejection, a benign race with
another keeper) is logged and never aborts its siblings.  The ledger's
``is_liquidatable`` answer is authoritative; the local margin math only
cross-checks it and estimates the reward for the optional
``MIN_KEEPER_REWARD`` filter.

Ticks never overlap.  A tick that overruns the poll interval makes the
next one start immediately; missed ticks are not queued.  ``stop()`` is
cooperative: no new liquidation is submitted once it is called,
in-flight submissions finish, and ``run()`` returns after logging the
session summary.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Dict, Optional, Set

from . import telemetry
from .config import KeeperConfig
from .errors import (
    KeeperError,
    LedgerError,
    LiquidationUnconfirmedError,
    PositionNotFoundError,
    UntrustedPriceError,
)
from .models import Position, PriceQuote
from .precision import format_amount, from_fixed
from .services.audit_log import AuditLog
from .services.ledger_adapter import LedgerAdapter

logger = logging.getLogger(__name__)


class KeeperState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"


@dataclass
class TickReport:
    """Counts for one scan.

    ``eligible`` counts positions the ledger reported as liquidatable;
    ``skipped`` covers benign races, the minimum-reward filter and
    positions left alone because the keeper is stopping.
    """

    checked: int = 0
    eligible: int = 0
    liquidated: int = 0
    failed: int = 0
    skipped: int = 0


class KeeperStats:
    """Session totals, updated at most once per liquidated position."""

    def __init__(self) -> None:
        self.liquidation_count = 0
        self.total_reward = 0
        self.ticks = 0
        self.last_scan_at: Optional[float] = None
        self._liquidated: Set[int] = set()
        self._lock = asyncio.Lock()

    async def record_liquidation(self, position_id: int, reward: int) -> bool:
        """Count a liquidation.  Returns ``False`` if ``position_id`` was already counted."""
        async with self._lock:
            if position_id in self._liquidated:
                return False
            self._liquidated.add(position_id)
            self.liquidation_count += 1
            self.total_reward += reward
        telemetry.LIQUIDATIONS.inc()
        if reward > 0:
            telemetry.REWARD.inc(from_fixed(reward))
        return True

    async def prune(self, open_ids) -> None:
        """Forget liquidated ids the ledger no longer lists.

        Position ids are never reused, so an id absent from the open set
        cannot be liquidated again and needs no idempotence guard.
        """
        async with self._lock:
            self._liquidated.intersection_update(open_ids)

    @property
    def tracked_ids(self) -> frozenset:
        return frozenset(self._liquidated)

    async def record_scan(self, at: float) -> None:
        async with self._lock:
            self.ticks += 1
            self.last_scan_at = at

    def summary(self) -> str:
        return (
            f"Total liquidations: {self.liquidation_count}\n"
            f"Total rewards earned: {format_amount(self.total_reward)} USDC"
        )


class LiquidationKeeper:
    def __init__(
        self,
        adapter: LedgerAdapter,
        config: KeeperConfig,
        stats: Optional[KeeperStats] = None,
        audit_log: Optional[AuditLog] = None,
    ) -> None:
        self.adapter = adapter
        self.config = config
        self.stats = stats or KeeperStats()
        self.audit_log = audit_log
        self.state = KeeperState.IDLE
        self._stop_event = asyncio.Event()

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Ask the loop to finish the current tick and return."""
        if not self._stop_event.is_set():
            logger.info("Shutting down keeper bot...")
        self._stop_event.set()

    async def run(self) -> KeeperStats:
        """Scan every poll interval until :meth:`stop` is called."""
        loop = asyncio.get_running_loop()
        interval = self.config.poll_interval
        logger.info(
            "Keeper started for market %s, polling every %dms",
            self.config.market_contract_id,
            self.config.poll_interval_ms,
        )
        while not self._stop_event.is_set():
            started = loop.time()
            try:
                report = await self.tick()
            except KeeperError as exc:
                # Listing failed; the next tick will try again.
                logger.error("Error in keeper loop: %s", exc)
            else:
                if report.eligible:
                    logger.info("Scan finished: %s", asdict(report))
            elapsed = loop.time() - started
            if elapsed >= interval:
                logger.warning(
                    "Scan took %.2fs, longer than the %.2fs poll interval; starting next scan now",
                    elapsed,
                    interval,
                )
                delay = 0.0
            else:
                delay = interval - elapsed
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
        logger.info("Keeper stopped. %s", self.stats.summary().replace("\n", ", "))
        return self.stats

    async def tick(self) -> TickReport:
        """Run one scan over every open position."""
        report = TickReport()
        self.state = KeeperState.SCANNING
        started = time.monotonic()
        try:
            ids = await self.adapter.list_open_position_ids()
            await self.stats.prune(ids)
            telemetry.OPEN_POSITIONS.set(len(ids))
            if not ids:
                logger.info("No open positions")
                return report
            report.checked = len(ids)
            semaphore = asyncio.Semaphore(self.config.max_concurrency)
            quotes: Dict[str, asyncio.Task] = {}
            results = await asyncio.gather(
                *(self._bounded(semaphore, pid, report, quotes) for pid in ids),
                return_exceptions=True,
            )
            for pid, result in zip(ids, results):
                if isinstance(result, BaseException):
                    report.failed += 1
                    telemetry.LIQUIDATION_FAILURES.labels(reason="unexpected").inc()
                    logger.error("Unexpected error on position %d", pid, exc_info=result)
        finally:
            self.state = KeeperState.IDLE
            telemetry.SCAN_DURATION.observe(time.monotonic() - started)
            now = time.time()
            telemetry.LAST_SCAN.set(now)
            await self.stats.record_scan(now)
        return report

    async def _bounded(
        self,
        semaphore: asyncio.Semaphore,
        position_id: int,
        report: TickReport,
        quotes: Dict[str, asyncio.Task],
    ) -> None:
        async with semaphore:
            await self.process_position(position_id, report, quotes)

    async def process_position(
        self,
        position_id: int,
        report: TickReport,
        quotes: Optional[Dict[str, asyncio.Task]] = None,
    ) -> None:
        """Check one position and liquidate it if the ledger says so."""
        quotes = {} if quotes is None else quotes
        try:
            liquidatable = await self.adapter.is_liquidatable(position_id)
        except PositionNotFoundError:
            self._benign_race(position_id, report)
            return
        except LedgerError as exc:
            report.failed += 1
            telemetry.LIQUIDATION_FAILURES.labels(reason="check").inc()
            logger.error("Failed to check position %d: %s", position_id, exc)
            return

        estimate: Optional[int] = None
        if self.config.cross_check or (liquidatable and self.config.min_keeper_reward > 0):
            try:
                position = await self.adapter.get_position(position_id)
            except PositionNotFoundError:
                self._benign_race(position_id, report)
                return
            except LedgerError as exc:
                logger.warning("Could not load position %d for local checks: %s", position_id, exc)
            else:
                quote = await self._quote(position.asset, quotes)
                if quote is not None:
                    if self.config.cross_check:
                        self._cross_check(position, quote, liquidatable)
                    estimate = position.estimated_reward(quote.price, self.config.market.liquidation_fee_bps)

        if not liquidatable:
            return
        report.eligible += 1
        logger.info("Position %d is liquidatable!", position_id)

        min_reward = self.config.min_keeper_reward
        if min_reward > 0 and estimate is not None and estimate < min_reward:
            report.skipped += 1
            logger.info(
                "Skipping position %d: estimated reward %s below minimum %s",
                position_id,
                format_amount(estimate),
                format_amount(min_reward),
            )
            return
        if self._stop_event.is_set():
            report.skipped += 1
            logger.info("Not liquidating position %d: keeper is stopping", position_id)
            return

        logger.info("Executing liquidation for position %d...", position_id)
        try:
            receipt = await self.adapter.liquidate(position_id)
        except LiquidationUnconfirmedError as exc:
            # Not counted: without a receipt the reward is unknown.
            report.skipped += 1
            telemetry.LIQUIDATION_FAILURES.labels(reason="unconfirmed").inc()
            logger.warning(
                "Position %d is gone after a retried liquidation; possibly ours, reconcile on-chain: %s",
                position_id,
                exc,
            )
            await self._audit("liquidation_unconfirmed", {"position_id": position_id, "error": str(exc)})
            return
        except PositionNotFoundError:
            self._benign_race(position_id, report)
            return
        except LedgerError as exc:
            report.failed += 1
            reason = type(exc).__name__
            telemetry.LIQUIDATION_FAILURES.labels(reason=reason).inc()
            logger.error("Liquidation of position %d failed (%s): %s", position_id, reason, exc)
            await self._audit(
                "liquidation_failed", {"position_id": position_id, "reason": reason, "error": str(exc)}
            )
            return

        if await self.stats.record_liquidation(position_id, receipt.reward):
            report.liquidated += 1
            logger.info(
                "Liquidation successful! position=%d tx=%s reward=%s total liquidations=%d",
                position_id,
                receipt.tx_hash,
                format_amount(receipt.reward),
                self.stats.liquidation_count,
            )
            await self._audit(
                "liquidation",
                {"position_id": position_id, "tx_hash": receipt.tx_hash, "reward": receipt.reward},
            )

    def _benign_race(self, position_id: int, report: TickReport) -> None:
        report.skipped += 1
        telemetry.BENIGN_RACES.inc()
        logger.info("Position %d already closed or liquidated", position_id)

    def _cross_check(self, position: Position, quote: PriceQuote, ledger_answer: bool) -> None:
        local = position.is_liquidatable_at(quote.price)
        if local != ledger_answer:
            logger.warning(
                "Ledger and local margin math disagree on position %d: ledger=%s local=%s "
                "(price=%s, liquidation price=%s)",
                position.id,
                ledger_answer,
                local,
                format_amount(quote.price, 4),
                format_amount(position.liquidation_price, 4),
            )

    async def _quote(self, asset: str, quotes: Dict[str, asyncio.Task]) -> Optional[PriceQuote]:
        # One oracle read per asset per tick, shared by all positions on it.
        if asset not in quotes:
            quotes[asset] = asyncio.ensure_future(self._trusted_quote(asset))
        return await quotes[asset]

    async def _trusted_quote(self, asset: str) -> Optional[PriceQuote]:
        try:
            return await self.adapter.get_price(asset)
        except UntrustedPriceError as exc:
            logger.warning("Skipping local checks for %s: %s", asset, exc)
        except LedgerError as exc:
            logger.warning("Could not read %s price: %s", asset, exc)
        return None

    async def _audit(self, event_type: str, data: dict) -> None:
        if self.audit_log is not None:
            await self.audit_log.record(event_type, data)


__all__ = ["KeeperState", "KeeperStats", "TickReport", "LiquidationKeeper"]
