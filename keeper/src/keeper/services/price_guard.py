"""
Price guard for oracle quotes.

Keeps the last accepted price per asset and decides whether a fresh
oracle quote is trustworthy enough to drive a decision.  A quote is
rejected as

* stale when it is older than ``max_staleness_s`` seconds, or
* deviant when it moves more than ``max_deviation_bps`` away from the
  last accepted price for the asset.

A deviant quote is remembered as a candidate.  When a later reading
(newer oracle timestamp) lands within the deviation bound of that
candidate the move is treated as real and accepted; a single outlier
never becomes the reference, and re-reading the same oracle update does
not count as confirmation.
Setting ``max_deviation_bps`` to 0 disables the deviation check.

The guard uses an asyncio lock so it can be shared across the keeper
loop and the order executor.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Dict, Optional

from .. import telemetry
from ..errors import DeviantPriceError, StalePriceError
from ..models import PriceQuote
from ..precision import BASIS_POINTS

logger = logging.getLogger(__name__)


def deviation_bps(reference: int, price: int) -> float:
    """Absolute move from ``reference`` to ``price`` in basis points."""
    if reference <= 0:
        return 0.0
    return abs(price - reference) * BASIS_POINTS / reference


class PriceGuard:
    """Maintain the last trusted price per asset and vet new quotes."""

    def __init__(
        self,
        max_staleness_s: int = 60,
        max_deviation_bps: int = 100,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_staleness_s = max_staleness_s
        self.max_deviation_bps = max_deviation_bps
        self.clock = clock
        self._accepted: Dict[str, PriceQuote] = {}
        self._candidates: Dict[str, PriceQuote] = {}
        self._lock = asyncio.Lock()

    def is_stale(self, quote: PriceQuote, now: Optional[float] = None) -> bool:
        now = self.clock() if now is None else now
        return quote.age(now) > self.max_staleness_s

    async def check(self, quote: PriceQuote) -> PriceQuote:
        """Return ``quote`` if it can be trusted, otherwise raise.

        Raises:
            StalePriceError: the quote is older than the staleness bound.
            DeviantPriceError: the quote jumped past the deviation bound and
                has not been confirmed by a second reading yet.
        """
        if self.is_stale(quote):
            telemetry.UNTRUSTED_PRICES.labels(asset=quote.asset, reason="stale").inc()
            raise StalePriceError(
                quote.asset,
                f"{quote.asset} price is {quote.age(self.clock()):.0f}s old "
                f"(limit {self.max_staleness_s}s)",
            )
        async with self._lock:
            last = self._accepted.get(quote.asset)
            if last is None or self.max_deviation_bps <= 0:
                return self._accept(quote)
            moved = deviation_bps(last.price, quote.price)
            if moved <= self.max_deviation_bps:
                return self._accept(quote)
            candidate = self._candidates.get(quote.asset)
            if (
                candidate is not None
                and quote.timestamp > candidate.timestamp
                and deviation_bps(candidate.price, quote.price) <= self.max_deviation_bps
            ):
                logger.info(
                    "%s price move of %.1f bps confirmed by consecutive reading", quote.asset, moved
                )
                return self._accept(quote)
            self._candidates[quote.asset] = quote
        telemetry.UNTRUSTED_PRICES.labels(asset=quote.asset, reason="deviant").inc()
        raise DeviantPriceError(
            quote.asset,
            f"{quote.asset} price moved {moved:.1f} bps from last accepted "
            f"(limit {self.max_deviation_bps} bps)",
        )

    def _accept(self, quote: PriceQuote) -> PriceQuote:
        self._accepted[quote.asset] = quote
        self._candidates.pop(quote.asset, None)
        return quote

    async def last_accepted(self, asset: str) -> Optional[PriceQuote]:
        async with self._lock:
            return self._accepted.get(asset)

    async def all_prices(self) -> Dict[str, PriceQuote]:
        """Snapshot of the accepted prices; callers must not mutate it."""
        async with self._lock:
            return dict(self._accepted)


__all__ = ["PriceGuard", "deviation_bps"]
