"""
Error taxonomy for the keeper processes.

Errors fall into four groups, each handled at a different place:

* ``ConfigurationError`` and ``MarginConfigError`` are fatal at startup;
  the entry point refuses to run against an unconfigured target.
* ``TransientLedgerError`` is retried at the call site with bounded
  backoff (see ``services.ledger_adapter``).  When retries are exhausted
  the single position or order is skipped for the current tick.
* ``PositionNotFoundError`` covers the benign race where another keeper
  (or the trader) closed the position between listing and acting on it.
  Callers swallow it.
  ``LiquidationUnconfirmedError`` is the variant raised when the position
  disappeared after a retried liquidation; it is logged for reconciliation.
* ``LedgerRejectedError`` and ``LedgerDecodeError`` are logged with full
  context and never retried unchanged.

``UntrustedPriceError`` is raised by the price guard when an oracle quote
is stale or deviant.  Callers treat it as "insufficient information" and
decline to make a decision for that tick.
"""

from __future__ import annotations

from typing import Any, Optional


class KeeperError(Exception):
    """Base class for all keeper errors."""


class ConfigurationError(KeeperError):
    """Required configuration is missing or invalid."""


class MarginConfigError(KeeperError, ValueError):
    """Margin parameters that cannot describe a valid position.

    Raised for zero leverage or a maintenance margin larger than the
    inverse leverage.  This indicates a configuration problem rather than
    a trader error.
    """


class LedgerError(KeeperError):
    """Base class for failures talking to the external ledger."""

    def __init__(self, message: str, *, method: Optional[str] = None, detail: Any = None) -> None:
        super().__init__(message)
        self.method = method
        self.detail = detail


class PositionNotFoundError(LedgerError):
    """The target position or order no longer exists (closed or liquidated)."""


class LiquidationUnconfirmedError(PositionNotFoundError):
    """The position vanished after a retried liquidate submission.

    An earlier attempt that timed out may have landed, so the liquidation
    (and its reward) may be ours even though no receipt was returned.
    """


class TransientLedgerError(LedgerError):
    """Network, timeout or overload failure; safe to retry."""


class LedgerRejectedError(LedgerError):
    """The ledger explicitly refused the call."""


class LedgerDecodeError(LedgerError, ValueError):
    """A ledger payload could not be decoded into a known shape or tag."""


class UntrustedPriceError(KeeperError):
    """Base class for oracle quotes that must not drive a decision."""

    def __init__(self, asset: str, message: str) -> None:
        super().__init__(message)
        self.asset = asset


class StalePriceError(UntrustedPriceError):
    """The quote is older than the configured staleness bound."""


class DeviantPriceError(UntrustedPriceError):
    """The quote moved further than the configured deviation bound."""


__all__ = [
    "KeeperError",
    "ConfigurationError",
    "MarginConfigError",
    "LedgerError",
    "PositionNotFoundError",
    "LiquidationUnconfirmedError",
    "TransientLedgerError",
    "LedgerRejectedError",
    "LedgerDecodeError",
    "UntrustedPriceError",
    "StalePriceError",
    "DeviantPriceError",
]
