"""Service layer for the keeper.

This package exposes the ledger adapter, the oracle price guard and the
audit log shared by the liquidation keeper and the order executor.
"""

from .audit_log import AuditLog  # noqa: F401
from .ledger_adapter import LedgerAdapter, LiquidationReceipt  # noqa: F401
from .price_guard import PriceGuard  # noqa: F401
