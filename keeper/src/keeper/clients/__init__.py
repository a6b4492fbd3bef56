"""
Clients for the external ledger.

``RpcLedgerClient`` talks to the contract gateway over signed JSON-RPC;
``PaperLedgerClient`` simulates the market in memory for paper mode and
tests.  Both satisfy the ``LedgerClient`` protocol.
"""

from .base import LedgerClient  # noqa: F401
from .paper_ledger import PaperLedgerClient  # noqa: F401
from .rpc_client import RpcLedgerClient  # noqa: F401
