"""
Interface shared by the ledger clients.

Every client exposes two coroutines.  ``call`` performs a read-only
simulation of a contract function and returns its decoded value.
``submit`` signs and sends a state-changing invocation and returns a
mapping with at least ``hash`` (the transaction hash) and
``returnValue`` (the decoded return value).

Clients translate their transport failures into the ``keeper.errors``
taxonomy; they never retry on their own.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Protocol


class LedgerClient(Protocol):
    async def call(self, contract: str, method: str, args: Optional[Mapping[str, Any]] = None) -> Any:
        ...

    async def submit(
        self, contract: str, method: str, args: Optional[Mapping[str, Any]] = None
    ) -> Dict[str, Any]:
        ...

    async def close(self) -> None:
        ...


__all__ = ["LedgerClient"]
