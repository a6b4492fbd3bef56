"""
JSON-RPC ledger client with signing and rate limiting.

This module defines a lightweight asynchronous client for the ledger's
contract gateway.  Each request is a JSON-RPC 2.0 envelope whose
``contract_call`` method carries the target contract, function name and
arguments.  Read-only calls run in ``simulate`` mode; state changes run in
``submit`` mode and are signed with HMAC-SHA256 using the keeper secret.
Requests are throttled with a per-minute token bucket.

Failures are mapped onto ``keeper.errors``:

* HTTP 429/5xx, timeouts and connection errors -> ``TransientLedgerError``
* contract errors ``PositionNotFound`` (100), ``PositionAlreadyClosed``
  (107) and ``AlreadyLiquidated`` (401) -> ``PositionNotFoundError``
* any other RPC or HTTP 4xx error -> ``LedgerRejectedError``
* a body that is not a JSON-RPC response -> ``LedgerDecodeError``

The client does not retry; retry policy belongs to the caller.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import hashlib
import hmac
import itertools
import json
import logging
import time
from typing import Any, Dict, Mapping, Optional

import aiohttp
from aiohttp import ClientResponse

from ..errors import (
    LedgerDecodeError,
    LedgerRejectedError,
    PositionNotFoundError,
    TransientLedgerError,
)

logger = logging.getLogger(__name__)

# Contract error codes meaning "the target is already gone".
NOT_FOUND_CODES = frozenset({100, 107, 401})
# Gateway codes for overload; safe to retry.
TRANSIENT_RPC_CODES = frozenset({-32005, -32603})


class RpcLedgerClient:
    """Asynchronous JSON-RPC ledger client with simple rate limiting."""

    def __init__(
        self,
        rpc_url: str,
        *,
        secret_key: str = "",
        source_address: str = "",
        max_requests_per_minute: int = 600,
        timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        """Construct the client.

        Args:
            rpc_url: Gateway endpoint.
            secret_key: Keeper signing secret (base64 or raw).
            source_address: Keeper account submitting transactions.
            max_requests_per_minute: Token bucket size.
            timeout: Total per-request timeout in seconds.
            session: Optional shared ``aiohttp`` session; one is created
                lazily otherwise and closed by :meth:`close`.
        """
        self.rpc_url = rpc_url
        self.secret_key = secret_key
        self.source_address = source_address
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None
        self._ids = itertools.count(1)
        # Token bucket to enforce the per-minute request limit.
        self.max_requests_per_minute = max_requests_per_minute
        self.tokens = max_requests_per_minute
        self._token_lock = asyncio.Lock()
        self._last_refill = time.monotonic()
        self._token_interval = (
            60.0 / max_requests_per_minute if max_requests_per_minute > 0 else 60.0
        )

    def _sign(self, timestamp: str, body: str) -> str:
        """HMAC-SHA256 over ``timestamp + body`` as hex."""
        try:
            key = base64.b64decode(self.secret_key, validate=True)
        except (binascii.Error, ValueError):
            key = self.secret_key.encode()
        return hmac.new(key, f"{timestamp}{body}".encode(), hashlib.sha256).hexdigest()

    def _headers(self, body: str, signed: bool) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if signed:
            timestamp = str(int(time.time()))
            headers.update(
                {
                    "X-Keeper-Address": self.source_address,
                    "X-Keeper-Timestamp": timestamp,
                    "X-Keeper-Signature": self._sign(timestamp, body),
                }
            )
        return headers

    async def _acquire_token(self) -> None:
        """Wait until a request token is available based on the token bucket."""
        while True:
            async with self._token_lock:
                now = time.monotonic()
                elapsed = now - self._last_refill
                if elapsed > 0 and self.max_requests_per_minute > 0:
                    new_tokens = int(elapsed / self._token_interval)
                    if new_tokens > 0:
                        self.tokens = min(self.max_requests_per_minute, self.tokens + new_tokens)
                        self._last_refill = now
                if self.tokens > 0:
                    self.tokens -= 1
                    return
            await asyncio.sleep(self._token_interval)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    def build_request(
        self, contract: str, method: str, args: Optional[Mapping[str, Any]], mode: str
    ) -> Dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": "contract_call",
            "params": {
                "contract": contract,
                "function": method,
                "args": dict(args or {}),
                "mode": mode,
                "source": self.source_address,
            },
        }

    async def _request(
        self, contract: str, method: str, args: Optional[Mapping[str, Any]], mode: str
    ) -> Any:
        await self._acquire_token()
        payload = self.build_request(contract, method, args, mode)
        body = json.dumps(payload)
        headers = self._headers(body, signed=mode == "submit")
        session = self._get_session()
        try:
            async with session.post(self.rpc_url, data=body, headers=headers) as resp:
                await self._handle_http_errors(resp, method)
                try:
                    data = await resp.json(content_type=None)
                except (aiohttp.ContentTypeError, json.JSONDecodeError) as exc:
                    raise LedgerDecodeError("response is not JSON", method=method) from exc
        except asyncio.TimeoutError as exc:
            raise TransientLedgerError(f"{method} timed out", method=method) from exc
        except aiohttp.ClientError as exc:
            raise TransientLedgerError(f"{method} transport error: {exc}", method=method) from exc
        return self.unwrap_response(data, method)

    @staticmethod
    async def _handle_http_errors(resp: ClientResponse, method: str) -> None:
        if resp.status < 400:
            return
        # Avoid logging full response bodies; truncate to prevent leakage
        text = await resp.text()
        truncated = text[:200] if text else ""
        logger.error("Ledger RPC HTTP error %s on %s: %s", resp.status, method, truncated)
        if resp.status == 429 or resp.status >= 500:
            raise TransientLedgerError(f"HTTP {resp.status}", method=method, detail=truncated)
        raise LedgerRejectedError(f"HTTP {resp.status}", method=method, detail=truncated)

    @staticmethod
    def unwrap_response(data: Any, method: str) -> Any:
        """Return the ``result`` of a JSON-RPC response or raise the mapped error."""
        if not isinstance(data, dict) or ("result" not in data and "error" not in data):
            raise LedgerDecodeError("malformed JSON-RPC response", method=method, detail=data)
        error = data.get("error")
        if error is None:
            return data["result"]
        if not isinstance(error, dict):
            raise LedgerDecodeError("malformed JSON-RPC error", method=method, detail=error)
        code = error.get("code")
        message = str(error.get("message", "ledger error"))
        extra = error.get("data")
        contract_code = extra.get("contractError") if isinstance(extra, dict) else None
        if contract_code in NOT_FOUND_CODES:
            raise PositionNotFoundError(message, method=method, detail=error)
        if contract_code is None and code in TRANSIENT_RPC_CODES:
            raise TransientLedgerError(message, method=method, detail=error)
        raise LedgerRejectedError(message, method=method, detail=error)

    async def call(self, contract: str, method: str, args: Optional[Mapping[str, Any]] = None) -> Any:
        return await self._request(contract, method, args, "simulate")

    async def submit(
        self, contract: str, method: str, args: Optional[Mapping[str, Any]] = None
    ) -> Dict[str, Any]:
        result = await self._request(contract, method, args, "submit")
        if not isinstance(result, dict) or "hash" not in result:
            raise LedgerDecodeError("submit result has no transaction hash", method=method, detail=result)
        return result

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()


__all__ = ["RpcLedgerClient", "NOT_FOUND_CODES", "TRANSIENT_RPC_CODES"]
