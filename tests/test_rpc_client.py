"""Tests for the JSON-RPC ledger client's signing and error mapping."""

import hashlib
import hmac
import json

import pytest

from keeper.src.keeper.clients.rpc_client import RpcLedgerClient
from keeper.src.keeper.errors import (
    LedgerDecodeError,
    LedgerRejectedError,
    PositionNotFoundError,
    TransientLedgerError,
)


def rpc_error(code: int, contract_error=None) -> dict:
    error = {"code": code, "message": "contract call failed"}
    if contract_error is not None:
        error["data"] = {"contractError": contract_error}
    return {"jsonrpc": "2.0", "id": 1, "error": error}


def test_result_is_unwrapped() -> None:
    assert RpcLedgerClient.unwrap_response({"jsonrpc": "2.0", "id": 1, "result": [1, 2]}, "m") == [1, 2]
    assert RpcLedgerClient.unwrap_response({"jsonrpc": "2.0", "id": 1, "result": None}, "m") is None


@pytest.mark.parametrize("contract_error", [100, 107, 401])
def test_gone_targets_map_to_not_found(contract_error: int) -> None:
    with pytest.raises(PositionNotFoundError):
        RpcLedgerClient.unwrap_response(rpc_error(-32000, contract_error), "liquidate")


def test_other_errors_map_to_rejected_or_transient() -> None:
    with pytest.raises(LedgerRejectedError) as excinfo:
        RpcLedgerClient.unwrap_response(rpc_error(-32000, 400), "liquidate")
    assert excinfo.value.method == "liquidate"
    with pytest.raises(LedgerRejectedError):
        RpcLedgerClient.unwrap_response(rpc_error(-32602), "liquidate")
    with pytest.raises(TransientLedgerError):
        RpcLedgerClient.unwrap_response(rpc_error(-32005), "liquidate")


@pytest.mark.parametrize("payload", [[], {"jsonrpc": "2.0"}, {"error": "boom"}])
def test_malformed_responses_are_decode_errors(payload) -> None:
    with pytest.raises(LedgerDecodeError):
        RpcLedgerClient.unwrap_response(payload, "get_position")


def test_submissions_are_signed_with_the_keeper_secret() -> None:
    raw = RpcLedgerClient("http://rpc", secret_key="secret", source_address="GKEEPER")
    encoded = RpcLedgerClient("http://rpc", secret_key="c2VjcmV0", source_address="GKEEPER")
    expected = hmac.new(b"secret", b"1700000000{}", hashlib.sha256).hexdigest()
    assert raw._sign("1700000000", "{}") == expected
    assert encoded._sign("1700000000", "{}") == expected

    headers = raw._headers("{}", signed=True)
    assert headers["X-Keeper-Address"] == "GKEEPER"
    assert headers["X-Keeper-Signature"] == raw._sign(headers["X-Keeper-Timestamp"], "{}")
    assert "X-Keeper-Signature" not in raw._headers("{}", signed=False)


def test_request_envelope() -> None:
    client = RpcLedgerClient("http://rpc", source_address="GKEEPER")
    first = client.build_request("market", "liquidate", {"position_id": 3}, "submit")
    second = client.build_request("market", "get_position", None, "simulate")
    assert first["method"] == "contract_call"
    assert first["params"] == {
        "contract": "market",
        "function": "liquidate",
        "args": {"position_id": 3},
        "mode": "submit",
        "source": "GKEEPER",
    }
    assert second["id"] == first["id"] + 1
    json.dumps(first)


@pytest.mark.asyncio
async def test_token_bucket_limits_bursts() -> None:
    client = RpcLedgerClient("http://rpc", max_requests_per_minute=2)
    await client._acquire_token()
    await client._acquire_token()
    assert client.tokens == 0
    await client.close()
