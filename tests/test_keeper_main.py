"""Tests for service wiring and the process entry point."""

import asyncio
import os
import signal

import pytest

from keeper.src.keeper import keeper_main
from keeper.src.keeper.clients.paper_ledger import PaperLedgerClient
from keeper.src.keeper.clients.rpc_client import RpcLedgerClient
from keeper.src.keeper.precision import SCALE
from tests.helpers.factories import ASSET, make_config, make_ledger, make_position

_SECRET_VARS = ("KEEPER_SECRET_KEY", "ORACLE_SECRET_KEY", "ADMIN_SECRET_KEY")


def test_main_refuses_to_start_without_configuration(tmp_path, monkeypatch, capsys) -> None:
    for name in ("KEEPER_ADDRESS", "MARKET_CONTRACT_ID", "PAPER_TRADING") + _SECRET_VARS:
        monkeypatch.delenv(name, raising=False)
        monkeypatch.delenv(f"{name}_FILE", raising=False)
    monkeypatch.setenv("CONTRACTS_FILE", str(tmp_path / "missing.json"))

    assert keeper_main.main([]) == 2
    assert "Configuration error" in capsys.readouterr().err


def test_build_client_follows_paper_mode() -> None:
    assert isinstance(keeper_main.build_client(make_config()), PaperLedgerClient)
    live = make_config(paper_trading=False, rpc_url="http://rpc", secret_key="s3cret")
    assert isinstance(keeper_main.build_client(live), RpcLedgerClient)


def test_build_services_without_order_executor(tmp_path) -> None:
    config = make_config(enable_order_executor=False, event_store_path=str(tmp_path / "events.jsonl"))
    adapter, keeper, executor = keeper_main.build_services(config, make_ledger())
    assert executor is None
    assert keeper.adapter is adapter
    assert keeper.audit_log is not None


@pytest.mark.asyncio
async def test_run_keeper_until_sigterm(capsys) -> None:
    ledger = make_ledger()
    ledger.set_price(ASSET, 100 * SCALE)
    ledger.add_position(make_position(1, entry=110 * SCALE))
    config = make_config(prometheus_port=0)

    task = asyncio.create_task(keeper_main.run_keeper(config, ledger))
    await asyncio.sleep(0.1)
    os.kill(os.getpid(), signal.SIGTERM)
    stats = await asyncio.wait_for(task, timeout=2)

    assert stats.liquidation_count == 1
    out = capsys.readouterr().out
    assert "Total liquidations: 1" in out
    assert "Shutting down keeper bot..." in out
