"""
Entry point for the keeper processes.

This module loads the configuration, builds the ledger client and the
shared services, and runs the liquidation keeper and (optionally) the
order executor concurrently until SIGINT or SIGTERM.  Configuration
errors are fatal: the process refuses to start against an unconfigured
target and exits with status 2.

On shutdown both loops finish their in-flight work, and the session
summary (liquidation count and total reward) is logged and printed.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import List, Optional, Tuple

from .clients.base import LedgerClient
from .clients.paper_ledger import PaperLedgerClient
from .clients.rpc_client import RpcLedgerClient
from .config import KeeperConfig, load_config
from .errors import ConfigurationError
from .liquidation_keeper import KeeperStats, LiquidationKeeper
from .order_evaluator import OrderExecutor
from .services.audit_log import AuditLog
from .services.ledger_adapter import LedgerAdapter
from .services.price_guard import PriceGuard
from .telemetry import start_metrics_server

logger = logging.getLogger(__name__)

RULE = "=" * 79


def build_client(config: KeeperConfig) -> LedgerClient:
    if config.paper_trading:
        logger.warning("PAPER_TRADING enabled: using the in-memory paper ledger")
        return PaperLedgerClient(config.market)
    return RpcLedgerClient(
        config.rpc_url,
        secret_key=config.secret_key,
        source_address=config.keeper_address,
        max_requests_per_minute=config.max_requests_per_minute,
    )


def build_services(
    config: KeeperConfig, client: Optional[LedgerClient] = None
) -> Tuple[LedgerAdapter, LiquidationKeeper, Optional[OrderExecutor]]:
    """Wire the adapter, keeper and order executor for ``config``."""
    client = client or build_client(config)
    guard = PriceGuard(config.max_price_staleness_s, config.max_oracle_deviation_bps)
    adapter = LedgerAdapter(client, config, guard)
    audit_log = AuditLog(config.event_store_path) if config.event_store_path else None
    keeper = LiquidationKeeper(adapter, config, KeeperStats(), audit_log)
    executor = OrderExecutor(adapter, config, audit_log) if config.enable_order_executor else None
    return adapter, keeper, executor


def print_banner(config: KeeperConfig) -> None:
    print("Starting keeper bot...\n")
    print("Configuration:")
    print(f"  Network:          {config.network}")
    print(f"  RPC URL:          {config.rpc_url}")
    print(f"  Keeper Address:   {config.keeper_address}")
    print(f"  Market Contract:  {config.market_contract_id}")
    print(f"  Oracle Contract:  {config.oracle_contract_id}")
    print(f"  Poll Interval:    {config.poll_interval_ms}ms")
    print("")


async def run_keeper(config: KeeperConfig, client: Optional[LedgerClient] = None) -> KeeperStats:
    """Run the keeper (and order executor) until a shutdown signal arrives."""
    adapter, keeper, executor = build_services(config, client)
    start_metrics_server(config.prometheus_port)

    def request_stop() -> None:
        keeper.stop()
        if executor is not None:
            executor.stop()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_stop)
        except NotImplementedError:  # pragma: no cover - Windows event loops
            logger.debug("Signal handlers unsupported on this platform")

    tasks: List[asyncio.Task] = [asyncio.create_task(keeper.run(), name="liquidation-keeper")]
    if executor is not None:
        tasks.append(asyncio.create_task(executor.run(), name="order-executor"))
    logger.info("Keeper bot started. Monitoring positions...")
    try:
        # If one loop dies unexpectedly, stop the other and surface the error.
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        if pending:
            request_stop()
            await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            exc = task.exception()
            if exc:
                logger.error("Keeper task %s raised an exception", task.get_name(), exc_info=exc)
                raise exc
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except NotImplementedError:  # pragma: no cover - Windows event loops
                pass
        await adapter.client.close()
        print(f"\n{RULE}")
        print("Shutting down keeper bot...")
        print(keeper.stats.summary())
        print(f"{RULE}\n")
    return keeper.stats


def main(argv: Optional[List[str]] = None) -> int:
    try:
        config = load_config()
    except ConfigurationError as exc:
        logging.basicConfig(level="INFO")
        logger.error("Refusing to start: %s", exc)
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Loaded configuration %s", config.describe())
    print_banner(config)
    try:
        asyncio.run(run_keeper(config))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
