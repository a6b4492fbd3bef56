#!/usr/bin/env python
"""Simple health check utility.

This script prints out the keeper's configuration keys and whether the
required secrets are present in the environment.  Operators can use it
to verify the environment before starting the keeper.  Secret values are
never printed.
"""

from __future__ import annotations

import os


def main() -> None:
    # Settings that must be present outside paper mode
    required = [
        "KEEPER_ADDRESS",
        "MARKET_CONTRACT_ID",
        "ORACLE_CONTRACT_ID",
        "RPC_URL",
    ]
    optional = [
        "NETWORK",
        "POLL_INTERVAL_MS",
        "MIN_KEEPER_REWARD",
        "KEEPER_MAX_CONCURRENCY",
        "PAPER_TRADING",
        "ENABLE_ORDER_EXECUTOR",
        "EVENT_STORE_PATH",
        "PROMETHEUS_PORT",
    ]
    print("Health Check:")
    for key in required + optional:
        val = os.environ.get(key)
        status = "set" if val else "missing"
        print(f"{key}: {status}")
    secret_names = ("KEEPER_SECRET_KEY", "ORACLE_SECRET_KEY", "ADMIN_SECRET_KEY")
    has_secret = any(os.environ.get(name) or os.environ.get(f"{name}_FILE") for name in secret_names)
    print(f"signing secret: {'set' if has_secret else 'missing'}")


if __name__ == "__main__":
    main()
