"""
Prometheus metrics for the keeper processes.

Metrics are registered once at import time and updated by the keeper
loop and the order executor.  ``start_metrics_server`` exposes them on
``PROMETHEUS_PORT`` (default 9108); calling it twice on the same port is
harmless.

Metrics
-------

* ``keeper_liquidations_total`` – successful liquidations.
* ``keeper_reward_total`` – keeper reward earned, in display units.
* ``keeper_liquidation_failures_total{reason=...}`` – failed attempts.
* ``keeper_benign_races_total`` – positions gone before we acted.
* ``keeper_orders_total{outcome=...}`` – order executor outcomes.
* ``keeper_untrusted_prices_total{asset=...,reason=...}`` – rejected quotes.
* ``keeper_open_positions`` – ids returned by the last scan.
* ``keeper_last_scan_timestamp`` – unix time of the last completed scan.
* ``keeper_scan_duration_seconds`` – tick latency histogram.
"""

from __future__ import annotations

import logging

from prometheus_client import Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)

LIQUIDATIONS = Counter("keeper_liquidations_total", "Successful liquidations submitted by this keeper")
REWARD = Counter("keeper_reward_total", "Keeper reward earned in display units")
LIQUIDATION_FAILURES = Counter(
    "keeper_liquidation_failures_total",
    "Liquidation attempts that failed",
    labelnames=["reason"],
)
BENIGN_RACES = Counter(
    "keeper_benign_races_total",
    "Positions closed or liquidated by someone else before we acted",
)
ORDERS = Counter("keeper_orders_total", "Order executor outcomes", labelnames=["outcome"])
UNTRUSTED_PRICES = Counter(
    "keeper_untrusted_prices_total",
    "Oracle quotes rejected by the price guard",
    labelnames=["asset", "reason"],
)
OPEN_POSITIONS = Gauge("keeper_open_positions", "Open positions seen in the last scan")
LAST_SCAN = Gauge("keeper_last_scan_timestamp", "Unix time of the last completed scan")
SCAN_DURATION = Histogram("keeper_scan_duration_seconds", "Duration of one liquidation scan")

_started_ports = set()


def start_metrics_server(port: int) -> bool:
    """Expose metrics over HTTP.  Returns ``False`` if the port is unavailable.

    A port of 0 or less disables the exporter.
    """
    if port <= 0:
        return False
    if port in _started_ports:
        return True
    try:
        start_http_server(port)
    except OSError as exc:
        # Likely already bound by another component in this process.
        logger.warning("Failed to start Prometheus server on port %d: %s", port, exc)
        return False
    _started_ports.add(port)
    logger.info("Prometheus metrics exposed on port %d", port)
    return True


__all__ = [
    "LIQUIDATIONS",
    "REWARD",
    "LIQUIDATION_FAILURES",
    "BENIGN_RACES",
    "ORDERS",
    "UNTRUSTED_PRICES",
    "OPEN_POSITIONS",
    "LAST_SCAN",
    "SCAN_DURATION",
    "start_metrics_server",
]
