"""
Keeper configuration.

All settings come from environment variables, read once by
:func:`load_config` into an immutable :class:`KeeperConfig`.  Contract
ids missing from the environment are looked up in a ``contracts.json``
deployment manifest (``CONTRACTS_FILE``, default ``./contracts.json``)
shaped like ``{"contracts": {"market": "...", "mockOracle": "..."}}``.

Outside paper mode the keeper refuses to start without a signing secret,
a keeper address and a market contract id; these raise
:class:`~keeper.errors.ConfigurationError`.

Market parameters (maintenance margin, leverage cap, fees) mirror the
contract's published config and are used for display and cross-checks
only.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError

from .errors import ConfigurationError
from .models import MarketParams
from .precision import to_fixed
from .secrets_manager import BaseSecretsManager, get_default_secrets_manager

logger = logging.getLogger(__name__)

_FALSE = ("false", "0", "no", "off")
_TRUE = ("true", "1", "yes", "on")


@dataclass(frozen=True)
class KeeperConfig:
    network: str = "testnet"
    rpc_url: str = "https://soroban-testnet.stellar.org"
    keeper_address: str = ""
    secret_key: str = field(default="", repr=False)
    market_contract_id: str = ""
    oracle_contract_id: str = ""
    poll_interval_ms: int = 5000
    order_poll_interval_ms: int = 5000
    min_keeper_reward: int = 0
    max_concurrency: int = 8
    retry_attempts: int = 3
    max_requests_per_minute: int = 600
    max_price_staleness_s: int = 60
    max_oracle_deviation_bps: int = 100
    cross_check: bool = True
    paper_trading: bool = False
    enable_order_executor: bool = True
    event_store_path: Optional[str] = None
    prometheus_port: int = 9108
    log_level: str = "INFO"
    market: MarketParams = field(default_factory=MarketParams)

    @property
    def poll_interval(self) -> float:
        return self.poll_interval_ms / 1000.0

    @property
    def order_poll_interval(self) -> float:
        return self.order_poll_interval_ms / 1000.0

    def describe(self) -> Dict[str, Any]:
        """Loggable view of the configuration, without secrets."""
        return {
            "network": self.network,
            "rpc_url": self.rpc_url,
            "keeper_address": self.keeper_address,
            "market_contract": self.market_contract_id,
            "oracle_contract": self.oracle_contract_id,
            "poll_interval_ms": self.poll_interval_ms,
            "paper_trading": self.paper_trading,
        }


def _env_int(env: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


def _load_contracts_manifest(path: Path) -> Dict[str, str]:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"cannot read contracts manifest {path}: {exc}") from exc
    contracts = data.get("contracts") if isinstance(data, dict) else None
    if not isinstance(contracts, dict):
        return {}
    logger.info("Loaded contract addresses from %s", path)
    return {str(k): str(v) for k, v in contracts.items() if v}


def _market_params(env: Mapping[str, str]) -> MarketParams:
    try:
        return MarketParams(
            max_leverage=_env_int(env, "MAX_LEVERAGE", 10, minimum=1),
            maintenance_margin_bps=_env_int(env, "MAINTENANCE_MARGIN_BPS", 100),
            liquidation_fee_bps=_env_int(env, "LIQUIDATION_FEE_BPS", 500),
            trading_fee_bps=_env_int(env, "TRADING_FEE_BPS", 10),
            base_funding_rate_bps=_env_int(env, "BASE_FUNDING_RATE_BPS", 1),
            max_price_staleness=_env_int(env, "MAX_PRICE_STALENESS_S", 60, minimum=1),
            max_oracle_deviation_bps=_env_int(env, "MAX_ORACLE_DEVIATION_BPS", 100),
        )
    except ValidationError as exc:
        raise ConfigurationError(f"invalid market parameters: {exc}") from exc


def load_config(
    env: Optional[Mapping[str, str]] = None,
    secrets: Optional[BaseSecretsManager] = None,
) -> KeeperConfig:
    """Read and validate the keeper configuration.

    Args:
        env: Mapping to read from; defaults to ``os.environ``.
        secrets: Secrets backend for the signing key; defaults to
            :func:`get_default_secrets_manager` reading the same ``env``.

    Raises:
        ConfigurationError: when a required setting is missing outside
            paper mode or a value cannot be parsed.
    """
    env = os.environ if env is None else env
    secrets = secrets or get_default_secrets_manager(env)
    manifest = _load_contracts_manifest(Path(env.get("CONTRACTS_FILE", "contracts.json")))

    paper = _env_bool(env, "PAPER_TRADING", False)
    market_id = env.get("MARKET_CONTRACT_ID") or manifest.get("market", "")
    oracle_id = (
        env.get("ORACLE_CONTRACT_ID")
        or manifest.get("oracleAdapter")
        or manifest.get("mockOracle", "")
    )
    secret_key = secrets.first_secret("KEEPER_SECRET_KEY", "ORACLE_SECRET_KEY", "ADMIN_SECRET_KEY") or ""
    min_reward_raw = env.get("MIN_KEEPER_REWARD", "0") or "0"
    try:
        min_reward = to_fixed(min_reward_raw)
    except (ArithmeticError, ValueError) as exc:
        raise ConfigurationError(f"MIN_KEEPER_REWARD must be a number, got {min_reward_raw!r}") from exc

    market = _market_params(env)
    config = KeeperConfig(
        network=env.get("NETWORK", "testnet"),
        rpc_url=env.get("RPC_URL", "https://soroban-testnet.stellar.org"),
        keeper_address=env.get("KEEPER_ADDRESS", ""),
        secret_key=secret_key,
        market_contract_id=market_id,
        oracle_contract_id=oracle_id,
        poll_interval_ms=_env_int(env, "POLL_INTERVAL_MS", 5000, minimum=1),
        order_poll_interval_ms=_env_int(env, "ORDER_POLL_INTERVAL_MS", 5000, minimum=1),
        min_keeper_reward=min_reward,
        max_concurrency=_env_int(env, "KEEPER_MAX_CONCURRENCY", 8, minimum=1),
        retry_attempts=_env_int(env, "LEDGER_RETRY_ATTEMPTS", 3, minimum=1),
        max_requests_per_minute=_env_int(env, "LEDGER_MAX_REQUESTS_PER_MINUTE", 600, minimum=1),
        max_price_staleness_s=market.max_price_staleness,
        max_oracle_deviation_bps=market.max_oracle_deviation_bps,
        cross_check=_env_bool(env, "KEEPER_CROSS_CHECK", True),
        paper_trading=paper,
        enable_order_executor=_env_bool(env, "ENABLE_ORDER_EXECUTOR", True),
        event_store_path=env.get("EVENT_STORE_PATH") or None,
        prometheus_port=_env_int(env, "PROMETHEUS_PORT", 9108),
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
        market=market,
    )
    validate_config(config)
    return config


def validate_config(config: KeeperConfig) -> None:
    """Fail fast on settings the keeper cannot run without."""
    if config.paper_trading:
        return
    missing = []
    if not config.secret_key:
        missing.append("KEEPER_SECRET_KEY (or ORACLE_SECRET_KEY / ADMIN_SECRET_KEY)")
    if not config.keeper_address:
        missing.append("KEEPER_ADDRESS")
    if not config.market_contract_id:
        missing.append("MARKET_CONTRACT_ID")
    if not config.rpc_url:
        missing.append("RPC_URL")
    if (config.cross_check or config.enable_order_executor) and not config.oracle_contract_id:
        missing.append("ORACLE_CONTRACT_ID")
    if missing:
        raise ConfigurationError("missing required configuration: " + ", ".join(missing))


__all__ = ["KeeperConfig", "load_config", "validate_config"]
