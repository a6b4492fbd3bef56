"""Tests for environment configuration and secrets loading."""

import json

import pytest

from keeper.src.keeper.config import KeeperConfig, load_config, validate_config
from keeper.src.keeper.errors import ConfigurationError
from keeper.src.keeper.precision import SCALE
from keeper.src.keeper.secrets_manager import BaseSecretsManager, EnvFileSecretsManager


class StubSecrets(BaseSecretsManager):
    def __init__(self, **values):
        self.values = values

    def get_secret(self, name):
        return self.values.get(name)


@pytest.fixture
def base_env(tmp_path):
    return {
        "CONTRACTS_FILE": str(tmp_path / "missing.json"),
        "KEEPER_ADDRESS": "GKEEPER",
        "MARKET_CONTRACT_ID": "CMARKET",
        "ORACLE_CONTRACT_ID": "CORACLE",
    }


def test_defaults(base_env) -> None:
    config = load_config(base_env, StubSecrets(KEEPER_SECRET_KEY="s3cret"))
    assert config.poll_interval_ms == 5000
    assert config.poll_interval == 5.0
    assert config.min_keeper_reward == 0
    assert config.retry_attempts == 3
    assert config.cross_check is True
    assert config.market.maintenance_margin_bps == 100
    assert config.max_price_staleness_s == 60


def test_overrides(base_env) -> None:
    env = dict(
        base_env,
        POLL_INTERVAL_MS="250",
        MIN_KEEPER_REWARD="1.5",
        KEEPER_CROSS_CHECK="off",
        LOG_LEVEL="debug",
        MAX_LEVERAGE="20",
        MAINTENANCE_MARGIN_BPS="50",
    )
    config = load_config(env, StubSecrets(KEEPER_SECRET_KEY="s3cret"))
    assert config.poll_interval_ms == 250
    assert config.min_keeper_reward == 15 * SCALE // 10
    assert config.cross_check is False
    assert config.log_level == "DEBUG"
    assert config.market.max_leverage == 20


def test_secret_fallback_order(base_env) -> None:
    config = load_config(base_env, StubSecrets(ORACLE_SECRET_KEY="hunter2", ADMIN_SECRET_KEY="admin"))
    assert config.secret_key == "hunter2"
    assert "hunter2" not in repr(config)
    assert "secret" not in json.dumps(config.describe())


def test_contract_ids_from_manifest(base_env, tmp_path) -> None:
    manifest = tmp_path / "contracts.json"
    manifest.write_text(json.dumps({"contracts": {"market": "CFILE", "mockOracle": "CMOCK"}}))
    env = dict(base_env, CONTRACTS_FILE=str(manifest))
    del env["MARKET_CONTRACT_ID"]
    del env["ORACLE_CONTRACT_ID"]
    config = load_config(env, StubSecrets(KEEPER_SECRET_KEY="s3cret"))
    assert config.market_contract_id == "CFILE"
    assert config.oracle_contract_id == "CMOCK"


def test_refuses_to_start_unconfigured(tmp_path) -> None:
    env = {"CONTRACTS_FILE": str(tmp_path / "missing.json")}
    with pytest.raises(ConfigurationError) as excinfo:
        load_config(env, StubSecrets())
    message = str(excinfo.value)
    assert "KEEPER_SECRET_KEY" in message
    assert "KEEPER_ADDRESS" in message
    assert "MARKET_CONTRACT_ID" in message


def test_paper_mode_needs_nothing(tmp_path) -> None:
    env = {"CONTRACTS_FILE": str(tmp_path / "missing.json"), "PAPER_TRADING": "true"}
    config = load_config(env, StubSecrets())
    assert config.paper_trading is True
    validate_config(config)


@pytest.mark.parametrize(
    "name, value",
    [
        ("POLL_INTERVAL_MS", "soon"),
        ("POLL_INTERVAL_MS", "0"),
        ("PAPER_TRADING", "maybe"),
        ("MIN_KEEPER_REWARD", "lots"),
        ("MAINTENANCE_MARGIN_BPS", "2000"),
    ],
)
def test_invalid_values(base_env, name, value) -> None:
    with pytest.raises(ConfigurationError):
        load_config(dict(base_env, **{name: value}), StubSecrets(KEEPER_SECRET_KEY="s3cret"))


def test_oracle_required_for_order_executor() -> None:
    config = KeeperConfig(secret_key="s", keeper_address="G", market_contract_id="C", cross_check=False)
    with pytest.raises(ConfigurationError, match="ORACLE_CONTRACT_ID"):
        validate_config(config)


def test_secret_file_wins_over_environment(tmp_path, monkeypatch) -> None:
    secret_file = tmp_path / "keeper.key"
    secret_file.write_text("from-file\n")
    monkeypatch.setenv("KEEPER_SECRET_KEY", "from-env")
    monkeypatch.setenv("KEEPER_SECRET_KEY_FILE", str(secret_file))
    assert EnvFileSecretsManager().get_secret("KEEPER_SECRET_KEY") == "from-file"


def test_relative_secret_file_resolves_against_base(tmp_path, monkeypatch) -> None:
    (tmp_path / "admin.key").write_text("admin")
    monkeypatch.delenv("ADMIN_SECRET_KEY", raising=False)
    monkeypatch.setenv("ADMIN_SECRET_KEY_FILE", "admin.key")
    monkeypatch.delenv("KEEPER_SECRET_KEY_FILE", raising=False)
    monkeypatch.delenv("KEEPER_SECRET_KEY", raising=False)
    manager = EnvFileSecretsManager(base_path=tmp_path)
    assert manager.first_secret("KEEPER_SECRET_KEY", "ADMIN_SECRET_KEY") == "admin"


def test_unreadable_secret_file_is_missing(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("KEEPER_SECRET_KEY_FILE", str(tmp_path / "absent.key"))
    assert EnvFileSecretsManager().get_secret("KEEPER_SECRET_KEY") is None


def test_injected_env_supplies_secrets(base_env, tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("KEEPER_SECRET_KEY", "process-secret")
    config = load_config(dict(base_env, KEEPER_SECRET_KEY="injected"))
    assert config.secret_key == "injected"

    (tmp_path / "keeper.key").write_text("from-file\n")
    env = dict(base_env, SECRETS_BASE_PATH=str(tmp_path), KEEPER_SECRET_KEY_FILE="keeper.key")
    assert load_config(env).secret_key == "from-file"


def test_injected_env_without_secret_is_refused(base_env, monkeypatch) -> None:
    monkeypatch.setenv("KEEPER_SECRET_KEY", "process-secret")
    with pytest.raises(ConfigurationError, match="KEEPER_SECRET_KEY"):
        load_config(base_env)
