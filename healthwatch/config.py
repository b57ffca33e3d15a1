# healthwatch/config.py

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Mapping, Optional

from dotenv import load_dotenv
from web3 import Web3

from healthwatch.models import normalize_address

# ── mainnet defaults ────────────────────────────────────────────────────────
LENDING_POOL      = "0x7d2768de32b0b80b7a3454c06bdac94a69ddc7a9"   # Aave v2 LendingPool
LENDING_POOL_V3   = "0x87870bca3f3fd6335c3f4ce8392d69350b4fa4e2"   # Aave v3 Pool
ETH_USD_FEED      = "0x5f4ec3df9cbd43714fe2740f5e3616155c5b8419"   # Chainlink ETH / USD
MULTICALL         = "0xeefba1e63905ef1d7acba5a8513c70307c1ce441"   # Multicall v1

ENV_FILE = "env/.env"

POOL_VERSIONS = ("v2", "v3")


class ConfigError(Exception):
    """Missing or invalid configuration; the monitor must not start."""


def _decimal(name: str, raw: str) -> Decimal:
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
    if not value.is_finite() or value < 0:
        raise ConfigError(f"{name} must be a finite, non-negative number, got {raw!r}")
    return value


def _address(name: str, raw: str) -> str:
    try:
        return normalize_address(raw)
    except ValueError:
        raise ConfigError(f"{name} is not a valid address: {raw!r}") from None


def _flag(raw: Optional[str]) -> bool:
    return str(raw or "").strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class EvaluationConfig:
    ignore_threshold: Decimal
    risk_ratio_threshold: Decimal
    collateral_upper_threshold: Decimal
    price_feed_address: str
    pool_address: str
    pool_version: str = "v2"

    def __post_init__(self):
        version = str(self.pool_version).strip().lower()
        if version not in POOL_VERSIONS:
            raise ConfigError(f"pool_version must be one of {POOL_VERSIONS}, got {self.pool_version!r}")
        object.__setattr__(self, "pool_version", version)
        for name in ("ignore_threshold", "risk_ratio_threshold", "collateral_upper_threshold"):
            object.__setattr__(self, name, _decimal(name, getattr(self, name)))
        object.__setattr__(self, "price_feed_address", _address("price_feed_address", self.price_feed_address))
        object.__setattr__(self, "pool_address", _address("pool_address", self.pool_address))


@dataclass(frozen=True)
class MonitorSettings:
    evaluation: EvaluationConfig
    http_url: Optional[str] = None
    ws_url: Optional[str] = None
    multicall_address: str = MULTICALL
    rpc_timeout: float = 15.0
    alert_id: str = "HEALTH-FACTOR-1"
    emit_clears: bool = False
    persistence_mode: str = "local"
    checkpoint_dir: str = "state"
    checkpoint_key: str = "health-monitor-accounts"
    database_url: Optional[str] = None
    database_token: Optional[str] = None
    slack_webhook: Optional[str] = None
    kafka_brokers: list[str] = field(default_factory=list)
    kafka_username: Optional[str] = None
    kafka_password: Optional[str] = None
    alert_topic: str = "health-alerts"
    snapshot_dir: str = "snapshots"

    def require_rpc(self):
        missing = [n for n, v in (("ALCHEMY_HTTP_URL", self.http_url),
                                  ("ALCHEMY_WS_URL", self.ws_url)) if not v]
        if missing:
            raise ConfigError(f"missing RPC endpoints: {', '.join(missing)}")


def load_settings(env: Optional[Mapping[str, str]] = None) -> MonitorSettings:
    """Build settings from the environment (``env/.env`` first when reading os.environ).

    Raises ConfigError on anything that would leave the monitor half-configured.
    """
    if env is None:
        load_dotenv(ENV_FILE)
        env = os.environ

    version = env.get("POOL_VERSION", "v2").strip().lower()
    evaluation = EvaluationConfig(
        ignore_threshold=env.get("IGNORE_THRESHOLD", "20"),
        risk_ratio_threshold=env.get("ALERT_HF", "1.05"),
        collateral_upper_threshold=env.get("UPPER_THRESHOLD", "2000000"),
        price_feed_address=env.get("ETH_USD_FEED_ADDRESS", ETH_USD_FEED),
        pool_address=env.get("LENDING_POOL_ADDRESS", LENDING_POOL_V3 if version == "v3" else LENDING_POOL),
        pool_version=version,
    )

    mode = env.get("PERSISTENCE_MODE", "local").strip().lower()
    if mode not in ("local", "remote"):
        raise ConfigError(f"PERSISTENCE_MODE must be 'local' or 'remote', got {mode!r}")
    database_url = env.get("DATABASE_URL")
    if mode == "remote" and not database_url:
        raise ConfigError("PERSISTENCE_MODE=remote requires DATABASE_URL")

    alert_id = env.get("ALERT_ID", "HEALTH-FACTOR-1").strip()
    if not alert_id:
        raise ConfigError("ALERT_ID must not be empty")

    timeout = _decimal("RPC_TIMEOUT", env.get("RPC_TIMEOUT", "15"))
    if timeout == 0:
        raise ConfigError("RPC_TIMEOUT must be positive")

    brokers = env.get("KAFKA_BROKERS", "")

    return MonitorSettings(
        evaluation=evaluation,
        http_url=env.get("ALCHEMY_HTTP_URL"),
        ws_url=env.get("ALCHEMY_WS_URL"),
        multicall_address=Web3.to_checksum_address(_address("MULTICALL_ADDRESS", env.get("MULTICALL_ADDRESS", MULTICALL))),
        rpc_timeout=float(timeout),
        alert_id=alert_id,
        emit_clears=_flag(env.get("EMIT_CLEARS")),
        persistence_mode=mode,
        checkpoint_dir=env.get("CHECKPOINT_DIR", "state"),
        checkpoint_key=env.get("CHECKPOINT_KEY", "health-monitor-accounts"),
        database_url=database_url,
        database_token=env.get("DATABASE_TOKEN"),
        slack_webhook=env.get("SLACK_WEBHOOK") or None,
        kafka_brokers=[b.strip() for b in brokers.split(",") if b.strip()],
        kafka_username=env.get("KAFKA_USERNAME"),
        kafka_password=env.get("KAFKA_PASSWORD"),
        alert_topic=env.get("ALERT_TOPIC", "health-alerts"),
        snapshot_dir=env.get("SNAPSHOT_DIR", "snapshots"),
    )
