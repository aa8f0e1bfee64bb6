# src/copytrader/config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from src.copytrader.core.errors import ConfigError
from src.copytrader.core.risk.risk_engine import TradeLimits
from src.copytrader.core.utils.numbers import to_decimal
from src.copytrader.exchanges.polymarket.clob import CLOB_HOST, POLYGON_CHAIN_ID
from src.copytrader.exchanges.polymarket.rest import DATA_API_URL

DEFAULT_CONFIG_PATH = Path("config") / "copytrader.yaml"
MIN_POLL_INTERVAL_SEC = 0.1

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(slots=True)
class CopyTraderConfig:
    sources: list[str]

    enabled: bool = False
    dry_run: bool = True
    poll_interval_sec: float = 2.0

    position_size_multiplier: Decimal = Decimal("1")
    min_trade_size: Decimal = Decimal("1")
    max_trade_size: Decimal = Decimal("5000")
    max_position_size: Decimal = Decimal("10000")

    max_retry_attempts: int = 3
    retry_delay_sec: float = 1.0

    pg_dsn: str = ""
    executions_retention_days: int = 30

    private_key: str = field(default="", repr=False)
    clob_host: str = CLOB_HOST
    chain_id: int = POLYGON_CHAIN_ID
    data_api_url: str = DATA_API_URL
    polymarket_api_key: str = field(default="", repr=False)

    telegram_bot_token: str = field(default="", repr=False)
    telegram_chat_id: str = ""

    log_level: str = "INFO"
    debug: bool = False

    def trade_limits(self) -> TradeLimits:
        return TradeLimits(
            min_trade_size=self.min_trade_size,
            max_trade_size=self.max_trade_size,
            max_position_size=self.max_position_size,
        )

    @property
    def live_trading(self) -> bool:
        return self.enabled and not self.dry_run


# -----------------------------------------------------------------------------
# parsing helpers (collect errors, never raise)
# -----------------------------------------------------------------------------
def _parse_sources(v: Any) -> list[str]:
    if v is None:
        return []
    items = v.split(",") if isinstance(v, str) else list(v)
    out = [str(x).strip() for x in items]
    return list(dict.fromkeys(x for x in out if x))


def _parse_bool(name: str, v: Any, default: bool, errors: list[str]) -> bool:
    if v is None or v == "":
        return default
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in _TRUE:
        return True
    if s in _FALSE:
        return False
    errors.append(f"{name} must be a boolean, got {v!r}")
    return default


def _parse_decimal(name: str, v: Any, default: Decimal, errors: list[str]) -> Decimal:
    if v is None or v == "":
        return default
    d = to_decimal(v, None)
    if d is None:
        errors.append(f"{name} must be a number, got {v!r}")
        return default
    return d


def _parse_int(name: str, v: Any, default: int, errors: list[str]) -> int:
    if v is None or v == "":
        return default
    try:
        return int(str(v).strip())
    except ValueError:
        errors.append(f"{name} must be an integer, got {v!r}")
        return default


def _parse_float(name: str, v: Any, default: float, errors: list[str]) -> float:
    if v is None or v == "":
        return default
    try:
        return float(str(v).strip())
    except ValueError:
        errors.append(f"{name} must be a number, got {v!r}")
        return default


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError([f"{path}: top level must be a mapping"])
    return data


# -----------------------------------------------------------------------------
# public
# -----------------------------------------------------------------------------
def load_config(
    *,
    env: Optional[Mapping[str, str]] = None,
    path: Optional[Path] = None,
) -> CopyTraderConfig:
    """
    YAML file (optional) overlaid by environment variables.
    All problems are collected and raised as one ConfigError.
    """
    env = os.environ if env is None else env
    if path is None:
        path = Path(env.get("COPYTRADER_CONFIG") or DEFAULT_CONFIG_PATH)
    y = _load_yaml(Path(path))

    def pick(env_key: str, yaml_key: str | None = None) -> Any:
        v = env.get(env_key)
        if v is not None and v != "":
            return v
        return y.get(yaml_key) if yaml_key else None

    errors: list[str] = []

    sources = _parse_sources(pick("TARGET_ADDRESSES", "sources"))

    cfg = CopyTraderConfig(
        sources=sources,
        enabled=_parse_bool("COPY_TRADING_ENABLED", pick("COPY_TRADING_ENABLED", "enabled"), False, errors),
        dry_run=_parse_bool("DRY_RUN", pick("DRY_RUN", "dry_run"), True, errors),
        poll_interval_sec=_parse_float("POLL_INTERVAL", pick("POLL_INTERVAL", "poll_interval_sec"), 2.0, errors),
        position_size_multiplier=_parse_decimal(
            "POSITION_SIZE_MULTIPLIER",
            pick("POSITION_SIZE_MULTIPLIER", "position_size_multiplier"), Decimal("1"), errors,
        ),
        min_trade_size=_parse_decimal(
            "MIN_TRADE_SIZE", pick("MIN_TRADE_SIZE", "min_trade_size"), Decimal("1"), errors,
        ),
        max_trade_size=_parse_decimal(
            "MAX_TRADE_SIZE", pick("MAX_TRADE_SIZE", "max_trade_size"), Decimal("5000"), errors,
        ),
        max_position_size=_parse_decimal(
            "MAX_POSITION_SIZE", pick("MAX_POSITION_SIZE", "max_position_size"), Decimal("10000"), errors,
        ),
        max_retry_attempts=_parse_int(
            "MAX_RETRY_ATTEMPTS", pick("MAX_RETRY_ATTEMPTS", "max_retry_attempts"), 3, errors,
        ),
        retry_delay_sec=_parse_float("RETRY_DELAY", pick("RETRY_DELAY", "retry_delay_sec"), 1.0, errors),
        pg_dsn=str(pick("PG_DSN", "pg_dsn") or ""),
        executions_retention_days=_parse_int(
            "EXECUTIONS_RETENTION_DAYS",
            pick("EXECUTIONS_RETENTION_DAYS", "executions_retention_days"), 30, errors,
        ),
        private_key=str(pick("PRIVATE_KEY") or ""),
        clob_host=str(pick("CLOB_HOST", "clob_host") or CLOB_HOST),
        chain_id=_parse_int("CHAIN_ID", pick("CHAIN_ID", "chain_id"), POLYGON_CHAIN_ID, errors),
        data_api_url=str(pick("DATA_API_URL", "data_api_url") or DATA_API_URL),
        polymarket_api_key=str(pick("POLYMARKET_API_KEY") or ""),
        telegram_bot_token=str(pick("TELEGRAM_BOT_TOKEN") or ""),
        telegram_chat_id=str(pick("TELEGRAM_CHAT_ID", "telegram_chat_id") or ""),
        log_level=str(pick("LOG_LEVEL", "log_level") or "INFO").upper(),
        debug=_parse_bool("DEBUG", pick("DEBUG", "debug"), False, errors),
    )

    # -------------------------------------------------------------------------
    # validation
    # -------------------------------------------------------------------------
    if not cfg.sources:
        errors.append("TARGET_ADDRESSES must contain at least one address")
    if cfg.poll_interval_sec < MIN_POLL_INTERVAL_SEC:
        errors.append(f"POLL_INTERVAL must be at least {MIN_POLL_INTERVAL_SEC}s")
    if cfg.position_size_multiplier <= 0:
        errors.append("POSITION_SIZE_MULTIPLIER must be positive")
    if cfg.min_trade_size < 0:
        errors.append("MIN_TRADE_SIZE must not be negative")
    if cfg.max_trade_size < cfg.min_trade_size:
        errors.append("MAX_TRADE_SIZE must be >= MIN_TRADE_SIZE")
    if cfg.max_position_size <= 0:
        errors.append("MAX_POSITION_SIZE must be positive")
    if cfg.max_retry_attempts < 0:
        errors.append("MAX_RETRY_ATTEMPTS must not be negative")
    if cfg.retry_delay_sec < 0:
        errors.append("RETRY_DELAY must not be negative")
    if cfg.executions_retention_days < 1:
        errors.append("EXECUTIONS_RETENTION_DAYS must be at least 1")
    if cfg.live_trading and not cfg.private_key:
        errors.append("PRIVATE_KEY is required when COPY_TRADING_ENABLED is true and DRY_RUN is false")

    if errors:
        raise ConfigError(errors)
    return cfg
