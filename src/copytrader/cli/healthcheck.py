# src/copytrader/cli/healthcheck.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional

from dotenv import load_dotenv

from src.copytrader.config import CopyTraderConfig, load_config
from src.copytrader.core.errors import ConfigError
from src.copytrader.data.storage.postgres.pool import create_pool
from src.copytrader.exchanges.polymarket.clob import ClobExecutionBoundary
from src.copytrader.exchanges.polymarket.rest import PolymarketDataREST

OK = "OK"
WARN = "WARN"
FAIL = "FAIL"

_MARK = {OK: "✅", WARN: "⚠️ ", FAIL: "❌"}


@dataclass(slots=True)
class CheckResult:
    name: str
    status: str
    detail: str


def check_wallet(
    cfg: CopyTraderConfig,
    *,
    boundary_factory: Callable[..., ClobExecutionBoundary] = ClobExecutionBoundary,
) -> CheckResult:
    if not cfg.private_key:
        status = FAIL if cfg.live_trading else WARN
        return CheckResult("wallet", status, "PRIVATE_KEY not set")
    try:
        boundary = boundary_factory(private_key=cfg.private_key, host=cfg.clob_host, chain_id=cfg.chain_id)
        address = boundary.wallet_address()
    except Exception as e:
        return CheckResult("wallet", FAIL, f"invalid private key: {e}")
    return CheckResult("wallet", OK, f"address {address}")


def check_database(cfg: CopyTraderConfig, *, pool_factory: Callable[[str], object] = create_pool) -> CheckResult:
    if not cfg.pg_dsn:
        return CheckResult("database", WARN, "PG_DSN not set (optional)")
    pool = None
    try:
        pool = pool_factory(cfg.pg_dsn)
        pool.wait(timeout=10.0)
    except Exception as e:
        return CheckResult("database", WARN, f"connection failed: {e}")
    finally:
        if pool is not None:
            pool.close()
    return CheckResult("database", OK, "connected")


def check_data_api(cfg: CopyTraderConfig, *, rest: Optional[PolymarketDataREST] = None) -> CheckResult:
    if not cfg.sources:
        return CheckResult("data_api", WARN, "no source addresses configured")
    rest = rest or PolymarketDataREST(base_url=cfg.data_api_url, api_key=cfg.polymarket_api_key)
    addr = cfg.sources[0]
    try:
        n = len(rest.user_positions(addr))
    except Exception as e:
        return CheckResult("data_api", WARN, f"request failed: {e}")
    return CheckResult("data_api", OK, f"{n} open positions for {addr}")


def run_checks(cfg: CopyTraderConfig) -> List[CheckResult]:
    return [check_wallet(cfg), check_database(cfg), check_data_api(cfg)]


def summary_lines(cfg: CopyTraderConfig) -> List[str]:
    lines = [f"sources: {len(cfg.sources)}"]
    lines += [f"  {i}. {addr}" for i, addr in enumerate(cfg.sources, start=1)]
    lines += [
        f"copy trading: {'enabled' if cfg.enabled else 'disabled'}",
        f"dry run: {'yes' if cfg.dry_run else 'no'}",
        f"position multiplier: {cfg.position_size_multiplier}x",
        f"poll interval: {cfg.poll_interval_sec}s",
        f"trade size: {cfg.min_trade_size} .. {cfg.max_trade_size} (position max {cfg.max_position_size})",
    ]
    return lines


def main() -> None:
    load_dotenv()

    try:
        cfg = load_config()
    except ConfigError as e:
        print(f"[HEALTH] ❌ config: {e}")
        raise SystemExit(1)
    print("[HEALTH] ✅ config: loaded")

    results = run_checks(cfg)
    for r in results:
        print(f"[HEALTH] {_MARK[r.status]} {r.name}: {r.detail}")

    for line in summary_lines(cfg):
        print(f"[HEALTH] {line}")

    if any(r.status == FAIL for r in results):
        raise SystemExit(1)
    print("[HEALTH] done")


if __name__ == "__main__":
    main()
