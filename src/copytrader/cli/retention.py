# src/copytrader/cli/retention.py
from __future__ import annotations

import argparse
import os
from pathlib import Path

import yaml
from dotenv import load_dotenv

from src.copytrader.data.storage.postgres.pool import create_pool
from src.copytrader.data.storage.postgres.storage import PostgreSQLStorage


def _retention_days(default: int = 30) -> int:
    v = os.environ.get("EXECUTIONS_RETENTION_DAYS")
    if v:
        return int(v)
    path = Path(os.environ.get("COPYTRADER_CONFIG") or Path("config") / "copytrader.yaml")
    if path.exists():
        cfg = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        return int(cfg.get("executions_retention_days", default))
    return default


def main():
    ap = argparse.ArgumentParser(description="Delete copy execution history older than N days")
    ap.add_argument("--dry-run", action="store_true")
    ap.add_argument("--days", type=int, default=None)
    args = ap.parse_args()

    load_dotenv()
    dsn = os.environ.get("PG_DSN")
    if not dsn:
        raise SystemExit("PG_DSN env var is required")

    days = args.days if args.days is not None else _retention_days()
    if days < 1:
        raise SystemExit("retention days must be at least 1")

    pool = create_pool(dsn)
    try:
        store = PostgreSQLStorage(pool)
        n = store.delete_executions_older_than(days=days, dry_run=bool(args.dry_run))
    finally:
        pool.close()

    mode = "DRY-RUN (would delete)" if args.dry_run else "DELETED"
    print(f"[{mode}] copy_executions older than {days}d: {n}")


if __name__ == "__main__":
    main()
