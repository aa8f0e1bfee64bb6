# src/copytrader/cli/migrate.py
from pathlib import Path
import os

from dotenv import load_dotenv

from src.copytrader.data.storage.postgres.pool import create_pool
from src.copytrader.data.storage.postgres.storage import PostgreSQLStorage

DDL_PATH = Path(__file__).resolve().parents[1] / "data" / "storage" / "postgres" / "ddl.sql"


def main() -> None:
    load_dotenv()
    dsn = os.getenv("PG_DSN")
    if not dsn:
        raise SystemExit("PG_DSN env var is required")

    pool = create_pool(dsn)
    try:
        store = PostgreSQLStorage(pool)
        store.exec_ddl(DDL_PATH.read_text(encoding="utf-8"))
        print(f"[MIGRATE] applied {DDL_PATH.name}")
    finally:
        pool.close()


if __name__ == "__main__":
    main()
