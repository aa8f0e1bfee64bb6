# src/copytrader/data/storage/postgres/storage.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator

from psycopg_pool import ConnectionPool

from src.copytrader.core.errors import PersistenceError
from src.copytrader.core.models.action import ExecutionRecord
from src.copytrader.core.models.enums import ExecutionOutcome
from src.copytrader.core.models.position import Position
from src.copytrader.data.storage.base import Storage

logger = logging.getLogger(__name__)


class PostgreSQLStorage(Storage):

    """
    PostgreSQL storage: execution history (dedup + audit), copied positions, retention.
    """

    def __init__(self, pool: ConnectionPool):
        self.pool = pool

    # ======================================================================
    # HELPERS
    # ======================================================================

    @contextmanager
    def _guard(self, op: str) -> Iterator[None]:
        try:
            yield
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"{op} failed: {e}") from e

    def _exec_one(self, query: str, params: tuple):
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchone()

    def _exec_write(self, query: str, params) -> int:
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                n = cur.rowcount
            conn.commit()
        return int(n or 0)

    def exec_ddl(self, ddl_sql: str) -> None:
        with self._guard("exec_ddl"):
            with self.pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(ddl_sql)
                conn.commit()

    # ======================================================================
    # EXECUTIONS
    # ======================================================================

    def has_successful_execution(self, *, position_id: str, source: str, side: str) -> bool:
        query = """
        SELECT 1
        FROM copy_executions
        WHERE position_id = %s
          AND source = %s
          AND side = %s
          AND outcome = %s
        LIMIT 1
        """
        with self._guard("has_successful_execution"):
            row = self._exec_one(
                query, (str(position_id), str(source), str(side), ExecutionOutcome.SUCCESS.value),
            )
        return row is not None

    def save_execution(self, record: ExecutionRecord) -> None:
        """
        Upsert by (position_id, source, side).
        An existing SUCCESS row is left untouched.
        """
        query = """
        INSERT INTO copy_executions (
            action_id, position_id, source, side, outcome,
            market_id, outcome_label, quantity, price,
            order_id, retry_count, error, reason, dry_run,
            executed_at, updated_at
        )
        VALUES (
            %(action_id)s, %(position_id)s, %(source)s, %(side)s, %(outcome)s,
            %(market_id)s, %(outcome_label)s, %(quantity)s, %(price)s,
            %(order_id)s, %(retry_count)s, %(error)s, %(reason)s, %(dry_run)s,
            %(executed_at)s, NOW()
        )
        ON CONFLICT (position_id, source, side) DO UPDATE SET
            action_id     = EXCLUDED.action_id,
            outcome       = EXCLUDED.outcome,
            market_id     = EXCLUDED.market_id,
            outcome_label = EXCLUDED.outcome_label,
            quantity      = EXCLUDED.quantity,
            price         = EXCLUDED.price,
            order_id      = EXCLUDED.order_id,
            retry_count   = EXCLUDED.retry_count,
            error         = EXCLUDED.error,
            reason        = EXCLUDED.reason,
            dry_run       = EXCLUDED.dry_run,
            executed_at   = EXCLUDED.executed_at,
            updated_at    = NOW()
        WHERE copy_executions.outcome <> 'SUCCESS'
        """
        with self._guard("save_execution"):
            self._exec_write(query, record.to_row())

    def delete_executions_older_than(self, *, days: int, dry_run: bool = False) -> int:
        if dry_run:
            query = """
            SELECT COUNT(*)
            FROM copy_executions
            WHERE executed_at < NOW() - (INTERVAL '1 day' * %s)
            """
            with self._guard("delete_executions_older_than"):
                row = self._exec_one(query, (int(days),))
            return int(row[0] if row else 0)

        query = """
        DELETE FROM copy_executions
        WHERE executed_at < NOW() - (INTERVAL '1 day' * %s)
        """
        with self._guard("delete_executions_older_than"):
            return self._exec_write(query, (int(days),))

    # ======================================================================
    # POSITIONS
    # ======================================================================

    def upsert_open_position(self, *, source: str, position: Position, opened_at: datetime) -> None:
        query = """
        INSERT INTO copy_positions (
            position_id, source, market_id, outcome,
            quantity, price, value,
            is_active, opened_at, closed_at, updated_at
        )
        VALUES (
            %(position_id)s, %(source)s, %(market_id)s, %(outcome)s,
            %(quantity)s, %(price)s, %(value)s,
            TRUE, %(opened_at)s, NULL, NOW()
        )
        ON CONFLICT (position_id, source) DO UPDATE SET
            market_id  = EXCLUDED.market_id,
            outcome    = EXCLUDED.outcome,
            quantity   = EXCLUDED.quantity,
            price      = EXCLUDED.price,
            value      = EXCLUDED.value,
            is_active  = TRUE,
            opened_at  = EXCLUDED.opened_at,
            closed_at  = NULL,
            updated_at = NOW()
        """
        row = position.to_row(source=source)
        row["opened_at"] = opened_at
        with self._guard("upsert_open_position"):
            self._exec_write(query, row)

    def mark_position_closed(self, *, source: str, position_id: str, closed_at: datetime) -> None:
        query = """
        UPDATE copy_positions
        SET is_active = FALSE,
            closed_at = %s,
            updated_at = NOW()
        WHERE position_id = %s
          AND source = %s
          AND is_active
        """
        with self._guard("mark_position_closed"):
            n = self._exec_write(query, (closed_at, str(position_id), str(source)))
        if n == 0:
            logger.debug("[STORE] close of unknown position ignored: source=%s id=%s", source, position_id)
