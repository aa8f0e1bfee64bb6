# src/copytrader/data/storage/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from src.copytrader.core.models.action import ExecutionRecord
from src.copytrader.core.models.position import Position


class Storage(ABC):
    """
    Durable store contract.

    Two logical collections:
      executions: unique (position_id, source, side), age-pruned
      positions:  source-attributed positions opened by this service

    Every method raises PersistenceError on backend failure.
    """

    @abstractmethod
    def exec_ddl(self, ddl_sql: str) -> None: ...

    # ------------------------------------------------------------------
    # executions
    # ------------------------------------------------------------------

    @abstractmethod
    def has_successful_execution(self, *, position_id: str, source: str, side: str) -> bool: ...

    @abstractmethod
    def save_execution(self, record: ExecutionRecord) -> None:
        """Upsert by (position_id, source, side); a SUCCESS row is never downgraded."""

    @abstractmethod
    def delete_executions_older_than(self, *, days: int, dry_run: bool = False) -> int: ...

    # ------------------------------------------------------------------
    # positions (analytics)
    # ------------------------------------------------------------------

    @abstractmethod
    def upsert_open_position(self, *, source: str, position: Position, opened_at: datetime) -> None: ...

    @abstractmethod
    def mark_position_closed(self, *, source: str, position_id: str, closed_at: datetime) -> None: ...
