# src/copytrader/core/oms/writer.py
from __future__ import annotations

import logging
from typing import Optional

from src.copytrader.core.models.action import CandidateAction, ExecutionRecord
from src.copytrader.core.models.enums import ActionSide
from src.copytrader.data.storage.base import Storage


class ExecutionWriter:
    """
    Execution persistence.

    ✔ upsert execution records
    ✔ track copied positions (open / closed)

    ❌ no dedup decisions
    ❌ never raises: durable writes are best effort
    """

    def __init__(self, storage: Optional[Storage], *, logger: logging.Logger | None = None):
        self.storage = storage
        self.logger = logger or logging.getLogger(__name__)

    @property
    def enabled(self) -> bool:
        return self.storage is not None

    # ------------------------------------------------------------------
    # EXECUTIONS
    # ------------------------------------------------------------------
    def save_record(self, record: ExecutionRecord) -> bool:
        if self.storage is None:
            return False

        try:
            self.storage.save_execution(record)
            return True
        except Exception:
            self.logger.exception(
                "[STORE][EXECUTION] save failed aid=%s id=%s side=%s outcome=%s",
                record.action_id, record.position_id, record.side.value, record.outcome.value,
            )
            return False

    # ------------------------------------------------------------------
    # POSITIONS
    # ------------------------------------------------------------------
    def track_position(self, action: CandidateAction, record: ExecutionRecord) -> bool:
        if self.storage is None or not record.success:
            return False

        try:
            if action.side == ActionSide.OPEN:
                self.storage.upsert_open_position(
                    source=action.source,
                    position=action.position,
                    opened_at=record.executed_at,
                )
            else:
                self.storage.mark_position_closed(
                    source=action.source,
                    position_id=action.position_id,
                    closed_at=record.executed_at,
                )
            return True
        except Exception:
            self.logger.exception(
                "[STORE][POSITION] update failed source=%s id=%s side=%s",
                action.source, action.position_id, action.side.value,
            )
            return False
