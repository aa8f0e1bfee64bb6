# src/copytrader/core/oms/executor.py
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from src.copytrader.core.errors import ExecutionRejected
from src.copytrader.core.models.action import CandidateAction, ExecutionRecord
from src.copytrader.core.models.enums import ExecutionOutcome
from src.copytrader.core.oms.state_machine import ActionLifecycle, ActionState
from src.copytrader.core.oms.writer import ExecutionWriter
from src.copytrader.data.storage.base import Storage
from src.copytrader.exchanges.base.exchange import ExecutionBoundary


class ExecutionEngine:
    """
    execute(CandidateAction) -> ExecutionRecord

    Flow per action:

      1) dedup: durable SUCCESS for (position_id, source, side) -> SKIPPED_DUPLICATE
      2) dry run: synthesize SUCCESS, boundary untouched
      3) submit with bounded retry (max_retry_attempts extra submissions,
         fixed retry_delay_sec between them); ExecutionRejected is final
      4) persist the record (best effort)

    The in-flight set is not touched here; the orchestrator owns it.
    """

    def __init__(
        self,
        *,
        boundary: Optional[ExecutionBoundary],
        storage: Optional[Storage] = None,
        dry_run: bool = False,
        max_retry_attempts: int = 3,
        retry_delay_sec: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        if boundary is None and not dry_run:
            raise ValueError("execution boundary is required unless dry_run is set")

        self.boundary = boundary
        self.storage = storage
        self.dry_run = bool(dry_run)
        self.max_retry_attempts = max(0, int(max_retry_attempts))
        self.retry_delay_sec = max(0.0, float(retry_delay_sec))
        self._sleep = sleep
        self.logger = logger or logging.getLogger(__name__)

        self.writer = ExecutionWriter(storage, logger=self.logger)

    # ------------------------------------------------------------------
    # dedup
    # ------------------------------------------------------------------
    def is_duplicate(self, action: CandidateAction) -> bool:
        if self.storage is None:
            return False

        pid, source, side = action.key
        try:
            return bool(
                self.storage.has_successful_execution(position_id=pid, source=source, side=side)
            )
        except Exception as e:
            # degraded store: fall back to in-memory dedup only
            self.logger.warning(
                "[EXEC][DEDUP] store check failed aid=%s -> treat as new | %s",
                action.action_id, e,
            )
            return False

    # ------------------------------------------------------------------
    # execute
    # ------------------------------------------------------------------
    def execute(self, action: CandidateAction) -> ExecutionRecord:
        lc = ActionLifecycle(action.action_id, max_retries=self.max_retry_attempts)

        duplicate = self.is_duplicate(action)
        lc.advance(ActionState.DUPLICATE_CHECKED)

        if duplicate:
            lc.advance(ActionState.SKIPPED)
            self.logger.info(
                "[EXEC] duplicate, skipping: source=%s id=%s side=%s",
                action.source, action.position_id, action.side.value,
            )
            record = ExecutionRecord.for_action(
                action,
                ExecutionOutcome.SKIPPED_DUPLICATE,
                dry_run=self.dry_run,
                error="Duplicate trade",
            )
            self.writer.save_record(record)
            return record

        lc.advance(ActionState.VALIDATED)

        if self.dry_run:
            lc.advance(ActionState.SUCCESS)
            self.logger.info(
                "[EXEC] DRY RUN: would %s token=%s qty=%s price=%s value=%.2f",
                action.side.order_side, action.position_id,
                action.quantity, action.price, action.notional,
            )
            record = ExecutionRecord.for_action(action, ExecutionOutcome.SUCCESS, dry_run=True)
        else:
            record = self._submit_with_retry(action, lc)

        self.writer.save_record(record)
        self.writer.track_position(action, record)
        return record

    def _submit_with_retry(self, action: CandidateAction, lc: ActionLifecycle) -> ExecutionRecord:
        assert self.boundary is not None

        while True:
            lc.advance(ActionState.SUBMITTED)
            self.logger.info(
                "[EXEC] submit %s token=%s qty=%s price=%s attempt=%d/%d aid=%s",
                action.side.order_side, action.position_id, action.quantity, action.price,
                lc.submissions, self.max_retry_attempts + 1, action.action_id,
            )

            try:
                resp = self.boundary.submit(
                    token_id=action.position_id,
                    side=action.side.order_side,
                    price=action.price,
                    quantity=action.quantity,
                    client_id=action.action_id,
                )
            except ExecutionRejected as e:
                lc.advance(ActionState.FAILED)
                self.logger.error(
                    "[EXEC] rejected (no retry): source=%s id=%s side=%s | %s",
                    action.source, action.position_id, action.side.value, e,
                )
                return ExecutionRecord.for_action(
                    action,
                    ExecutionOutcome.FAILED,
                    dry_run=False,
                    retry_count=lc.retries,
                    error=str(e) or type(e).__name__,
                )
            except Exception as e:
                self.logger.error(
                    "[EXEC] submit failed: source=%s id=%s side=%s retry=%d | %s",
                    action.source, action.position_id, action.side.value, lc.retries, e,
                )
                if lc.can_retry():
                    lc.advance(ActionState.RETRY_PENDING)
                    self.logger.info(
                        "[EXEC] retrying in %.2fs (%d/%d) aid=%s",
                        self.retry_delay_sec, lc.retries, self.max_retry_attempts, action.action_id,
                    )
                    self._sleep(self.retry_delay_sec)
                    continue

                lc.advance(ActionState.FAILED)
                return ExecutionRecord.for_action(
                    action,
                    ExecutionOutcome.FAILED,
                    dry_run=False,
                    retry_count=lc.retries,
                    error=str(e) or type(e).__name__,
                )

            lc.advance(ActionState.SUCCESS)
            order_id = None
            if isinstance(resp, dict):
                order_id = resp.get("orderId") or resp.get("orderID")

            self.logger.info(
                "[EXEC] %s executed: order_id=%s qty=%s price=%s aid=%s",
                action.side.order_side, order_id, action.quantity, action.price, action.action_id,
            )
            return ExecutionRecord.for_action(
                action,
                ExecutionOutcome.SUCCESS,
                dry_run=False,
                retry_count=lc.retries,
                order_id=str(order_id) if order_id else None,
            )
