# src/copytrader/core/engine/orchestrator.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional

from src.copytrader.core.engine.inflight import CloseReservation, InFlightRegistry
from src.copytrader.core.engine.worker import ExecutionWorker
from src.copytrader.core.errors import ConfigError, ValidationError
from src.copytrader.core.models.action import CandidateAction, ExecutionRecord
from src.copytrader.core.models.enums import ActionSide, ChangeKind, ExecutionOutcome
from src.copytrader.core.models.events import ChangeEvent
from src.copytrader.core.models.position import utcnow
from src.copytrader.core.oms.executor import ExecutionEngine
from src.copytrader.core.oms.planner import ActionPlanner


TradeCallback = Callable[[ExecutionRecord], None]


@dataclass(slots=True)
class CopyTradingStats:
    enabled: bool
    dry_run: bool
    total_executed: int = 0
    total_failed: int = 0
    total_volume: Decimal = Decimal("0")
    traders_monitored: int = 0
    active_positions: int = 0
    last_trade_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "dry_run": self.dry_run,
            "total_executed": self.total_executed,
            "total_failed": self.total_failed,
            "total_volume": f"{self.total_volume:.2f}",
            "traders_monitored": self.traders_monitored,
            "active_positions": self.active_positions,
            "last_trade_time": self.last_trade_time.isoformat() if self.last_trade_time else None,
        }


class CopyTradingOrchestrator:
    """
    Poller -> (ChangeEvent) -> Planner -> Engine -> (ExecutionRecord) -> state.

    Responsibilities:
      ✔ owns the in-flight set (atomic reserve / settle)
      ✔ owns aggregate counters, exposed via stats()
      ✔ routes actions to per-source workers once start() was called,
        inline on the caller's thread before start(), dropped after stop()

    Routing:
      OPENED  -> forwarded if not in flight (durable dedup happens in the engine)
      CLOSED  -> forwarded only if in flight, parked behind a pending open
      RESIZED -> dropped (not traded)
    """

    def __init__(
        self,
        *,
        planner: ActionPlanner,
        engine: ExecutionEngine,
        sources: Iterable[str],
        enabled: bool = True,
        on_trade_executed: Optional[TradeCallback] = None,
        on_trade_error: Optional[TradeCallback] = None,
        on_source_error: Optional[Callable[[Exception, str], None]] = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.sources = list(dict.fromkeys(str(s) for s in sources))
        if not self.sources:
            raise ConfigError(["at least one source address is required"])

        self.planner = planner
        self.engine = engine
        self.enabled = bool(enabled)
        self.logger = logger or logging.getLogger(__name__)

        self.on_trade_executed = on_trade_executed
        self.on_trade_error = on_trade_error
        self.on_source_error = on_source_error

        self.inflight = InFlightRegistry(self.sources)

        self._stats = CopyTradingStats(
            enabled=self.enabled,
            dry_run=self.engine.dry_run,
            traders_monitored=len(self.sources),
        )
        self._stats_lock = threading.Lock()

        self._workers: Dict[str, ExecutionWorker] = {}
        self._workers_lock = threading.Lock()
        self._stopped = False

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        with self._workers_lock:
            if self._workers:
                return
            self._stopped = False
            for s in self.sources:
                w = ExecutionWorker(source=s, handler=self.execute_action, logger=self.logger)
                w.start()
                self._workers[s] = w
        self.logger.info(
            "[ORCH] started: sources=%d enabled=%s dry_run=%s",
            len(self.sources), self.enabled, self.engine.dry_run,
        )

    def stop(self, timeout: float = 30.0) -> None:
        """Queued and running executions complete; nothing new is accepted."""
        with self._workers_lock:
            workers = list(self._workers.values())
            self._workers = {}
            self._stopped = True

        for w in workers:
            w.stop()
        for w in workers:
            w.join(timeout=timeout)
            if w.is_alive():
                self.logger.warning("[ORCH] worker did not finish in %.1fs: %s", timeout, w.source)

        self.logger.info("[ORCH] stopped")

    # ------------------------------------------------------------------
    # poller callbacks
    # ------------------------------------------------------------------
    def on_changes(self, source: str, events: List[ChangeEvent]) -> List[ExecutionRecord]:
        records: List[ExecutionRecord] = []
        for ev in events:
            try:
                rec = self.handle_event(ev)
            except Exception:
                self.logger.exception("[ORCH] event handling failed: %r", ev)
                continue
            if rec is not None:
                records.append(rec)
        return records

    def on_error(self, error: Exception, source: str) -> None:
        self.logger.error("[ORCH] source error: source=%s | %s", source, error)
        self._notify(self.on_source_error, error, source)

    # ------------------------------------------------------------------
    # routing
    # ------------------------------------------------------------------
    def handle_event(self, event: ChangeEvent) -> Optional[ExecutionRecord]:
        """
        Returns the ExecutionRecord when executed inline (or rejected by
        validation), None when dropped or queued to a worker.
        """
        if not self.enabled:
            self.logger.debug("[ORCH] copy trading disabled, drop %r", event)
            return None

        source, pid = event.source, event.position_id

        if event.kind == ChangeKind.OPENED:
            if not self.inflight.try_reserve_open(source, pid):
                self.logger.debug("[ORCH] already acted on, drop %r", event)
                return None
            self.logger.info(
                "[ORCH] new position: source=%s market=%s outcome=%s qty=%s",
                source, event.position.market.short_title(), event.position.outcome,
                event.position.quantity,
            )
        elif event.kind == ChangeKind.CLOSED:
            reservation = self.inflight.reserve_close(source, pid, deferred=event)
            if reservation == CloseReservation.DEFERRED:
                self.logger.info(
                    "[ORCH] close deferred until open settles: source=%s id=%s", source, pid,
                )
                return None
            if reservation != CloseReservation.RESERVED:
                self.logger.debug("[ORCH] nothing to close, drop %r", event)
                return None
            self.logger.info(
                "[ORCH] position closed: source=%s market=%s outcome=%s",
                source, event.position.market.short_title(), event.position.outcome,
            )
        else:
            self.logger.info(
                "[ORCH] resize not traded: source=%s id=%s qty %s -> %s",
                source, pid,
                event.previous.quantity if event.previous else "?",
                event.position.quantity,
            )
            return None

        side = ActionSide.OPEN if event.kind == ChangeKind.OPENED else ActionSide.CLOSE
        return self._plan_and_route(event, side, inline=False)

    def _plan_and_route(self, event: ChangeEvent, side: ActionSide, *, inline: bool) -> Optional[ExecutionRecord]:
        # caller holds the reservation for (source, id)
        source, pid = event.source, event.position_id
        try:
            action = self.planner.plan(event)
        except ValidationError as e:
            self.inflight.settle(source, pid, side, held=None)
            return self._on_validation_failed(event, side, e)
        except Exception:
            self.inflight.settle(source, pid, side, held=None)
            raise

        if action is None:
            self.inflight.settle(source, pid, side, held=None)
            return None

        if inline:
            return self.execute_action(action)
        return self._dispatch(action)

    def _dispatch(self, action: CandidateAction) -> Optional[ExecutionRecord]:
        with self._workers_lock:
            stopped = self._stopped
            worker = self._workers.get(action.source)

        if stopped:
            self.logger.warning("[ORCH] orchestrator stopped, drop %r", action)
            self.inflight.settle(action.source, action.position_id, action.side, held=None)
            return None

        if worker is None:
            return self.execute_action(action)

        if not worker.submit(action):
            self.logger.warning("[ORCH] worker closed, drop %r", action)
            self.inflight.settle(action.source, action.position_id, action.side, held=None)
        return None

    # ------------------------------------------------------------------
    # execution + settle
    # ------------------------------------------------------------------
    def execute_action(self, action: CandidateAction) -> ExecutionRecord:
        try:
            record = self.engine.execute(action)
        except Exception as e:
            self.logger.exception("[ORCH] engine crashed on %r", action)
            record = ExecutionRecord.for_action(
                action,
                ExecutionOutcome.FAILED,
                dry_run=self.engine.dry_run,
                error=str(e) or type(e).__name__,
            )

        held: Optional[bool] = None
        if record.outcome in (ExecutionOutcome.SUCCESS, ExecutionOutcome.SKIPPED_DUPLICATE):
            # a durable prior success means the position is ours / already closed
            held = action.side == ActionSide.OPEN

        parked = self.inflight.settle(action.source, action.position_id, action.side, held=held)
        self._account(record)
        if parked is not None:
            self._resume_close(parked)
        return record

    def _resume_close(self, event: ChangeEvent) -> None:
        # runs right behind the open, on the thread that executed it
        self.logger.info(
            "[ORCH] position closed: source=%s market=%s outcome=%s (deferred)",
            event.source, event.position.market.short_title(), event.position.outcome,
        )
        try:
            self._plan_and_route(event, ActionSide.CLOSE, inline=True)
        except Exception:
            self.logger.exception("[ORCH] deferred close failed: %r", event)

    def _on_validation_failed(
        self,
        event: ChangeEvent,
        side: ActionSide,
        err: ValidationError,
    ) -> ExecutionRecord:
        self.logger.warning(
            "[ORCH] validation failed: source=%s id=%s reason=%s | %s",
            event.source, event.position_id, err.reason.value, err.detail,
        )
        record = ExecutionRecord(
            action_id="",
            position_id=event.position_id,
            source=event.source,
            side=side,
            outcome=ExecutionOutcome.FAILED,
            market_id=event.position.market.id,
            outcome_label=event.position.outcome,
            error=str(err),
            reason=err.reason,
            dry_run=self.engine.dry_run,
        )
        self._account(record)
        return record

    def _account(self, record: ExecutionRecord) -> None:
        if record.outcome == ExecutionOutcome.SUCCESS:
            with self._stats_lock:
                self._stats.total_executed += 1
                self._stats.total_volume += record.notional
                self._stats.last_trade_time = utcnow()
            self.logger.info(
                "[ORCH] trade executed: source=%s id=%s side=%s order_id=%s value=%.2f",
                record.source, record.position_id, record.side.value,
                record.order_id, record.notional,
            )
            self._notify(self.on_trade_executed, record)
        elif record.outcome == ExecutionOutcome.FAILED:
            with self._stats_lock:
                self._stats.total_failed += 1
            self.logger.error(
                "[ORCH] trade failed: source=%s id=%s side=%s reason=%s | %s",
                record.source, record.position_id, record.side.value,
                record.reason.value if record.reason else "-", record.error,
            )
            self._notify(self.on_trade_error, record)

    def _notify(self, cb: Optional[Callable[..., None]], *args: Any) -> None:
        if cb is None:
            return
        try:
            cb(*args)
        except Exception:
            self.logger.exception("[ORCH] callback error")

    # ------------------------------------------------------------------
    # read-only accessors
    # ------------------------------------------------------------------
    def stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            self._stats.active_positions = self.inflight.active_count()
            return self._stats.to_dict()

    def in_flight(self, source: str) -> frozenset[str]:
        return self.inflight.ids(source)

    def is_running(self) -> bool:
        with self._workers_lock:
            return bool(self._workers)
