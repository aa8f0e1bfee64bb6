"""Orchestrator routing, in-flight bookkeeping and stats."""

import threading
from decimal import Decimal

import pytest

from src.copytrader.core.engine.orchestrator import CopyTradingOrchestrator
from src.copytrader.core.errors import ConfigError, ExecutionRejected, ExecutionTransportError
from src.copytrader.core.models.action import ExecutionRecord
from src.copytrader.core.models.enums import ActionSide, ChangeKind, ExecutionOutcome, ValidationReason
from src.copytrader.core.models.events import ChangeEvent
from src.copytrader.core.oms.executor import ExecutionEngine
from src.copytrader.core.oms.planner import ActionPlanner
from src.copytrader.core.risk.risk_engine import RiskEngine, TradeLimits
from src.copytrader.exchanges.base.exchange import ExecutionBoundary
from src.copytrader.market_state.change_detector import detect_changes

SRC = "0xsource"


def _orch(
    boundary, *, store=None, multiplier="1", max_trade="5000", dry_run=False, enabled=True,
    retries=0, sleep=lambda _s: None, **callbacks,
):
    limits = TradeLimits(max_trade_size=Decimal(max_trade), max_position_size=Decimal("100000"))
    planner = ActionPlanner(risk=RiskEngine(limits, position_size_multiplier=Decimal(multiplier)))
    engine = ExecutionEngine(
        boundary=boundary, storage=store, dry_run=dry_run, max_retry_attempts=retries, sleep=sleep,
    )
    return CopyTradingOrchestrator(
        planner=planner, engine=engine, sources=[SRC, "0xother"], enabled=enabled, **callbacks,
    )


def _opened(pos, source=SRC):
    return ChangeEvent(ChangeKind.OPENED, pos, source)


def _closed(pos, source=SRC):
    return ChangeEvent(ChangeKind.CLOSED, pos, source)


class TestConstruction:
    def test_requires_sources(self, boundary) -> None:
        engine = ExecutionEngine(boundary=boundary)
        planner = ActionPlanner(risk=RiskEngine(TradeLimits()))

        with pytest.raises(ConfigError):
            CopyTradingOrchestrator(planner=planner, engine=engine, sources=[])


class TestFirstObservation:
    def test_three_positions_three_actions(self, make_position, make_snapshot, boundary) -> None:
        orch = _orch(boundary)
        snap = make_snapshot(make_position("a"), make_position("b"), make_position("c"))

        events = detect_changes(None, snap)
        records = orch.on_changes(SRC, events)

        assert len(events) == 3
        assert [r.outcome for r in records] == [ExecutionOutcome.SUCCESS] * 3
        assert len(boundary.calls) == 3
        assert orch.in_flight(SRC) == frozenset({"a", "b", "c"})


class TestRouting:
    def test_no_double_open(self, make_position, boundary) -> None:
        orch = _orch(boundary)
        pos = make_position("a")

        assert orch.handle_event(_opened(pos)) is not None
        assert orch.handle_event(_opened(pos)) is None
        assert len(boundary.calls) == 1

    def test_close_without_open_is_dropped(self, make_position, boundary) -> None:
        orch = _orch(boundary)

        assert orch.handle_event(_closed(make_position("a"))) is None
        assert boundary.calls == []

    def test_open_then_close(self, make_position, boundary) -> None:
        orch = _orch(boundary)
        pos = make_position("a")

        orch.handle_event(_opened(pos))
        rec = orch.handle_event(_closed(pos))

        assert rec.side == ActionSide.CLOSE
        assert boundary.calls[-1]["side"] == "SELL"
        assert orch.in_flight(SRC) == frozenset()

    def test_resize_is_dropped(self, make_position, boundary) -> None:
        orch = _orch(boundary)
        old, new = make_position("a", qty="100"), make_position("a", qty="300")
        orch.handle_event(_opened(old))

        ev = ChangeEvent(ChangeKind.RESIZED, new, SRC, previous=old)

        assert orch.handle_event(ev) is None
        assert len(boundary.calls) == 1

    def test_sources_are_isolated(self, make_position, boundary) -> None:
        orch = _orch(boundary)
        pos = make_position("a")

        orch.handle_event(_opened(pos, SRC))
        orch.handle_event(_opened(pos, "0xother"))

        assert len(boundary.calls) == 2
        assert orch.handle_event(_closed(pos, "0xother")) is not None
        assert orch.in_flight(SRC) == frozenset({"a"})

    def test_disabled_drops_everything(self, make_position, boundary) -> None:
        orch = _orch(boundary, enabled=False)

        assert orch.handle_event(_opened(make_position("a"))) is None
        assert boundary.calls == []


class TestOutcomes:
    def test_scaled_trade_above_limit_is_rejected_before_engine(self, make_position, boundary, store) -> None:
        errors = []
        orch = _orch(boundary, store=store, multiplier="0.5", max_trade="50", on_trade_error=errors.append)

        rec = orch.handle_event(_opened(make_position("a", qty="100", price="2")))

        assert rec.outcome == ExecutionOutcome.FAILED
        assert rec.reason == ValidationReason.ABOVE_MAXIMUM
        assert boundary.calls == []
        assert store.executions == {}
        assert errors == [rec]
        assert orch.in_flight(SRC) == frozenset()
        assert orch.stats()["total_failed"] == 1

    def test_failed_open_can_be_retried_later(self, make_position, make_boundary) -> None:
        b = make_boundary([ExecutionTransportError("down")])
        orch = _orch(b)
        pos = make_position("a")

        assert orch.handle_event(_opened(pos)).outcome == ExecutionOutcome.FAILED
        assert orch.in_flight(SRC) == frozenset()
        assert orch.handle_event(_opened(pos)).outcome == ExecutionOutcome.SUCCESS

    def test_failed_close_keeps_position(self, make_position, make_boundary) -> None:
        b = make_boundary([{"orderId": "o1"}, ExecutionTransportError("down")])
        orch = _orch(b)
        pos = make_position("a")

        orch.handle_event(_opened(pos))
        assert orch.handle_event(_closed(pos)).outcome == ExecutionOutcome.FAILED
        assert orch.in_flight(SRC) == frozenset({"a"})

    def test_duplicate_open_marks_position_held(self, make_position, boundary, store) -> None:
        pos = make_position("a")
        orch = _orch(boundary, store=store)
        prior = orch.planner.plan(_opened(pos))
        store.save_execution(ExecutionRecord.for_action(prior, ExecutionOutcome.SUCCESS, dry_run=False))

        rec = orch.handle_event(_opened(pos))

        assert rec.outcome == ExecutionOutcome.SKIPPED_DUPLICATE
        assert orch.in_flight(SRC) == frozenset({"a"})
        assert orch.stats()["total_executed"] == 0
        assert boundary.calls == []

    def test_engine_crash_becomes_failed_record(self, make_position, boundary) -> None:
        orch = _orch(boundary)

        def crash(_action):
            raise RuntimeError("bug")

        orch.engine.execute = crash

        rec = orch.handle_event(_opened(make_position("a")))

        assert rec.outcome == ExecutionOutcome.FAILED
        assert orch.in_flight(SRC) == frozenset()


class TestStatsAndCallbacks:
    def test_stats(self, make_position, boundary) -> None:
        orch = _orch(boundary)
        orch.handle_event(_opened(make_position("a", qty="10", price="0.5")))
        orch.handle_event(_opened(make_position("b", qty="4", price="1")))

        s = orch.stats()

        assert s["total_executed"] == 2
        assert s["total_failed"] == 0
        assert s["total_volume"] == "9.00"
        assert s["traders_monitored"] == 2
        assert s["active_positions"] == 2
        assert s["last_trade_time"] is not None
        assert s["enabled"] is True
        assert s["dry_run"] is False

    def test_callback_errors_do_not_propagate(self, make_position, boundary) -> None:
        def boom(_rec):
            raise RuntimeError("callback down")

        orch = _orch(boundary, on_trade_executed=boom)

        rec = orch.handle_event(_opened(make_position("a")))

        assert rec.outcome == ExecutionOutcome.SUCCESS
        assert orch.stats()["total_executed"] == 1

    def test_source_error_callback(self, boundary) -> None:
        seen = []
        orch = _orch(boundary, on_source_error=lambda e, s: seen.append((str(e), s)))

        orch.on_error(RuntimeError("boom"), SRC)

        assert seen == [("boom", SRC)]

    def test_dry_run_flag_in_stats(self, make_position) -> None:
        orch = _orch(None, dry_run=True)
        rec = orch.handle_event(_opened(make_position("a")))

        assert rec.dry_run
        assert orch.stats()["dry_run"] is True


class TestWorkers:
    def test_concurrent_opens_execute_once(self, make_position, make_boundary) -> None:
        b = make_boundary(delay=0.05)
        orch = _orch(b)
        orch.start()
        pos = make_position("a")
        barrier = threading.Barrier(8)

        def fire() -> None:
            barrier.wait()
            orch.on_changes(SRC, [_opened(pos)])

        threads = [threading.Thread(target=fire) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        orch.stop(timeout=5)

        assert len(b.calls) == 1
        assert orch.in_flight(SRC) == frozenset({"a"})

    def test_stop_drains_queue(self, make_position, make_boundary) -> None:
        b = make_boundary(delay=0.01)
        orch = _orch(b)
        orch.start()

        for i in range(5):
            assert orch.handle_event(_opened(make_position(f"p{i}"))) is None

        orch.stop(timeout=5)

        assert len(b.calls) == 5
        assert not orch.is_running()
        assert orch.stats()["total_executed"] == 5

    def test_close_during_pending_open_runs_after_it(self, make_position, make_boundary) -> None:
        b = make_boundary([ExecutionTransportError("timeout")])
        orch = _orch(b, retries=1, sleep=lambda _s: threading.Event().wait(0.2))
        orch.start()
        pos = make_position("a")

        assert orch.handle_event(_opened(pos)) is None
        threading.Event().wait(0.05)
        assert orch.handle_event(_closed(pos)) is None
        orch.stop(timeout=5)

        assert [c["side"] for c in b.calls] == ["BUY", "BUY", "SELL"]
        assert orch.in_flight(SRC) == frozenset()
        assert orch.stats()["total_executed"] == 2

    def test_close_parked_while_open_is_running(self, make_position) -> None:
        b = _GatedBoundary()
        orch = _orch(b)
        orch.start()
        pos = make_position("a")

        orch.handle_event(_opened(pos))
        assert b.entered.wait(2)
        assert orch.handle_event(_closed(pos)) is None
        assert orch.inflight.has_deferred_close(SRC, "a")

        b.release.set()
        orch.stop(timeout=5)

        assert b.sides == ["BUY", "SELL"]
        assert orch.in_flight(SRC) == frozenset()

    def test_parked_close_dropped_when_open_fails(self, make_position) -> None:
        b = _GatedBoundary(fail=True)
        orch = _orch(b)
        orch.start()
        pos = make_position("a")

        orch.handle_event(_opened(pos))
        assert b.entered.wait(2)
        orch.handle_event(_closed(pos))
        b.release.set()
        orch.stop(timeout=5)

        assert b.sides == ["BUY"]
        assert orch.in_flight(SRC) == frozenset()
        assert not orch.inflight.is_pending(SRC, "a")

    def test_actions_after_stop_are_dropped(self, make_position, boundary) -> None:
        orch = _orch(boundary)
        orch.start()
        orch.stop(timeout=5)

        assert orch.handle_event(_opened(make_position("a"))) is None
        assert boundary.calls == []
        assert not orch.inflight.is_pending(SRC, "a")

        orch.start()
        orch.handle_event(_opened(make_position("a")))
        orch.stop(timeout=5)
        assert len(boundary.calls) == 1


class _GatedBoundary(ExecutionBoundary):
    """Blocks every submit until `release` is set."""

    name = "gated"

    def __init__(self, fail: bool = False) -> None:
        self.entered = threading.Event()
        self.release = threading.Event()
        self.sides: list = []
        self.fail = fail

    def submit(self, *, token_id, side, price, quantity, client_id) -> dict:
        self.sides.append(side)
        self.entered.set()
        self.release.wait(5)
        if self.fail:
            raise ExecutionRejected("not enough balance")
        return {"orderId": f"order-{len(self.sides)}"}
