"""In-flight registry: atomic reserve / settle."""

import threading

from src.copytrader.core.engine.inflight import CloseReservation, InFlightRegistry
from src.copytrader.core.models.enums import ActionSide


class TestReserve:
    def test_open_once(self) -> None:
        reg = InFlightRegistry(["s"])

        assert reg.try_reserve_open("s", "p")
        assert not reg.try_reserve_open("s", "p")

    def test_close_requires_held_position(self) -> None:
        reg = InFlightRegistry(["s"])

        assert not reg.try_reserve_close("s", "p")

        reg.try_reserve_open("s", "p")
        reg.settle("s", "p", ActionSide.OPEN, held=True)

        assert reg.try_reserve_close("s", "p")
        reg.settle("s", "p", ActionSide.CLOSE, held=False)
        assert reg.ids("s") == frozenset()

    def test_failed_open_releases_reservation(self) -> None:
        reg = InFlightRegistry(["s"])
        reg.try_reserve_open("s", "p")
        reg.settle("s", "p", ActionSide.OPEN, held=None)

        assert not reg.contains("s", "p")
        assert reg.try_reserve_open("s", "p")

    def test_failed_close_keeps_position(self) -> None:
        reg = InFlightRegistry(["s"])
        reg.try_reserve_open("s", "p")
        reg.settle("s", "p", ActionSide.OPEN, held=True)
        reg.try_reserve_close("s", "p")
        reg.settle("s", "p", ActionSide.CLOSE, held=None)

        assert reg.contains("s", "p")
        assert not reg.is_pending("s", "p")

    def test_sources_are_independent(self) -> None:
        reg = InFlightRegistry(["a", "b"])

        assert reg.try_reserve_open("a", "p")
        assert reg.try_reserve_open("b", "p")

    def test_concurrent_reserve_admits_exactly_one(self) -> None:
        reg = InFlightRegistry(["s"])
        barrier = threading.Barrier(16)
        wins = []

        def worker() -> None:
            barrier.wait()
            if reg.try_reserve_open("s", "p"):
                wins.append(1)

        threads = [threading.Thread(target=worker) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(wins) == 1

    def test_active_count(self) -> None:
        reg = InFlightRegistry(["a", "b"])
        for s, p in (("a", "1"), ("a", "2"), ("b", "1")):
            reg.try_reserve_open(s, p)
            reg.settle(s, p, ActionSide.OPEN, held=True)

        assert reg.active_count() == 3


class TestDeferredClose:
    def test_close_behind_pending_open_is_parked(self) -> None:
        reg = InFlightRegistry(["s"])
        reg.try_reserve_open("s", "p")

        assert reg.reserve_close("s", "p", deferred="close-p") == CloseReservation.DEFERRED
        assert reg.has_deferred_close("s", "p")

    def test_open_success_hands_back_close_with_reservation(self) -> None:
        reg = InFlightRegistry(["s"])
        reg.try_reserve_open("s", "p")
        reg.reserve_close("s", "p", deferred="close-p")

        assert reg.settle("s", "p", ActionSide.OPEN, held=True) == "close-p"
        assert reg.is_pending("s", "p")
        assert not reg.try_reserve_open("s", "p")

        assert reg.settle("s", "p", ActionSide.CLOSE, held=False) is None
        assert reg.ids("s") == frozenset()

    def test_open_failure_discards_parked_close(self) -> None:
        reg = InFlightRegistry(["s"])
        reg.try_reserve_open("s", "p")
        reg.reserve_close("s", "p", deferred="close-p")

        assert reg.settle("s", "p", ActionSide.OPEN, held=None) is None
        assert not reg.has_deferred_close("s", "p")
        assert not reg.is_pending("s", "p")

    def test_close_without_deferral_target_is_not_held(self) -> None:
        reg = InFlightRegistry(["s"])
        reg.try_reserve_open("s", "p")

        assert reg.reserve_close("s", "p") == CloseReservation.NOT_HELD
        assert not reg.try_reserve_close("s", "p")

    def test_second_close_while_closing_is_not_held(self) -> None:
        reg = InFlightRegistry(["s"])
        reg.try_reserve_open("s", "p")
        reg.settle("s", "p", ActionSide.OPEN, held=True)

        assert reg.reserve_close("s", "p", deferred="c1") == CloseReservation.RESERVED
        assert reg.reserve_close("s", "p", deferred="c2") == CloseReservation.NOT_HELD
