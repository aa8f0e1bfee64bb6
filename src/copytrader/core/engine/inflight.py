# src/copytrader/core/engine/inflight.py
from __future__ import annotations

import threading
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from src.copytrader.core.models.enums import ActionSide


class CloseReservation(str, Enum):
    RESERVED = "RESERVED"
    DEFERRED = "DEFERRED"
    NOT_HELD = "NOT_HELD"


class InFlightRegistry:
    """
    Per-source memory of positions opened by this service and not yet closed.

    Only atomic operations are exposed:
      - try_reserve_open / reserve_close: check-and-mark under one lock
      - settle: clear the reservation and apply the execution result

    A reservation blocks any second action for the same (source, id) until
    the first one settles, so two concurrent OPENED events for one id can
    never both reach the execution engine.

    A close that arrives while the open is still pending is parked and
    handed back by settle() once the open lands.
    """

    def __init__(self, sources: Iterable[str] = ()) -> None:
        self._lock = threading.Lock()
        self._open: Dict[str, set[str]] = {}
        self._pending: Dict[str, Dict[str, ActionSide]] = {}
        self._deferred: Dict[str, Dict[str, Any]] = {}
        for s in sources:
            self.register_source(s)

    def register_source(self, source: str) -> None:
        with self._lock:
            self._open.setdefault(source, set())
            self._pending.setdefault(source, {})
            self._deferred.setdefault(source, {})

    # ------------------------------------------------------------------
    # atomic check-and-reserve
    # ------------------------------------------------------------------
    def try_reserve_open(self, source: str, position_id: str) -> bool:
        with self._lock:
            opened = self._open.setdefault(source, set())
            pending = self._pending.setdefault(source, {})
            if position_id in opened or position_id in pending:
                return False
            pending[position_id] = ActionSide.OPEN
            return True

    def reserve_close(self, source: str, position_id: str, *, deferred: Any = None) -> CloseReservation:
        """
        RESERVED -> position is held and idle, the caller owns the close
        DEFERRED -> open still pending, `deferred` comes back from its settle()
        NOT_HELD -> nothing to close
        """
        with self._lock:
            opened = self._open.setdefault(source, set())
            pending = self._pending.setdefault(source, {})
            side = pending.get(position_id)
            if side is None and position_id in opened:
                pending[position_id] = ActionSide.CLOSE
                return CloseReservation.RESERVED
            if side == ActionSide.OPEN and deferred is not None:
                self._deferred.setdefault(source, {})[position_id] = deferred
                return CloseReservation.DEFERRED
            return CloseReservation.NOT_HELD

    def try_reserve_close(self, source: str, position_id: str) -> bool:
        return self.reserve_close(source, position_id) == CloseReservation.RESERVED

    def settle(self, source: str, position_id: str, side: ActionSide, *, held: bool | None) -> Optional[Any]:
        """
        Release the reservation.

        held=True  -> position is ours (add)
        held=False -> position is gone (remove)
        held=None  -> unchanged (failed action)

        Returns the parked close when the open landed; the close reservation
        is then already taken for the caller.
        """
        with self._lock:
            pending = self._pending.setdefault(source, {})
            pending.pop(position_id, None)
            parked = self._deferred.setdefault(source, {}).pop(position_id, None)
            opened = self._open.setdefault(source, set())
            if held is True:
                opened.add(position_id)
            elif held is False:
                opened.discard(position_id)

            if parked is not None and side == ActionSide.OPEN and position_id in opened:
                pending[position_id] = ActionSide.CLOSE
                return parked
            return None

    # ------------------------------------------------------------------
    # read-only
    # ------------------------------------------------------------------
    def contains(self, source: str, position_id: str) -> bool:
        with self._lock:
            return position_id in self._open.get(source, ())

    def is_pending(self, source: str, position_id: str) -> bool:
        with self._lock:
            return position_id in self._pending.get(source, {})

    def has_deferred_close(self, source: str, position_id: str) -> bool:
        with self._lock:
            return position_id in self._deferred.get(source, {})

    def ids(self, source: str) -> frozenset[str]:
        with self._lock:
            return frozenset(self._open.get(source, ()))

    def active_count(self) -> int:
        with self._lock:
            return sum(len(v) for v in self._open.values())

    def sources(self) -> list[str]:
        with self._lock:
            return list(self._open.keys())
