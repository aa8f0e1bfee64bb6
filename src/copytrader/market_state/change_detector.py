# src/copytrader/market_state/change_detector.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from src.copytrader.core.models.enums import ChangeKind
from src.copytrader.core.models.events import ChangeEvent
from src.copytrader.core.models.position import Snapshot, utcnow


RESIZE_ABS_FLOOR = Decimal("1")
RESIZE_REL_THRESHOLD = Decimal("0.01")


def resize_threshold(old_qty: Decimal) -> Decimal:
    return max(RESIZE_ABS_FLOOR, old_qty * RESIZE_REL_THRESHOLD)


def is_significant_resize(old_qty: Decimal, new_qty: Decimal) -> bool:
    """Strictly greater than max(1, 1% of old qty)."""
    return abs(new_qty - old_qty) > resize_threshold(old_qty)


def value_drift(previous: Optional[Snapshot], current: Snapshot) -> Decimal:
    """
    Relative aggregate value change. Informational only, never an event.
    """
    if previous is None:
        return Decimal("0")
    base = max(previous.total_value, Decimal("0.01"))
    return abs(current.total_value - previous.total_value) / base


def detect_changes(
    previous: Optional[Snapshot],
    current: Snapshot,
    *,
    now: Optional[datetime] = None,
) -> List[ChangeEvent]:
    """
    Diff two snapshots of the same source.

    Rules (in order):
      1) no previous       -> every current position is OPENED
      2) new id            -> OPENED
      3) vanished id       -> CLOSED (carries the last known position)
      4) id in both        -> RESIZED only when the qty move is significant
      5) aggregate value drift alone never produces an event
    """
    ts = now or utcnow()
    source = current.source
    events: List[ChangeEvent] = []

    if previous is None:
        for pos in current.positions.values():
            events.append(ChangeEvent(ChangeKind.OPENED, pos, source, ts))
        return events

    if previous.source != current.source:
        raise ValueError(
            f"snapshot source mismatch: {previous.source!r} vs {current.source!r}"
        )

    for pid, pos in current.positions.items():
        old = previous.get(pid)
        if old is None:
            events.append(ChangeEvent(ChangeKind.OPENED, pos, source, ts))
            continue

        if is_significant_resize(old.quantity, pos.quantity):
            events.append(ChangeEvent(ChangeKind.RESIZED, pos, source, ts, previous=old))

    for pid, old in previous.positions.items():
        if pid not in current:
            events.append(ChangeEvent(ChangeKind.CLOSED, old, source, ts))

    return events
