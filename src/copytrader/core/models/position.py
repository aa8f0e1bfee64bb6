# src/copytrader/core/models/position.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True, slots=True)
class Market:
    id: str
    question: str = "Unknown Market"
    slug: str = ""
    icon: str = ""
    event_slug: str = ""
    end_date: str = ""

    def short_title(self, max_len: int = 50) -> str:
        q = self.question or "Unknown Market"
        return q if len(q) <= max_len else q[: max_len - 3] + "..."


@dataclass(frozen=True, slots=True)
class Position:
    """
    One open position of a source, normalized at the API boundary.

    id is the outcome token id: unique per source + market + outcome.
    """

    id: str
    market: Market
    outcome: str

    quantity: Decimal         # >= 0
    price: Decimal            # unit price used for sizing
    value: Decimal            # best-known current value

    initial_value: Optional[Decimal] = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_row(self, *, source: str) -> Dict[str, Any]:
        return {
            "position_id": str(self.id),
            "source": str(source),
            "market_id": str(self.market.id),
            "outcome": str(self.outcome),
            "quantity": self.quantity,
            "price": self.price,
            "value": self.value,
        }


@dataclass(frozen=True, slots=True)
class Snapshot:
    """
    Full set of a source's open positions at capture time.
    Positions are keyed by id; iteration order carries no meaning.
    """

    source: str
    positions: Mapping[str, Position]
    total_value: Decimal
    captured_at: datetime

    @classmethod
    def build(
        cls,
        source: str,
        positions: Iterable[Position],
        *,
        captured_at: Optional[datetime] = None,
    ) -> "Snapshot":
        by_id: Dict[str, Position] = {}
        for p in positions:
            # a repeated id replaces the earlier entry
            by_id[p.id] = p

        total = sum((p.value for p in by_id.values()), Decimal("0"))

        return cls(
            source=str(source),
            positions=MappingProxyType(by_id),
            total_value=total,
            captured_at=captured_at or utcnow(),
        )

    @classmethod
    def empty(cls, source: str) -> "Snapshot":
        return cls.build(source, [])

    def get(self, position_id: str) -> Optional[Position]:
        return self.positions.get(position_id)

    def ids(self) -> set[str]:
        return set(self.positions.keys())

    def __len__(self) -> int:
        return len(self.positions)

    def __contains__(self, position_id: object) -> bool:
        return position_id in self.positions
