# src/copytrader/core/models/events.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from src.copytrader.core.models.enums import ChangeKind
from src.copytrader.core.models.position import Position, utcnow


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    kind: ChangeKind
    position: Position
    source: str
    detected_at: datetime = field(default_factory=utcnow)

    # RESIZED only: the position as it was in the previous snapshot
    previous: Optional[Position] = None

    @property
    def position_id(self) -> str:
        return self.position.id

    def __repr__(self) -> str:
        return (
            f"ChangeEvent({self.kind.value} source={self.source} "
            f"id={self.position.id} qty={self.position.quantity})"
        )
