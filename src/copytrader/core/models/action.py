# src/copytrader/core/models/action.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from src.copytrader.core.models.enums import ActionSide, ExecutionOutcome, ValidationReason
from src.copytrader.core.models.position import Position, utcnow
from src.copytrader.core.utils.idempotency import make_action_id


DedupKey = tuple[str, str, str]   # (position_id, source, side)


@dataclass(frozen=True, slots=True)
class CandidateAction:
    """
    CandidateAction: a proposed, not yet executed copy trade.

    This object is:
      • produced by ActionPlanner from a ChangeEvent
      • validated by RiskEngine (OPEN only)
      • deduplicated / submitted by ExecutionEngine
    """

    side: ActionSide
    source: str
    position: Position

    quantity: Decimal        # scaled
    price: Decimal           # reference price

    created_at: datetime = field(default_factory=utcnow)

    @property
    def position_id(self) -> str:
        return self.position.id

    @property
    def notional(self) -> Decimal:
        return self.quantity * self.price

    @property
    def key(self) -> DedupKey:
        return (self.position.id, self.source, self.side.value)

    @property
    def action_id(self) -> str:
        # stable across retries of the same logical action
        return make_action_id(self.position.id, self.source, self.side.value)

    def __repr__(self) -> str:
        return (
            f"CandidateAction({self.side.value} source={self.source} "
            f"id={self.position.id} qty={self.quantity} px={self.price} "
            f"aid={self.action_id})"
        )


@dataclass(frozen=True, slots=True)
class ExecutionRecord:
    action_id: str
    position_id: str
    source: str
    side: ActionSide
    outcome: ExecutionOutcome

    market_id: str = ""
    outcome_label: str = ""

    quantity: Optional[Decimal] = None   # executed, SUCCESS only
    price: Optional[Decimal] = None      # executed, SUCCESS only
    order_id: Optional[str] = None

    retry_count: int = 0
    error: Optional[str] = None
    reason: Optional[ValidationReason] = None

    executed_at: datetime = field(default_factory=utcnow)
    dry_run: bool = False

    # ------------------------------------------------------------------
    # constructors
    # ------------------------------------------------------------------

    @classmethod
    def for_action(
        cls,
        action: CandidateAction,
        outcome: ExecutionOutcome,
        *,
        dry_run: bool,
        retry_count: int = 0,
        order_id: Optional[str] = None,
        error: Optional[str] = None,
        reason: Optional[ValidationReason] = None,
    ) -> "ExecutionRecord":
        ok = outcome == ExecutionOutcome.SUCCESS
        return cls(
            action_id=action.action_id,
            position_id=action.position_id,
            source=action.source,
            side=action.side,
            outcome=outcome,
            market_id=action.position.market.id,
            outcome_label=action.position.outcome,
            quantity=action.quantity if ok else None,
            price=action.price if ok else None,
            order_id=order_id,
            retry_count=int(retry_count),
            error=error,
            reason=reason,
            dry_run=bool(dry_run),
        )

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    @property
    def success(self) -> bool:
        return self.outcome == ExecutionOutcome.SUCCESS

    @property
    def key(self) -> DedupKey:
        return (self.position_id, self.source, self.side.value)

    @property
    def notional(self) -> Decimal:
        if self.quantity is None or self.price is None:
            return Decimal("0")
        return self.quantity * self.price

    def to_row(self) -> Dict[str, Any]:
        return {
            "action_id": self.action_id,
            "position_id": self.position_id,
            "source": self.source,
            "side": self.side.value,
            "outcome": self.outcome.value,
            "market_id": self.market_id,
            "outcome_label": self.outcome_label,
            "quantity": self.quantity,
            "price": self.price,
            "order_id": self.order_id,
            "retry_count": int(self.retry_count),
            "error": self.error,
            "reason": self.reason.value if self.reason else None,
            "executed_at": self.executed_at,
            "dry_run": bool(self.dry_run),
        }
