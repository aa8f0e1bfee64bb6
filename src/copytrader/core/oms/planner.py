# src/copytrader/core/oms/planner.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from src.copytrader.core.errors import ValidationError
from src.copytrader.core.models.action import CandidateAction
from src.copytrader.core.models.enums import ActionSide, ChangeKind, ValidationReason
from src.copytrader.core.models.events import ChangeEvent
from src.copytrader.core.risk.risk_engine import RiskEngine


_SIDE_BY_KIND = {
    ChangeKind.OPENED: ActionSide.OPEN,
    ChangeKind.CLOSED: ActionSide.CLOSE,
}


class ActionPlanner:
    """
    ChangeEvent -> CandidateAction.

      OPENED  -> OPEN  (scaled, validated by RiskEngine)
      CLOSED  -> CLOSE (scaled, never limited)
      RESIZED -> None  (detected but not traded)
    """

    def __init__(self, *, risk: RiskEngine, logger: logging.Logger | None = None) -> None:
        self.risk = risk
        self.logger = logger or logging.getLogger(__name__)

    @property
    def multiplier(self) -> Decimal:
        return self.risk.multiplier

    def plan(self, event: ChangeEvent) -> Optional[CandidateAction]:
        """
        Returns a validated CandidateAction, or None for non-tradeable events.
        Raises ValidationError when an OPEN breaks a limit.
        """
        side = _SIDE_BY_KIND.get(event.kind)
        if side is None:
            self.logger.debug(
                "[PLAN] %s not traded: source=%s id=%s",
                event.kind.value, event.source, event.position_id,
            )
            return None

        pos = event.position
        if not pos.id:
            raise ValidationError(ValidationReason.MISSING_TOKEN, "position id (token id) is missing")

        action = CandidateAction(
            side=side,
            source=event.source,
            position=pos,
            quantity=pos.quantity * self.multiplier,
            price=pos.price,
        )

        decision = self.risk.allow_action(action)
        if not decision.allow:
            assert decision.reason is not None
            raise ValidationError(decision.reason, decision.detail)

        self.logger.debug("[PLAN] planned %r", action)
        return action
