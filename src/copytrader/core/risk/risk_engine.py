# src/copytrader/core/risk/risk_engine.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from src.copytrader.core.models.action import CandidateAction
from src.copytrader.core.models.enums import ActionSide, ValidationReason
from src.copytrader.core.utils.numbers import to_decimal


INFINITY = Decimal("Infinity")


@dataclass(slots=True)
class TradeLimits:
    # notional bounds of a single copied trade
    min_trade_size: Decimal = Decimal("1")
    max_trade_size: Decimal = INFINITY

    # scaled value of the whole source position
    max_position_size: Decimal = INFINITY


@dataclass(frozen=True, slots=True)
class RiskDecision:
    allow: bool
    reason: Optional[ValidationReason] = None
    detail: str = ""


_OK = RiskDecision(True)


class RiskEngine:
    """
    Limits for copied OPEN actions.

    Notes:
      - checks short-circuit on the first failure
      - CLOSE actions are always allowed: reducing risk is never blocked
    """

    def __init__(self, limits: TradeLimits, *, position_size_multiplier: Decimal = Decimal("1")):
        self.limits = limits
        self.multiplier = to_decimal(position_size_multiplier, Decimal("1"))

    def allow_action(self, action: CandidateAction) -> RiskDecision:
        if action.side != ActionSide.OPEN:
            return _OK

        notional = action.notional

        if notional < self.limits.min_trade_size:
            return RiskDecision(
                False,
                ValidationReason.BELOW_MINIMUM,
                f"trade size ${notional:.2f} is below minimum ${self.limits.min_trade_size}",
            )

        if notional > self.limits.max_trade_size:
            return RiskDecision(
                False,
                ValidationReason.ABOVE_MAXIMUM,
                f"trade size ${notional:.2f} exceeds maximum ${self.limits.max_trade_size}",
            )

        position_value = action.position.value * self.multiplier
        if position_value > self.limits.max_position_size:
            return RiskDecision(
                False,
                ValidationReason.POSITION_LIMIT_EXCEEDED,
                f"position size ${position_value:.2f} exceeds maximum ${self.limits.max_position_size}",
            )

        return _OK
