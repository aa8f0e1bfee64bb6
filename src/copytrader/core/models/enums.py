from __future__ import annotations
from enum import Enum

class ChangeKind(str, Enum):
    OPENED = "OPENED"
    CLOSED = "CLOSED"
    RESIZED = "RESIZED"

class ActionSide(str, Enum):
    OPEN = "OPEN"
    CLOSE = "CLOSE"

    @property
    def order_side(self) -> str:
        # CLOB order side for this action
        return "BUY" if self is ActionSide.OPEN else "SELL"

class ExecutionOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SKIPPED_DUPLICATE = "SKIPPED_DUPLICATE"

class ValidationReason(str, Enum):
    BELOW_MINIMUM = "BELOW_MINIMUM"
    ABOVE_MAXIMUM = "ABOVE_MAXIMUM"
    POSITION_LIMIT_EXCEEDED = "POSITION_LIMIT_EXCEEDED"
    MISSING_TOKEN = "MISSING_TOKEN"
