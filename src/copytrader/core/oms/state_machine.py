# src/copytrader/core/oms/state_machine.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ActionState(str, Enum):
    RECEIVED = "RECEIVED"
    DUPLICATE_CHECKED = "DUPLICATE_CHECKED"
    VALIDATED = "VALIDATED"
    SUBMITTED = "SUBMITTED"
    RETRY_PENDING = "RETRY_PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


TERMINAL: set[ActionState] = {ActionState.SUCCESS, ActionState.FAILED, ActionState.SKIPPED}

_TRANSITIONS: dict[ActionState, set[ActionState]] = {
    ActionState.RECEIVED: {ActionState.DUPLICATE_CHECKED, ActionState.FAILED},
    ActionState.DUPLICATE_CHECKED: {ActionState.SKIPPED, ActionState.VALIDATED},
    # dry run: VALIDATED -> SUCCESS without submission
    ActionState.VALIDATED: {ActionState.SUBMITTED, ActionState.SUCCESS, ActionState.FAILED},
    ActionState.SUBMITTED: {ActionState.SUCCESS, ActionState.RETRY_PENDING, ActionState.FAILED},
    ActionState.RETRY_PENDING: {ActionState.SUBMITTED, ActionState.FAILED},
}


@dataclass(frozen=True)
class Decision:
    allow: bool
    reason: str = ""


def should_apply(current: ActionState, incoming: ActionState) -> Decision:
    """
    Allow only forward transitions of the per-action lifecycle.
    - terminal state never changes
    - otherwise the edge must exist in _TRANSITIONS
    """
    if current in TERMINAL:
        return Decision(False, f"terminal state is final: {current.value} -> {incoming.value}")

    if incoming not in _TRANSITIONS.get(current, set()):
        return Decision(False, f"illegal transition: {current.value} -> {incoming.value}")

    return Decision(True, "ok")


class IllegalTransition(RuntimeError):
    pass


@dataclass
class ActionLifecycle:
    """Tracks one candidate action through the execution state machine."""

    action_id: str
    max_retries: int = 0
    state: ActionState = ActionState.RECEIVED
    submissions: int = 0
    retries: int = 0
    history: list[ActionState] = field(default_factory=lambda: [ActionState.RECEIVED])

    def advance(self, to: ActionState) -> None:
        d = should_apply(self.state, to)
        if not d.allow:
            raise IllegalTransition(f"[{self.action_id}] {d.reason}")

        if to == ActionState.SUBMITTED:
            self.submissions += 1
        elif to == ActionState.RETRY_PENDING:
            if self.retries >= self.max_retries:
                raise IllegalTransition(
                    f"[{self.action_id}] retry bound reached ({self.max_retries})"
                )
            self.retries += 1

        self.state = to
        self.history.append(to)

    def can_retry(self) -> bool:
        return self.state == ActionState.SUBMITTED and self.retries < self.max_retries

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL
