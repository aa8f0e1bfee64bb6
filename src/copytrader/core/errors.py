# src/copytrader/core/errors.py
from __future__ import annotations

from src.copytrader.core.models.enums import ValidationReason


class CopyTraderError(Exception):
    """Base class for all copy-trader errors."""


class ConfigError(CopyTraderError):
    """Unrecoverable startup configuration problem."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        lines = "\n".join(f"  - {e}" for e in self.errors)
        super().__init__(f"Configuration errors:\n{lines}")


class FetchError(CopyTraderError):
    """Transient failure fetching one source's snapshot."""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"fetch failed for {source}: {message}")


class ValidationError(CopyTraderError):
    """Candidate action rejected by trade limits. Never retried."""

    def __init__(self, reason: ValidationReason, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)


class ExecutionTransportError(CopyTraderError):
    """Retryable failure talking to the execution boundary."""


class ExecutionRejected(CopyTraderError):
    """Non-retryable rejection reported by the execution boundary."""


class PersistenceError(CopyTraderError):
    """Durable store failure. Logged by callers, never propagated to results."""
