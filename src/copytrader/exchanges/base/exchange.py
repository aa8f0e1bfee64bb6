# src/copytrader/exchanges/base/exchange.py
from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Callable

from src.copytrader.core.models.position import Snapshot


# -------- callbacks --------

ErrorCallback = Callable[[Exception, str], None]
SnapshotCallback = Callable[[Snapshot], None]


# -------- source side --------

class SnapshotFetcher(ABC):
    """
    Source snapshot query.
    Implementations normalize provider payloads into Snapshot and raise
    FetchError on transient failure. "Not found" is an empty Snapshot.
    """

    name: str

    @abstractmethod
    def fetch(self, source: str) -> Snapshot:
        ...


# -------- execution side --------

class ExecutionBoundary(ABC):
    """
    External service that places trades.

    submit() raises ExecutionRejected for non-retryable rejections and
    ExecutionTransportError (or any other exception) for retryable faults.
    """

    name: str

    def initialize(self) -> None:
        """One-time authentication (key derivation). Default: nothing to do."""

    @abstractmethod
    def submit(
        self,
        *,
        token_id: str,
        side: str,
        price: Decimal,
        quantity: Decimal,
        client_id: str,
    ) -> dict:
        """Returns {"orderId": ...}."""
        ...
