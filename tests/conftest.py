"""Pytest configuration and shared doubles."""

import threading
from decimal import Decimal
from typing import Callable, Dict, List, Optional

import pytest

from src.copytrader.core.errors import FetchError, PersistenceError
from src.copytrader.core.models.action import ExecutionRecord
from src.copytrader.core.models.enums import ExecutionOutcome
from src.copytrader.core.models.position import Market, Position, Snapshot
from src.copytrader.data.storage.base import Storage
from src.copytrader.exchanges.base.exchange import ExecutionBoundary, SnapshotFetcher


SOURCE = "0xsource"


def build_position(
    pid: str = "tok-1",
    qty: str = "100",
    price: str = "0.5",
    value: Optional[str] = None,
    market_id: str = "cond-1",
    outcome: str = "Yes",
) -> Position:
    q, px = Decimal(qty), Decimal(price)
    return Position(
        id=pid,
        market=Market(id=market_id, question=f"Market {market_id}?"),
        outcome=outcome,
        quantity=q,
        price=px,
        value=Decimal(value) if value is not None else q * px,
    )


class FakeStore(Storage):
    """In-memory store keyed like the real one: (position_id, source, side)."""

    def __init__(self) -> None:
        self.executions: Dict[tuple, ExecutionRecord] = {}
        self.open_positions: Dict[tuple, Position] = {}
        self.closed: List[tuple] = []
        self.fail_reads = False
        self.fail_writes = False
        self._lock = threading.Lock()

    def exec_ddl(self, ddl_sql: str) -> None:
        pass

    def has_successful_execution(self, *, position_id: str, source: str, side: str) -> bool:
        if self.fail_reads:
            raise PersistenceError("store down")
        with self._lock:
            rec = self.executions.get((position_id, source, side))
        return rec is not None and rec.outcome == ExecutionOutcome.SUCCESS

    def save_execution(self, record: ExecutionRecord) -> None:
        if self.fail_writes:
            raise PersistenceError("store down")
        with self._lock:
            old = self.executions.get(record.key)
            if old is not None and old.outcome == ExecutionOutcome.SUCCESS:
                return
            self.executions[record.key] = record

    def delete_executions_older_than(self, *, days: int, dry_run: bool = False) -> int:
        return 0

    def upsert_open_position(self, *, source, position, opened_at) -> None:
        if self.fail_writes:
            raise PersistenceError("store down")
        self.open_positions[(position.id, source)] = position

    def mark_position_closed(self, *, source, position_id, closed_at) -> None:
        if self.fail_writes:
            raise PersistenceError("store down")
        self.open_positions.pop((position_id, source), None)
        self.closed.append((position_id, source))


class FakeBoundary(ExecutionBoundary):
    """
    Scripted execution boundary.
    `script` items are either an Exception (raised) or a dict (returned);
    once exhausted every call succeeds.
    """

    name = "fake"

    def __init__(self, script: Optional[list] = None, delay: float = 0.0) -> None:
        self.script = list(script or [])
        self.calls: List[dict] = []
        self.delay = delay
        self._lock = threading.Lock()

    def submit(self, *, token_id, side, price, quantity, client_id) -> dict:
        with self._lock:
            self.calls.append(
                dict(token_id=token_id, side=side, price=price, quantity=quantity, client_id=client_id)
            )
            n = len(self.calls)
            item = self.script.pop(0) if self.script else None
        if self.delay:
            threading.Event().wait(self.delay)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, dict):
            return item
        return {"orderId": f"order-{n}"}


class FakeFetcher(SnapshotFetcher):
    """Returns queued snapshots per source; an Exception item is raised as FetchError."""

    name = "fake"

    def __init__(self) -> None:
        self.queue: Dict[str, list] = {}
        self.calls: List[str] = []

    def push(self, source: str, item) -> None:
        self.queue.setdefault(source, []).append(item)

    def fetch(self, source: str) -> Snapshot:
        self.calls.append(source)
        items = self.queue.get(source) or []
        if not items:
            return Snapshot.empty(source)
        item = items.pop(0) if len(items) > 1 else items[0]
        if isinstance(item, Exception):
            raise FetchError(source, str(item))
        return item


@pytest.fixture
def make_position() -> Callable[..., Position]:
    return build_position


@pytest.fixture
def make_snapshot() -> Callable[..., Snapshot]:
    def _make(*positions: Position, source: str = SOURCE) -> Snapshot:
        return Snapshot.build(source, positions)

    return _make


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def boundary() -> FakeBoundary:
    return FakeBoundary()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def no_sleep() -> Callable[[float], None]:
    return lambda _s: None


@pytest.fixture
def make_boundary() -> Callable[..., FakeBoundary]:
    return FakeBoundary
