# src/copytrader/market_state/poller.py
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from src.copytrader.core.errors import ConfigError, FetchError
from src.copytrader.core.models.events import ChangeEvent
from src.copytrader.core.models.position import Snapshot
from src.copytrader.exchanges.base.exchange import SnapshotFetcher
from src.copytrader.market_state.change_detector import detect_changes, value_drift


ChangesCallback = Callable[[str, List[ChangeEvent]], object]
ErrorCallback = Callable[[Exception, str], None]
UpdateCallback = Callable[[Snapshot], None]

ACTIVITY_LOG_SEC = 10.0


@dataclass(slots=True)
class SourceStatus:
    source: str
    error_count: int = 0
    last_poll_ts: float = 0.0
    last_snapshot: Optional[Snapshot] = None


class SourceState:
    """
    Last accepted snapshot + counters of one source.
    Survives poller restarts; guarded by its own lock.
    """

    def __init__(self, source: str):
        self.source = source
        self._lock = threading.Lock()
        # serializes fetch -> detect -> accept of this source
        self.cycle = threading.Lock()
        self._last: Optional[Snapshot] = None
        self._errors = 0
        self._last_poll_ts = 0.0
        self._last_activity_log = 0.0

    @property
    def last(self) -> Optional[Snapshot]:
        with self._lock:
            return self._last

    def accept(self, snap: Snapshot) -> None:
        with self._lock:
            self._last = snap
            self._errors = 0
            self._last_poll_ts = time.time()

    def record_error(self) -> int:
        with self._lock:
            self._errors += 1
            return self._errors

    def should_log_activity(self) -> bool:
        now = time.time()
        with self._lock:
            if now - self._last_activity_log >= ACTIVITY_LOG_SEC:
                self._last_activity_log = now
                return True
            return False

    def status(self) -> SourceStatus:
        with self._lock:
            return SourceStatus(
                source=self.source,
                error_count=self._errors,
                last_poll_ts=self._last_poll_ts,
                last_snapshot=self._last,
            )


class SourcePoller(threading.Thread):
    """
    ONE poller per source.

    Cycle: fetch -> detect -> accept -> notify.
      - fetch failure: count, report, keep the last accepted snapshot
      - detector failure: count, report, history untouched
    """

    def __init__(
        self,
        *,
        fetcher: SnapshotFetcher,
        state: SourceState,
        poll_sec: float,
        on_changes: ChangesCallback,
        on_error: Optional[ErrorCallback] = None,
        on_update: Optional[UpdateCallback] = None,
        logger: logging.Logger | None = None,
    ):
        super().__init__(daemon=True, name=f"SourcePoller-{state.source}")
        self.fetcher = fetcher
        self.state = state
        self.source = state.source
        self.poll_sec = float(poll_sec)
        self.on_changes = on_changes
        self.on_error = on_error
        self.on_update = on_update
        self.logger = logger or logging.getLogger(__name__)
        self._stop_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def run(self) -> None:
        self.logger.info("[POLLER] started: %s every %.2fs", self.source, self.poll_sec)

        while not self._stop_event.is_set():
            try:
                self.poll_once()
            except Exception:
                # poll_once reports its own failures; this guards callbacks
                self.logger.exception("[POLLER] unexpected cycle error: %s", self.source)

            if self._stop_event.wait(self.poll_sec):
                break

        self.logger.info("[POLLER] stopped: %s", self.source)

    def poll_once(self) -> List[ChangeEvent]:
        with self.state.cycle:
            try:
                snap = self.fetcher.fetch(self.source)
            except Exception as e:
                err = e if isinstance(e, FetchError) else FetchError(self.source, str(e))
                n = self.state.record_error()
                self.logger.error("[POLLER] fetch failed: %s errors=%d | %s", self.source, n, e)
                self._report(err)
                return []

            prev = self.state.last
            try:
                events = detect_changes(prev, snap)
            except Exception as e:
                n = self.state.record_error()
                self.logger.exception("[POLLER] change detection failed: %s errors=%d", self.source, n)
                self._report(e)
                return []

            self.state.accept(snap)

        if self.state.should_log_activity():
            self.logger.debug("[POLLER] %s positions=%d", self.source, len(snap))

        if prev is not None and events:
            self._log_changes(events)
        elif prev is not None:
            drift = value_drift(prev, snap)
            if drift > 0:
                self.logger.debug("[DETECT] %s value drift %.4f (no position change)", self.source, drift)

        if events or prev is None:
            if self.on_update is not None:
                try:
                    self.on_update(snap)
                except Exception:
                    self.logger.exception("[POLLER] on_update callback error: %s", self.source)

        # stop() observed -> no new work is handed downstream
        if events and not self._stop_event.is_set():
            self.on_changes(self.source, events)

        return events

    def _report(self, err: Exception) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(err, self.source)
        except Exception:
            self.logger.exception("[POLLER] on_error callback error: %s", self.source)

    def _log_changes(self, events: List[ChangeEvent]) -> None:
        counts: Dict[str, int] = {}
        for ev in events:
            counts[ev.kind.value] = counts.get(ev.kind.value, 0) + 1
        self.logger.info("[DETECT] %s changes: %s", self.source, counts)


class PollerGroup:
    """
    Independent pollers for a set of sources.

      start()            one thread per source, first cycle runs immediately
      stop()             halts every cycle; running callbacks may finish
      get_status(src)    one on-demand fetch + normalize, no state change
    """

    def __init__(
        self,
        *,
        fetcher: SnapshotFetcher,
        sources: Iterable[str],
        poll_sec: float,
        on_changes: ChangesCallback,
        on_error: Optional[ErrorCallback] = None,
        on_update: Optional[UpdateCallback] = None,
        logger: logging.Logger | None = None,
    ):
        self.sources = list(dict.fromkeys(str(s) for s in sources))
        if not self.sources:
            raise ConfigError(["at least one source address is required"])

        self.fetcher = fetcher
        self.poll_sec = float(poll_sec)
        self.on_changes = on_changes
        self.on_error = on_error
        self.on_update = on_update
        self.logger = logger or logging.getLogger(__name__)

        self._states: Dict[str, SourceState] = {s: SourceState(s) for s in self.sources}
        self._pollers: Dict[str, SourcePoller] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        with self._lock:
            if self._pollers:
                self.logger.warning("[POLLER] already running")
                return
            for s in self.sources:
                p = self._build_poller(s)
                self._pollers[s] = p
                p.start()

        self.logger.info(
            "[POLLER] monitoring %d source(s), interval=%.2fs",
            len(self.sources), self.poll_sec,
        )

    def stop(self, timeout: float = 10.0) -> None:
        with self._lock:
            pollers = list(self._pollers.values())
            self._pollers = {}

        for p in pollers:
            p.stop()
        for p in pollers:
            p.join(timeout=timeout)

        if pollers:
            self.logger.info("[POLLER] stopped %d poller(s)", len(pollers))

    def is_running(self) -> bool:
        with self._lock:
            return bool(self._pollers)

    def _build_poller(self, source: str) -> SourcePoller:
        return SourcePoller(
            fetcher=self.fetcher,
            state=self._states[source],
            poll_sec=self.poll_sec,
            on_changes=self.on_changes,
            on_error=self.on_error,
            on_update=self.on_update,
            logger=self.logger,
        )

    # ------------------------------------------------------------------
    # on demand
    # ------------------------------------------------------------------
    def get_status(self, source: str) -> Snapshot:
        return self.fetcher.fetch(source)

    def poll_once(self, source: str) -> List[ChangeEvent]:
        """Run one full cycle for a source on the caller's thread."""
        return self._build_poller(source).poll_once()

    def source_status(self, source: str) -> SourceStatus:
        st = self._states.get(source)
        if st is None:
            raise KeyError(source)
        return st.status()

    def last_snapshot(self, source: str) -> Optional[Snapshot]:
        return self.source_status(source).last_snapshot

    def monitored_sources(self) -> List[str]:
        return list(self.sources)
