# src/copytrader/core/engine/worker.py
from __future__ import annotations

import logging
import queue
import threading
from typing import Callable

from src.copytrader.core.models.action import CandidateAction


_STOP = object()


class ExecutionWorker(threading.Thread):
    """
    ONE worker per source.

    Actions of a source run here so retry delays never stall that source's
    polling. Different sources execute in parallel.
    """

    def __init__(
        self,
        *,
        source: str,
        handler: Callable[[CandidateAction], object],
        logger: logging.Logger | None = None,
    ):
        super().__init__(daemon=True, name=f"ExecWorker-{source}")
        self.source = source
        self.handler = handler
        self.logger = logger or logging.getLogger(__name__)
        self._q: "queue.Queue[object]" = queue.Queue()
        self._closed = threading.Event()
        self._lock = threading.Lock()

    def submit(self, action: CandidateAction) -> bool:
        with self._lock:
            if self._closed.is_set():
                return False
            self._q.put(action)
            return True

    def pending(self) -> int:
        return self._q.qsize()

    def stop(self) -> None:
        # queued actions drain before the sentinel
        with self._lock:
            if not self._closed.is_set():
                self._closed.set()
                self._q.put(_STOP)

    def run(self) -> None:
        self.logger.info("[EXEC] worker started: %s", self.source)
        while True:
            item = self._q.get()
            if item is _STOP:
                break
            try:
                self.handler(item)  # type: ignore[arg-type]
            except Exception:
                self.logger.exception("[EXEC] worker handler error: source=%s", self.source)
        self.logger.info("[EXEC] worker stopped: %s", self.source)
