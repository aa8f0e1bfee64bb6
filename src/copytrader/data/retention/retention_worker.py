# src/copytrader/data/retention/retention_worker.py
from __future__ import annotations

import logging
import threading

from src.copytrader.data.storage.base import Storage

logger = logging.getLogger(__name__)


class RetentionWorker(threading.Thread):
    """Prunes execution history older than keep_days every run_sec."""

    def __init__(self, *, storage: Storage, keep_days: int = 30, run_sec: float = 3600.0):
        super().__init__(daemon=True, name="RetentionWorker")
        self.storage = storage
        self.keep_days = int(keep_days)
        self.run_sec = float(run_sec)
        self._stop_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    def run(self) -> None:
        logger.info("[RETENTION] started keep_days=%d every %.0fs", self.keep_days, self.run_sec)
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception as e:
                logger.exception("[RETENTION] error: %s", e)
            if self._stop_event.wait(self.run_sec):
                break
        logger.info("[RETENTION] stopped")

    def run_once(self) -> int:
        n = self.storage.delete_executions_older_than(days=self.keep_days)
        if n:
            logger.info("[RETENTION] deleted %d execution(s) older than %d day(s)", n, self.keep_days)
        return n
