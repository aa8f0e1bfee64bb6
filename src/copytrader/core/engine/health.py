# src/copytrader/core/engine/health.py
from __future__ import annotations

import threading
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, Optional


MAX_ERRORS = 20
DEGRADED_AFTER = 5
UNHEALTHY_AFTER = 10


class HealthTracker:
    """
    Read-only health view for an external metrics surface.

    Keeps the last MAX_ERRORS error messages and merges them with the
    orchestrator stats accessor on demand.
    """

    def __init__(self, *, stats_provider: Optional[Callable[[], Dict[str, Any]]] = None):
        self.stats_provider = stats_provider
        self._started = time.monotonic()
        self._errors: Deque[Dict[str, str]] = deque(maxlen=MAX_ERRORS)
        self._lock = threading.Lock()

    def add_error(self, message: str) -> None:
        with self._lock:
            self._errors.append({
                "message": str(message),
                "timestamp": datetime.now(tz=timezone.utc).isoformat(),
            })

    def status(self) -> str:
        with self._lock:
            n = len(self._errors)
        if n > UNHEALTHY_AFTER:
            return "unhealthy"
        if n > DEGRADED_AFTER:
            return "degraded"
        return "healthy"

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            errors = list(self._errors)

        return {
            "status": self.status(),
            "uptime": int(time.monotonic() - self._started),
            "errors": errors,
            "copy_trading": self.stats_provider() if self.stats_provider else None,
        }
