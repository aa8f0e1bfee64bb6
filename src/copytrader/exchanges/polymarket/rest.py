# src/copytrader/exchanges/polymarket/rest.py
from __future__ import annotations

import logging
import time
from typing import Any

import requests

DATA_API_URL = "https://data-api.polymarket.com"

PAGE_LIMIT = 100
MAX_PAGES = 10

log = logging.getLogger("src.copytrader.exchanges.polymarket.rest")


class DataAPIHTTPError(RuntimeError):
    def __init__(self, status_code: int, message: str):
        self.status_code = int(status_code)
        super().__init__(message)


def _unwrap(payload: Any) -> list[Any]:
    """Tolerated envelopes: bare list, {"positions": [...]}, {"data": [...]}."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("positions", "data"):
            items = payload.get(key)
            if isinstance(items, list):
                return items
    return []


class PolymarketDataREST:
    """
    Polymarket data API client (public reads), with retry/backoff for 429/5xx.
    """

    def __init__(
        self,
        *,
        base_url: str = DATA_API_URL,
        api_key: str = "",
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        sleep=time.sleep,
    ):
        self.base_url = (base_url or DATA_API_URL).rstrip("/")
        self.api_key = api_key or ""

        self.timeout = float(timeout)
        self.max_retries = max(1, int(max_retries))
        self.backoff_base = float(backoff_base)
        self._sleep = sleep

        self.sess = requests.Session()
        self.sess.headers.update({"Accept": "application/json"})
        if self.api_key:
            self.sess.headers.update({"Authorization": f"Bearer {self.api_key}"})

    # ---------------------------------------------------------------------
    # CORE REQUEST (WITH BACKOFF)
    # ---------------------------------------------------------------------

    def _request(self, path: str, *, params: dict[str, Any] | None = None) -> Any:
        url = f"{self.base_url}{path}"
        last_err: Exception | None = None

        for attempt in range(1, self.max_retries + 1):
            try:
                r = self.sess.get(url, params=dict(params or {}), timeout=self.timeout)
            except requests.RequestException as e:
                last_err = e
                sleep = self.backoff_base * attempt
                log.warning(
                    "Data API request error (GET %s), retry %d/%d, sleep %.1fs | %r",
                    path, attempt, self.max_retries, sleep, e,
                )
                if attempt < self.max_retries:
                    self._sleep(sleep)
                continue

            # --- RATE LIMIT / TEMP SERVER ERRORS ---
            if r.status_code == 429 or r.status_code >= 500:
                last_err = DataAPIHTTPError(r.status_code, f"Data API HTTP {r.status_code} GET {path}")
                sleep = self.backoff_base * attempt
                log.warning(
                    "Data API %d (GET %s), retry %d/%d, sleep %.1fs",
                    r.status_code, path, attempt, self.max_retries, sleep,
                )
                if attempt < self.max_retries:
                    self._sleep(sleep)
                continue

            # --- OTHER ERRORS ---
            if r.status_code >= 400:
                raise DataAPIHTTPError(
                    r.status_code,
                    f"Data API HTTP {r.status_code} GET {path}: {r.text[:500]}",
                )

            # --- OK ---
            if not r.text:
                return []
            return r.json()

        raise RuntimeError(f"Data API request failed after retries: GET {path}") from last_err

    # ---------------------------------------------------------------------
    # POSITIONS
    # ---------------------------------------------------------------------

    def _paginate(self, path: str, base_params: dict[str, Any]) -> list[Any]:
        out: list[Any] = []
        for page in range(MAX_PAGES):
            params = dict(base_params)
            params.update({"limit": PAGE_LIMIT, "offset": page * PAGE_LIMIT})
            items = _unwrap(self._request(path, params=params))
            out.extend(items)
            if len(items) < PAGE_LIMIT:
                break
        return out

    def user_positions(self, address: str) -> list[Any]:
        """
        Raw open positions of one address.
        The alternative route is tried when the primary one fails; a 404 from
        either route means "no positions".
        """
        addr = str(address).strip()

        primary_404 = False
        try:
            return self._paginate(f"/users/{addr}/positions", {"active": "true"})
        except Exception as e:
            primary_404 = isinstance(e, DataAPIHTTPError) and e.status_code == 404
            log.debug("Data API primary route failed for %s, trying /positions | %r", addr, e)

        try:
            return self._paginate("/positions", {"user": addr, "active": "true"})
        except DataAPIHTTPError as e:
            if primary_404 or e.status_code == 404:
                return []
            raise
        except Exception:
            if primary_404:
                return []
            raise
