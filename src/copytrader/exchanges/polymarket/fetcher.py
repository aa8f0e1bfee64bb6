# src/copytrader/exchanges/polymarket/fetcher.py
from __future__ import annotations

import logging

from src.copytrader.core.errors import FetchError
from src.copytrader.core.models.position import Snapshot
from src.copytrader.exchanges.base.exchange import SnapshotFetcher
from src.copytrader.exchanges.polymarket.normalize import norm_positions
from src.copytrader.exchanges.polymarket.rest import PolymarketDataREST


class PolymarketSnapshotFetcher(SnapshotFetcher):
    name = "polymarket"

    def __init__(self, rest: PolymarketDataREST, *, logger: logging.Logger | None = None):
        self.rest = rest
        self.logger = logger or logging.getLogger(__name__)

    def fetch(self, source: str) -> Snapshot:
        try:
            raw = self.rest.user_positions(source)
        except Exception as e:
            raise FetchError(source, str(e) or type(e).__name__) from e

        positions = norm_positions(raw)
        if len(positions) != len(raw):
            self.logger.debug(
                "[FETCH] %s: %d raw item(s), %d normalized", source, len(raw), len(positions),
            )
        return Snapshot.build(source, positions)
