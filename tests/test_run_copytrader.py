"""Entrypoint helpers: store connection fallback and callback fan-out."""

import logging
from unittest.mock import MagicMock, patch

from src.copytrader.config import CopyTraderConfig
from src.copytrader.run_copytrader import _connect_storage, _fanout

log = logging.getLogger("test")


class TestConnectStorage:
    def test_no_dsn_runs_in_memory(self) -> None:
        assert _connect_storage(CopyTraderConfig(sources=["0xa"]), log) == (None, None)

    def test_failed_wait_closes_pool(self) -> None:
        pool = MagicMock()
        pool.wait.side_effect = TimeoutError("no server")

        with patch("src.copytrader.data.storage.postgres.pool.create_pool", return_value=pool):
            out = _connect_storage(CopyTraderConfig(sources=["0xa"], pg_dsn="postgresql://x"), log)

        assert out == (None, None)
        pool.close.assert_called_once()

    def test_connected_pool_is_returned_open(self) -> None:
        pool = MagicMock()

        with patch("src.copytrader.data.storage.postgres.pool.create_pool", return_value=pool):
            got_pool, storage = _connect_storage(
                CopyTraderConfig(sources=["0xa"], pg_dsn="postgresql://x"), log,
            )

        assert got_pool is pool
        assert storage is not None
        pool.close.assert_not_called()


class TestFanout:
    def test_calls_every_callback(self) -> None:
        a, b = MagicMock(), MagicMock()

        _fanout(a, None, b)("rec")

        a.assert_called_once_with("rec")
        b.assert_called_once_with("rec")

    def test_nothing_to_call(self) -> None:
        assert _fanout(None, None) is None
