# src/copytrader/run_copytrader.py
from __future__ import annotations

import logging
import signal
import threading
import time
from typing import Any, Callable, List, Optional

from dotenv import load_dotenv

from src.copytrader.config import CopyTraderConfig, load_config
from src.copytrader.core.engine.health import HealthTracker
from src.copytrader.core.engine.orchestrator import CopyTradingOrchestrator
from src.copytrader.core.errors import ConfigError, ExecutionRejected
from src.copytrader.core.models.events import ChangeEvent
from src.copytrader.core.oms.executor import ExecutionEngine
from src.copytrader.core.oms.planner import ActionPlanner
from src.copytrader.core.risk.risk_engine import RiskEngine
from src.copytrader.data.retention.retention_worker import RetentionWorker
from src.copytrader.data.storage.base import Storage
from src.copytrader.exchanges.base.exchange import ExecutionBoundary
from src.copytrader.exchanges.polymarket.clob import ClobExecutionBoundary
from src.copytrader.exchanges.polymarket.fetcher import PolymarketSnapshotFetcher
from src.copytrader.exchanges.polymarket.rest import PolymarketDataREST
from src.copytrader.market_state.poller import PollerGroup
from src.copytrader.notifications.telegram import TelegramNotifier, target_from_config

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
HEARTBEAT_SEC = 60.0


# -----------------------------------------------------------------------------
# helpers
# -----------------------------------------------------------------------------
def setup_logging(cfg: CopyTraderConfig) -> None:
    level = logging.DEBUG if cfg.debug else getattr(logging, cfg.log_level, logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # requests / urllib3 chatter
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def _fanout(*callbacks: Optional[Callable[..., Any]]) -> Optional[Callable[..., None]]:
    cbs = [cb for cb in callbacks if cb is not None]
    if not cbs:
        return None

    def _call(*args: Any) -> None:
        for cb in cbs:
            cb(*args)

    return _call


def _connect_storage(cfg: CopyTraderConfig, logger: logging.Logger):
    """(pool, storage) or (None, None); a failed connect continues in memory."""
    if not cfg.pg_dsn:
        logger.warning("PG_DSN not set -> no durable store (in-memory dedup only)")
        return None, None

    from src.copytrader.data.storage.postgres.pool import create_pool
    from src.copytrader.data.storage.postgres.storage import PostgreSQLStorage

    pool = None
    try:
        pool = create_pool(cfg.pg_dsn)
        pool.wait(timeout=10.0)
    except Exception as e:
        logger.warning("PostgreSQL unavailable (%s) -> continue without durable store", e)
        if pool is not None:
            pool.close()
        return None, None

    logger.info("PostgreSQL storage initialized")
    return pool, PostgreSQLStorage(pool)


def _build_boundary(cfg: CopyTraderConfig, logger: logging.Logger) -> Optional[ExecutionBoundary]:
    if not cfg.private_key:
        if cfg.live_trading:
            raise ConfigError(["PRIVATE_KEY is required for live trading"])
        logger.warning("PRIVATE_KEY not set -> dry run without execution boundary")
        return None

    boundary = ClobExecutionBoundary(
        private_key=cfg.private_key,
        host=cfg.clob_host,
        chain_id=cfg.chain_id,
    )
    try:
        boundary.initialize()
    except ExecutionRejected:
        if cfg.live_trading:
            raise
        logger.exception("CLOB initialization failed (dry run -> continue)")
    return boundary


# -----------------------------------------------------------------------------
# main
# -----------------------------------------------------------------------------
def main() -> None:
    # -------------------------------------------------------------------------
    # ENV (.env first) + CONFIG
    # -------------------------------------------------------------------------
    load_dotenv()

    try:
        cfg = load_config()
    except ConfigError as e:
        raise SystemExit(str(e))

    setup_logging(cfg)
    logger = logging.getLogger("src.copytrader.run_copytrader")

    logger.info("=== COPY TRADER START ===")
    logger.info(
        "sources=%d enabled=%s dry_run=%s poll=%.2fs multiplier=%s limits=[%s..%s] max_position=%s",
        len(cfg.sources), cfg.enabled, cfg.dry_run, cfg.poll_interval_sec,
        cfg.position_size_multiplier, cfg.min_trade_size, cfg.max_trade_size, cfg.max_position_size,
    )
    if cfg.enabled and cfg.dry_run:
        logger.warning("DRY_RUN enabled -> no real orders are placed")

    stop_event = threading.Event()

    def _sig_handler(signum, _frame):
        logger.warning("Signal %s -> stopping...", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _sig_handler)
    signal.signal(signal.SIGTERM, _sig_handler)

    # -------------------------------------------------------------------------
    # SOURCE SIDE
    # -------------------------------------------------------------------------
    rest = PolymarketDataREST(base_url=cfg.data_api_url, api_key=cfg.polymarket_api_key)
    fetcher = PolymarketSnapshotFetcher(rest)

    pool = None
    storage: Optional[Storage] = None
    rw: Optional[RetentionWorker] = None
    orch: Optional[CopyTradingOrchestrator] = None
    pollers: Optional[PollerGroup] = None
    health = HealthTracker()

    try:
        if cfg.enabled:
            pool, storage = _connect_storage(cfg, logger)
            try:
                boundary = _build_boundary(cfg, logger)
            except (ConfigError, ExecutionRejected) as e:
                raise SystemExit(f"Execution boundary unavailable: {e}")

            engine = ExecutionEngine(
                boundary=boundary,
                storage=storage,
                dry_run=cfg.dry_run,
                max_retry_attempts=cfg.max_retry_attempts,
                retry_delay_sec=cfg.retry_delay_sec,
            )
            planner = ActionPlanner(
                risk=RiskEngine(cfg.trade_limits(), position_size_multiplier=cfg.position_size_multiplier),
            )

            tg = target_from_config(cfg.telegram_bot_token, cfg.telegram_chat_id)
            notifier = TelegramNotifier(tg) if tg is not None else None

            orch = CopyTradingOrchestrator(
                planner=planner,
                engine=engine,
                sources=cfg.sources,
                enabled=True,
                on_trade_executed=notifier.on_trade_executed if notifier else None,
                on_trade_error=_fanout(
                    lambda rec: health.add_error(f"trade failed {rec.position_id}: {rec.error}"),
                    notifier.on_trade_error if notifier else None,
                ),
                on_source_error=lambda err, src: health.add_error(f"{src}: {err}"),
            )
            health.stats_provider = orch.stats
            orch.start()

            if storage is not None:
                rw = RetentionWorker(storage=storage, keep_days=cfg.executions_retention_days)
                rw.start()

            on_changes: Callable[[str, List[ChangeEvent]], object] = orch.on_changes
            on_error = orch.on_error
        else:
            logger.warning("COPY_TRADING_ENABLED=false -> monitor-only mode")

            def on_changes(source: str, events: List[ChangeEvent]) -> None:
                for ev in events:
                    logger.info("[MONITOR] %r", ev)

            def on_error(err: Exception, source: str) -> None:
                health.add_error(f"{source}: {err}")

        pollers = PollerGroup(
            fetcher=fetcher,
            sources=cfg.sources,
            poll_sec=cfg.poll_interval_sec,
            on_changes=on_changes,
            on_error=on_error,
        )
        pollers.start()

        # ---------------------------------------------------------------------
        # main loop + heartbeat
        # ---------------------------------------------------------------------
        last_hb = time.time()
        while not stop_event.is_set():
            stop_event.wait(1.0)
            if time.time() - last_hb >= HEARTBEAT_SEC:
                last_hb = time.time()
                logger.info("[HEARTBEAT] %s", health.snapshot())

    finally:
        stop_event.set()

        # pollers first: no new events reach the orchestrator
        if pollers is not None:
            pollers.stop()

        if orch is not None:
            orch.stop()
            logger.info("Final stats: %s", orch.stats())

        if rw is not None:
            rw.stop()
            rw.join(timeout=5)

        if pool is not None:
            try:
                pool.close()
            except Exception:
                logger.exception("pool close failed (ignored)")

        logger.info("=== COPY TRADER STOP ===")


if __name__ == "__main__":
    main()
