# src/copytrader/exchanges/polymarket/clob.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from py_clob_client.client import ClobClient
from py_clob_client.clob_types import OrderArgs, OrderType

from src.copytrader.core.errors import ExecutionRejected, ExecutionTransportError
from src.copytrader.exchanges.base.exchange import ExecutionBoundary

CLOB_HOST = "https://clob.polymarket.com"
POLYGON_CHAIN_ID = 137

# lower-cased fragments of non-retryable rejections
_REJECT_MARKERS = (
    "insufficient balance",
    "insufficient allowance",
    "not enough balance",
    "invalid order",
    "malformed",
    "tick size",
)


def is_rejection(message: str) -> bool:
    m = (message or "").lower()
    return any(marker in m for marker in _REJECT_MARKERS)


def categorize(err: Exception) -> Exception:
    if isinstance(err, (ExecutionRejected, ExecutionTransportError)):
        return err
    msg = str(err) or type(err).__name__
    if is_rejection(msg):
        return ExecutionRejected(msg)
    return ExecutionTransportError(msg)


class ClobExecutionBoundary(ExecutionBoundary):
    """
    Polymarket CLOB order placement (limit GTC at the source's price).

    Responsibilities:
      ✔ one-time API credential derivation
      ✔ order signing + posting
      ✔ rejection vs transport fault categorization
      ❌ no retries (ExecutionEngine owns them)
    """

    name = "polymarket_clob"

    def __init__(
        self,
        *,
        private_key: str = "",
        host: str = CLOB_HOST,
        chain_id: int = POLYGON_CHAIN_ID,
        client: Any | None = None,
        logger: logging.Logger | None = None,
    ):
        self.logger = logger or logging.getLogger(__name__)
        self.host = host or CLOB_HOST
        self.chain_id = int(chain_id)
        self._client = client if client is not None else ClobClient(
            self.host, key=private_key, chain_id=self.chain_id,
        )
        self._initialized = False

    def initialize(self) -> None:
        if self._initialized:
            return
        try:
            creds = self._client.create_or_derive_api_creds()
            self._client.set_api_creds(creds)
        except Exception as e:
            raise ExecutionRejected(f"CLOB credential derivation failed: {e}") from e
        self._initialized = True
        self.logger.info("[EXEC] CLOB client initialized host=%s chain_id=%d", self.host, self.chain_id)

    def wallet_address(self) -> str:
        """Signer address derived from the private key."""
        return str(self._client.get_address() or "")

    def submit(
        self,
        *,
        token_id: str,
        side: str,
        price: Decimal,
        quantity: Decimal,
        client_id: str,
    ) -> dict:
        self.initialize()

        args = OrderArgs(
            token_id=str(token_id),
            price=float(price),
            size=float(quantity),
            side=str(side).upper(),
        )

        try:
            signed = self._client.create_order(args)
            resp = self._client.post_order(signed, OrderType.GTC)
        except Exception as e:
            raise categorize(e) from e

        resp = resp if isinstance(resp, dict) else {}
        order_id = resp.get("orderID") or resp.get("orderId") or resp.get("id")

        if not order_id:
            msg = str(resp.get("errorMsg") or "order was not accepted")
            if resp.get("success") is False or is_rejection(msg):
                raise ExecutionRejected(msg)
            raise ExecutionTransportError(msg)

        self.logger.info(
            "[EXEC] order posted: client_id=%s token=%s side=%s size=%s price=%s order_id=%s",
            client_id, token_id, side, quantity, price, order_id,
        )
        return {"orderId": str(order_id), "status": resp.get("status")}
