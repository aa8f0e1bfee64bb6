# src/copytrader/exchanges/polymarket/normalize.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable

from src.copytrader.core.models.position import Market, Position, utcnow
from src.copytrader.core.utils.numbers import to_decimal

log = logging.getLogger("src.copytrader.exchanges.polymarket.normalize")

ZERO = Decimal("0")


def _first(raw: dict, *keys: str, default: Any = "") -> Any:
    for k in keys:
        v = raw.get(k)
        if v is not None and v != "":
            return v
    return default


def _dec(raw: dict, key: str) -> Decimal:
    return to_decimal(raw.get(key), ZERO)


def norm_timestamp(v: Any) -> datetime:
    """Epoch seconds, ISO-8601 string, or now."""
    if v is None or v == "":
        return utcnow()
    if isinstance(v, (int, float, Decimal)) and not isinstance(v, bool):
        try:
            return datetime.fromtimestamp(float(v), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return utcnow()
    s = str(v).strip()
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return utcnow()
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def norm_market(raw: dict) -> Market:
    return Market(
        id=str(_first(raw, "conditionId", "market_id", "marketId")),
        question=str(_first(raw, "title", "question", default="Unknown Market")),
        slug=str(raw.get("slug") or ""),
        icon=str(raw.get("icon") or ""),
        event_slug=str(raw.get("eventSlug") or ""),
        end_date=str(raw.get("endDate") or ""),
    )


def _display_price(raw: dict) -> Decimal:
    for key in ("curPrice", "currentPrice", "avgPrice", "price"):
        px = _dec(raw, key)
        if px > 0:
            return px
    return ZERO


def _value(raw: dict, quantity: Decimal) -> Decimal:
    size = _dec(raw, "size")
    cur_price = _dec(raw, "curPrice")
    avg_price = _dec(raw, "avgPrice")

    current_value = _dec(raw, "currentValue")
    if current_value != 0:
        return current_value
    if size > 0 and cur_price > 0:
        return size * cur_price

    initial_value = _dec(raw, "initialValue")
    if initial_value > 0:
        return initial_value
    if size > 0 and avg_price > 0:
        return size * avg_price

    px = to_decimal(_first(raw, "price", "lastPrice", default=None), ZERO)
    if quantity > 0 and px > 0:
        return quantity * px
    return ZERO


def _initial_value(raw: dict) -> Decimal | None:
    if raw.get("initialValue") not in (None, ""):
        return to_decimal(raw.get("initialValue"), None)
    size = _dec(raw, "size")
    avg_price = _dec(raw, "avgPrice")
    if size > 0 and avg_price > 0:
        return size * avg_price
    return None


def norm_position(raw: dict | None) -> Position | None:
    if not raw or not isinstance(raw, dict):
        return None

    pid = str(_first(raw, "asset", "id", "positionId")).strip()
    if not pid:
        log.warning(
            "[NORM] position without identifier dropped: market=%s outcome=%s",
            _first(raw, "title", "question", default="?"), raw.get("outcome", "?"),
        )
        return None

    quantity = to_decimal(_first(raw, "size", "quantity", default="0"), ZERO)

    return Position(
        id=pid,
        market=norm_market(raw),
        outcome=str(_first(raw, "outcome", "outcomeToken")),
        quantity=quantity,
        price=_display_price(raw),
        value=_value(raw, quantity),
        initial_value=_initial_value(raw),
        timestamp=norm_timestamp(raw.get("timestamp")),
    )


def norm_positions(items: Iterable[Any]) -> list[Position]:
    out: list[Position] = []
    for raw in items or ():
        p = norm_position(raw)
        if p is not None:
            out.append(p)
    return out
