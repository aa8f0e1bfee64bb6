from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any


def to_decimal(v: Any, default: Decimal | None = Decimal("0")) -> Decimal | None:
    """Lenient Decimal conversion; floats go through str() to avoid binary noise."""
    if v is None or v == "":
        return default
    if isinstance(v, Decimal):
        return v
    if isinstance(v, bool):
        return default
    try:
        d = Decimal(str(v).strip())
    except (InvalidOperation, ValueError):
        return default
    if d.is_nan():
        return default
    return d


def fmt_decimal(v: Decimal | None, places: int = 4) -> str:
    if v is None:
        return "-"
    return f"{v:.{places}f}"
