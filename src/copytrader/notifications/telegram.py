# src/copytrader/notifications/telegram.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

import requests

from src.copytrader.core.models.action import ExecutionRecord

log = logging.getLogger("src.copytrader.notifications.telegram")

TELEGRAM_MAX_LEN = 3900  # safe margin under 4096


# -------------------------
# models
# -------------------------
@dataclass(frozen=True)
class TelegramTarget:
    name: str
    bot_token: str
    chat_id: str


def target_from_config(bot_token: str, chat_id: str) -> Optional[TelegramTarget]:
    token = (bot_token or "").strip()
    cid = (chat_id or "").strip()
    if token and cid:
        return TelegramTarget(name="primary", bot_token=token, chat_id=cid)
    return None


# -------------------------
# message split
# -------------------------
def split_long_message(text: str, max_len: int = TELEGRAM_MAX_LEN) -> List[str]:
    """
    Splits text under the Telegram limit.
    Cuts on blank lines first, then on line breaks, then hard.
    """
    s = (text or "").strip()
    if not s:
        return []
    if len(s) <= max_len:
        return [s]

    parts: List[str] = []
    buf = ""

    for chunk in s.split("\n\n"):
        chunk = chunk.strip()
        cand = f"{buf}\n\n{chunk}" if buf else chunk
        if len(cand) <= max_len:
            buf = cand
            continue

        if buf:
            parts.append(buf)
            buf = ""

        if len(chunk) <= max_len:
            buf = chunk
            continue

        line_buf = ""
        for line in chunk.splitlines():
            while len(line) > max_len:
                if line_buf:
                    parts.append(line_buf)
                    line_buf = ""
                parts.append(line[:max_len])
                line = line[max_len:]
            cand2 = f"{line_buf}\n{line}" if line_buf else line
            if len(cand2) <= max_len:
                line_buf = cand2
            else:
                parts.append(line_buf)
                line_buf = line
        if line_buf:
            buf = line_buf

    if buf:
        parts.append(buf)

    return [p for p in parts if p.strip()]


# -------------------------
# send
# -------------------------
def send_telegram_message(text: str, *, target: TelegramTarget, disable_preview: bool = True) -> bool:
    text = (text or "").strip()
    if not text:
        return False

    url = f"https://api.telegram.org/bot{target.bot_token}/sendMessage"
    ok = True
    for part in split_long_message(text):
        payload = {
            "chat_id": target.chat_id,
            "text": part,
            "disable_web_page_preview": bool(disable_preview),
        }
        try:
            r = requests.post(url, json=payload, timeout=15)
        except requests.RequestException:
            log.exception("Telegram send exception")
            return False
        if r.status_code != 200:
            log.error("Telegram send failed: %s %s", r.status_code, r.text[:300])
            ok = False
    return ok


# -------------------------
# trade formatting
# -------------------------
def format_trade_executed(record: ExecutionRecord) -> str:
    mode = " [DRY RUN]" if record.dry_run else ""
    return "\n".join([
        f"✅ Copied {record.side.value}{mode}",
        f"Source: {record.source}",
        f"Market: {record.market_id}",
        f"Outcome: {record.outcome_label}",
        f"Size: {record.quantity} @ {record.price} (≈ {record.notional:.2f})",
        f"Order: {record.order_id or '-'}",
    ])


def format_trade_error(record: ExecutionRecord) -> str:
    reason = record.reason.value if record.reason else "EXECUTION_FAILED"
    return "\n".join([
        f"❌ Copy {record.side.value} failed: {reason}",
        f"Source: {record.source}",
        f"Position: {record.position_id}",
        f"Retries: {record.retry_count}",
        f"Error: {record.error or '-'}",
    ])


class TelegramNotifier:
    """Orchestrator trade callbacks delivered to one Telegram chat."""

    def __init__(self, target: TelegramTarget, *, notify_errors: bool = True):
        self.target = target
        self.notify_errors = bool(notify_errors)

    def on_trade_executed(self, record: ExecutionRecord) -> None:
        send_telegram_message(format_trade_executed(record), target=self.target)

    def on_trade_error(self, record: ExecutionRecord) -> None:
        if self.notify_errors:
            send_telegram_message(format_trade_error(record), target=self.target)
