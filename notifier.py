"""
notifier.py -- error sink for the territory explorer.

Every remote failure the explorer cannot absorb ends up here as an
ErrorReport.  The sink:
  - logs it (always)
  - keeps the most recent reports for the details panel
  - forwards it to Telegram when TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID are set

SETUP (optional):
  1. Message @BotFather on Telegram to create a bot -> get TELEGRAM_BOT_TOKEN
  2. Message @userinfobot to find your TELEGRAM_CHAT_ID
  3. Set both as environment variables

Alerts are POSTed with httpx to https://api.telegram.org/bot{token}/sendMessage
from a worker thread, so a slow Telegram never stalls the event loop.
"""

from __future__ import annotations

import asyncio
import html
import logging
import time
from collections import deque
from dataclasses import dataclass, field

import httpx

import config

logger = logging.getLogger(__name__)

# Telegram Bot API base URL template
TELEGRAM_API = "https://api.telegram.org/bot{token}/{method}"


@dataclass(frozen=True)
class ErrorReport:
    error: Exception
    context: str
    timestamp: float = field(default_factory=time.time)

    @property
    def kind(self) -> str:
        return type(self.error).__name__

    def __str__(self) -> str:
        return f"{self.context}: {self.kind}: {self.error}"


def send_alert(text: str) -> bool:
    """
    POST one HTML message to the configured chat.

    Returns False when alerts are not configured or Telegram refused the
    message.  Never raises: a broken alert channel must not take the
    explorer down with it.
    """
    token, chat_id = config.TELEGRAM_BOT_TOKEN, config.TELEGRAM_CHAT_ID
    if not (token and chat_id):
        logger.debug("Telegram alerts not configured, dropping message")
        return False

    payload = {
        "chat_id": chat_id,
        "text": text,
        "parse_mode": "HTML",
        "disable_web_page_preview": True,
    }
    try:
        resp = httpx.post(TELEGRAM_API.format(token=token, method="sendMessage"), json=payload, timeout=10.0)
        body = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("Telegram alert failed: %s", e)
        return False
    if resp.status_code != 200 or not isinstance(body, dict) or not body.get("ok"):
        logger.warning("Telegram alert rejected (HTTP %d): %.200s", resp.status_code, body)
        return False
    return True


def format_report(report: ErrorReport) -> str:
    return (
        f"<b>Territory explorer error</b>\n"
        f"{html.escape(report.context)}\n"
        f"<code>{html.escape(report.kind)}: {html.escape(str(report.error))}</code>"
    )


class ErrorSink:
    """Single-argument callable the controller reports failures to."""

    def __init__(self, *, history: int = 50, forward: bool | None = None) -> None:
        self.recent: deque[ErrorReport] = deque(maxlen=max(1, int(history)))
        if forward is None:
            forward = bool(config.TELEGRAM_BOT_TOKEN and config.TELEGRAM_CHAT_ID)
        self.forward = forward
        self._pending: set[asyncio.Task] = set()

    def __call__(self, report: ErrorReport) -> None:
        self.recent.append(report)
        logger.warning("%s", report)
        if self.forward:
            self._forward(format_report(report))

    def _forward(self, text: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            send_alert(text)
            return
        task = loop.create_task(asyncio.to_thread(send_alert, text))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for alerts still being forwarded."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
