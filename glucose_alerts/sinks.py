"""Outbound sinks that receive accepted alert events.

The engine hands every event to each sink as a background task and never
waits on delivery, so a slow or failing sink cannot hold up evaluation.
"""

from __future__ import annotations

import html
import json
import logging
from collections import deque
from typing import Protocol

from telegram.constants import ParseMode

from .logger import EVENTS_LOGGER
from .models.events import AlertEvent
from .models.rules import Severity

logger = logging.getLogger(__name__)

_HISTORY_MAX = 500

_SEVERITY_EMOJI = {
    Severity.URGENT: "\U0001f6a8",  # rotating light
    Severity.WARN: "⚠️",  # warning sign
    Severity.INFO: "ℹ️",  # information
}


class AlertSink(Protocol):
    async def deliver(self, event: AlertEvent) -> None: ...


class AlertHistory:
    """In-memory record of emitted events (the persistence hand-off)."""

    def __init__(self, max_events: int = _HISTORY_MAX) -> None:
        self._events: deque[AlertEvent] = deque(maxlen=max(1, max_events))

    def __len__(self) -> int:
        return len(self._events)

    async def deliver(self, event: AlertEvent) -> None:
        self._events.append(event)

    def recent(self, user_id: str | None = None, limit: int = 50) -> list[AlertEvent]:
        """Newest first, optionally for one user."""
        events = [e for e in reversed(self._events) if user_id is None or e.user_id == user_id]
        return events[: max(0, limit)]

    def to_json(self) -> str:
        return json.dumps([e.to_dict() for e in self._events], indent=2)

    def clear(self) -> None:
        self._events.clear()


class LoggingSink:
    """Writes each event to the log."""

    def __init__(self, name: str = EVENTS_LOGGER) -> None:
        self._logger = logging.getLogger(name)

    async def deliver(self, event: AlertEvent) -> None:
        self._logger.info(
            "ALERT user=%s rule=%s severity=%s value=%s at=%s: %s",
            event.user_id,
            event.rule_id,
            event.severity.value,
            event.reading_value,
            event.triggered_at.isoformat(),
            event.message,
        )


def format_telegram_message(event: AlertEvent) -> str:
    emoji = _SEVERITY_EMOJI.get(event.severity, "")
    when = event.reading_timestamp.strftime("%Y-%m-%d %H:%M UTC")
    return (
        f"{emoji} <b>{html.escape(event.severity.label)}</b> "
        f"{html.escape(event.message)}\n"
        f"<i>Reading at {html.escape(when)}</i>"
    )


class TelegramSink:
    """Sends events to Telegram chats through a ``telegram.Bot``.

    ``chat_ids`` maps user ids to the chat that should receive their alerts.
    """

    def __init__(self, bot, chat_ids: dict[str, int]) -> None:
        self.bot = bot
        self.chat_ids = dict(chat_ids)

    async def deliver(self, event: AlertEvent) -> None:
        chat_id = self.chat_ids.get(event.user_id)
        if chat_id is None:
            logger.debug("No Telegram chat configured for user %s", event.user_id)
            return
        await self.bot.send_message(
            chat_id=chat_id,
            text=format_telegram_message(event),
            parse_mode=ParseMode.HTML,
        )
        logger.info("Sent %s alert to chat_id %s", event.severity.value, chat_id)


__all__ = [
    "AlertHistory",
    "AlertSink",
    "LoggingSink",
    "TelegramSink",
    "format_telegram_message",
]
