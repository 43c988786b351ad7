"""Central configuration for glucose_alerts."""

from __future__ import annotations

import logging
import os
from typing import Dict

from .models.settings import Settings

logger = logging.getLogger(__name__)


def _split_chat_ids(s: str) -> Dict[str, int]:
    """Parse a comma-separated ``user:chat`` list into a mapping.

    Args:
        s: String such as ``"alice:123,bob:456"``.

    Returns:
        Mapping of user id to Telegram chat id. Invalid entries are skipped.

    Example:
        >>> _split_chat_ids("alice:123, bob:oops, carol:-42")
        {'alice': 123, 'carol': -42}
    """
    out: Dict[str, int] = {}
    for part in (s or "").split(","):
        user, sep, chat = part.strip().partition(":")
        if not sep or not user.strip():
            continue
        chat = chat.strip()
        if chat.lstrip("-").isdigit():
            out[user.strip()] = int(chat)
    return out


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, str(default)) or default)
    except ValueError:
        return default


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, str(default)) or default)
    except ValueError:
        return default


def _read_settings() -> Settings:
    """Read all configuration from environment variables.

    Returns:
        Settings object with all configuration values.

    Note:
        Invalid numeric values fall back to sensible defaults.
    """
    return Settings(
        RULE_STORE_URL=os.environ.get("RULE_STORE_URL") or None,
        RULE_STORE_TIMEOUT_S=_float_env("RULE_STORE_TIMEOUT_S", 5.0),
        RULES_FILE=os.environ.get("RULES_FILE") or None,
        DEBOUNCE_MAX_ENTRIES=_int_env("DEBOUNCE_MAX_ENTRIES", 10_000),
        HISTORY_MAX_AGE_MIN=_int_env("HISTORY_MAX_AGE_MIN", 60),
        DEFAULT_TIME_ZONE=os.environ.get("DEFAULT_TIME_ZONE") or "UTC",
        DISPATCH_QUEUE_SIZE=_int_env("DISPATCH_QUEUE_SIZE", 100),
        HYSTERESIS_PCT=_float_env("HYSTERESIS_PCT", 0.1),
        MAX_ACTIVE_ALERTS_PER_USER=_int_env("MAX_ACTIVE_ALERTS_PER_USER", 10),
        ACTIVE_ALERT_MINUTES=_int_env("ACTIVE_ALERT_MINUTES", 60),
        BOT_TOKEN=os.environ.get("BOT_TOKEN") or None,
        ALERT_CHAT_IDS=_split_chat_ids(os.environ.get("ALERT_CHAT_IDS", "")),
    )


settings = _read_settings()


def validate_settings(current: Settings | None = None) -> None:
    """Log warnings for configuration that will limit the service."""
    current = current or settings
    if current.RULE_STORE_URL is None and current.RULES_FILE is None:
        logger.warning(
            "Neither RULE_STORE_URL nor RULES_FILE is set; no rules will be loaded."
        )
    if current.RULE_STORE_TIMEOUT_S <= 0:
        logger.warning("RULE_STORE_TIMEOUT_S must be positive; using 5s.")
        current.RULE_STORE_TIMEOUT_S = 5.0
    if not 0 <= current.HYSTERESIS_PCT < 1:
        logger.warning("HYSTERESIS_PCT must be within [0, 1); disabling hysteresis.")
        current.HYSTERESIS_PCT = 0.0
    if current.BOT_TOKEN and not current.ALERT_CHAT_IDS:
        logger.warning("BOT_TOKEN is set but ALERT_CHAT_IDS is empty; alerts stay local.")
    if current is settings:
        # corrected values must reach the exported constants below
        globals().update(
            RULE_STORE_TIMEOUT_S=current.RULE_STORE_TIMEOUT_S,
            HYSTERESIS_PCT=current.HYSTERESIS_PCT,
        )


# Exported constants
RULE_STORE_URL: str | None = settings.RULE_STORE_URL
RULE_STORE_TIMEOUT_S: float = settings.RULE_STORE_TIMEOUT_S
RULES_FILE: str | None = settings.RULES_FILE
DEBOUNCE_MAX_ENTRIES: int = settings.DEBOUNCE_MAX_ENTRIES
HISTORY_MAX_AGE_MIN: int = settings.HISTORY_MAX_AGE_MIN
DEFAULT_TIME_ZONE: str = settings.DEFAULT_TIME_ZONE
DISPATCH_QUEUE_SIZE: int = settings.DISPATCH_QUEUE_SIZE
HYSTERESIS_PCT: float = settings.HYSTERESIS_PCT
MAX_ACTIVE_ALERTS_PER_USER: int = settings.MAX_ACTIVE_ALERTS_PER_USER
ACTIVE_ALERT_MINUTES: int = settings.ACTIVE_ALERT_MINUTES
BOT_TOKEN: str | None = settings.BOT_TOKEN
ALERT_CHAT_IDS: dict[str, int] = settings.ALERT_CHAT_IDS
