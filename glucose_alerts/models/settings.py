"""Configuration dataclass."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict


@dataclass
class Settings:
    """Configuration settings for glucose_alerts."""

    RULE_STORE_URL: str | None
    RULE_STORE_TIMEOUT_S: float
    RULES_FILE: str | None
    DEBOUNCE_MAX_ENTRIES: int
    HISTORY_MAX_AGE_MIN: int
    DEFAULT_TIME_ZONE: str
    DISPATCH_QUEUE_SIZE: int
    HYSTERESIS_PCT: float
    MAX_ACTIVE_ALERTS_PER_USER: int
    ACTIVE_ALERT_MINUTES: int
    BOT_TOKEN: str | None
    ALERT_CHAT_IDS: Dict[str, int]
