"""Shared test fixtures and dummy classes."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

from glucose_alerts.errors import QuietHoursUnavailableError, RuleStoreUnavailableError
from glucose_alerts.models.events import AlertEvent
from glucose_alerts.models.readings import Reading
from glucose_alerts.models.rules import AlertRule, ConditionType, Severity
from glucose_alerts.store import InMemoryRuleStore

# A Monday, day 1 in Sunday-based numbering.
BASE = datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)


def make_reading(
    value: object, at: datetime = BASE, user_id: str = "alice", device_id: str = "cgm-1"
) -> Reading:
    return Reading(
        value=Decimal(str(value)), timestamp=at, device_id=device_id, user_id=user_id
    )


def make_rule(rule_id: str = "r1", **overrides: Any) -> AlertRule:
    fields: dict[str, Any] = {
        "id": rule_id,
        "user_id": "alice",
        "condition_type": ConditionType.ABOVE_THRESHOLD,
        "threshold_value": Decimal("180"),
        "severity": Severity.WARN,
        "cooldown_minutes": 30,
    }
    fields.update(overrides)
    if isinstance(fields["threshold_value"], (int, float, str)):
        fields["threshold_value"] = Decimal(str(fields["threshold_value"]))
    return AlertRule(**fields)


def make_store(*rules: AlertRule) -> InMemoryRuleStore:
    return InMemoryRuleStore(rules)


class FixedClock:
    """Callable clock that tests can move by hand."""

    def __init__(self, now: datetime = BASE) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FailingStore:
    """Rule store whose backend is down."""

    def __init__(self, fail_quiet_hours: bool = False) -> None:
        self.fail_quiet_hours = fail_quiet_hours

    async def get_active_rules_for_user(self, user_id: str) -> list[AlertRule]:
        if self.fail_quiet_hours:
            return [make_rule(user_id=user_id)]
        raise RuleStoreUnavailableError("database offline")

    async def get_quiet_hours(self, user_id: str):
        if self.fail_quiet_hours:
            raise QuietHoursUnavailableError("preferences offline")
        return None

    async def get_user_time_zone(self, user_id: str) -> str | None:
        return None


class SlowStore(InMemoryRuleStore):
    """Rule store that takes ``delay_s`` to answer a rule fetch."""

    def __init__(self, *rules: AlertRule, delay_s: float = 1.0) -> None:
        super().__init__(rules)
        self.delay_s = delay_s
        self.in_flight = 0
        self.max_in_flight = 0

    async def get_active_rules_for_user(self, user_id: str) -> list[AlertRule]:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay_s)
            return await super().get_active_rules_for_user(user_id)
        finally:
            self.in_flight -= 1


class RawStore:
    """Rule store that returns exactly what it was given, disabled rules included."""

    def __init__(self, rules: list) -> None:
        self.rules = rules

    async def get_active_rules_for_user(self, user_id: str) -> list:
        return list(self.rules)

    async def get_quiet_hours(self, user_id: str):
        return None

    async def get_user_time_zone(self, user_id: str) -> str | None:
        return None


class DummySink:
    """Sink that remembers delivered events."""

    def __init__(self) -> None:
        self.events: list = []

    async def deliver(self, event) -> None:
        self.events.append(event)


class BrokenSink:
    async def deliver(self, event) -> None:
        raise RuntimeError("push gateway down")


class DummyBot:
    """Dummy Telegram bot for testing."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    async def send_message(self, **kwargs: Any) -> None:
        self.sent.append(kwargs)


def make_event(
    user_id: str = "alice", message: str = "Glucose 250 is above 180", minutes: int = 0
) -> AlertEvent:
    at = BASE + timedelta(minutes=minutes)
    return AlertEvent(
        rule_id="r1",
        user_id=user_id,
        severity=Severity.URGENT,
        message=message,
        triggered_at=at,
        reading_value=Decimal("250"),
        reading_timestamp=at,
        condition_type=ConditionType.ABOVE_THRESHOLD,
        threshold_value=Decimal("180"),
    )


class ExplodingRule:
    """Stored rule whose evaluation fails with an unexpected error."""

    def __init__(self, rule_id: str = "boom", user_id: str = "alice") -> None:
        self.id = rule_id
        self.user_id = user_id
        self.enabled = True
        self.name = ""

    def validate(self) -> None:
        raise RuntimeError("corrupt rule record")
