"""Alert rule dataclasses and enums."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import time
from decimal import Decimal, InvalidOperation
from enum import Enum

from ..errors import MalformedRuleError


def _snake(name: str) -> str:
    text = re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", name.strip())
    return text.replace("-", "_").replace(" ", "_").lower()


class ConditionType(str, Enum):
    ABOVE_THRESHOLD = "above_threshold"
    BELOW_THRESHOLD = "below_threshold"
    RATE_OF_CHANGE = "rate_of_change"
    RANGE_EXIT = "range_exit"

    @classmethod
    def parse(cls, raw: object) -> "ConditionType":
        if isinstance(raw, cls):
            return raw
        try:
            return cls(_snake(str(raw or "")))
        except ValueError:
            raise MalformedRuleError(f"Unsupported condition type: {raw!r}") from None


class Severity(str, Enum):
    INFO = "info"
    WARN = "warn"
    URGENT = "urgent"

    @property
    def label(self) -> str:
        return self.value.upper()

    @classmethod
    def parse(cls, raw: object) -> "Severity":
        if isinstance(raw, cls):
            return raw
        key = str(raw or "").strip().lower()
        key = {"warning": "warn", "critical": "urgent"}.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise MalformedRuleError(f"Unknown severity: {raw!r}") from None


@dataclass(frozen=True)
class HourRange:
    """Daily local-time range; ``start > end`` spans midnight."""

    start_hour: int
    end_hour: int
    start_minute: int = 0
    end_minute: int = 0

    @property
    def start(self) -> time:
        return time(self.start_hour, self.start_minute)

    @property
    def end(self) -> time:
        return time(self.end_hour, self.end_minute)

    def validate(self) -> None:
        for hour in (self.start_hour, self.end_hour):
            if not 0 <= hour <= 23:
                raise MalformedRuleError(f"Hour out of range: {hour}")
        for minute in (self.start_minute, self.end_minute):
            if not 0 <= minute <= 59:
                raise MalformedRuleError(f"Minute out of range: {minute}")

    @classmethod
    def parse(cls, raw: object) -> "HourRange | None":
        if raw is None or raw == "" or raw == {}:
            return None
        if isinstance(raw, HourRange):
            return raw
        try:
            if isinstance(raw, dict):
                return cls(
                    start_hour=int(raw.get("start_hour", raw.get("startHour"))),
                    end_hour=int(raw.get("end_hour", raw.get("endHour"))),
                    start_minute=int(raw.get("start_minute", raw.get("startMinute", 0))),
                    end_minute=int(raw.get("end_minute", raw.get("endMinute", 0))),
                )
            start, end = raw  # type: ignore[misc]
            return cls(start_hour=int(start), end_hour=int(end))
        except (TypeError, ValueError):
            raise MalformedRuleError(f"Invalid active hour range: {raw!r}") from None


def _decimal(raw: object, name: str) -> Decimal | None:
    if raw is None or raw == "":
        return None
    try:
        return Decimal(str(raw))
    except InvalidOperation:
        raise MalformedRuleError(f"Invalid number for {name}: {raw!r}") from None


@dataclass(frozen=True)
class AlertRule:
    id: str
    user_id: str
    condition_type: ConditionType
    threshold_value: Decimal | None
    severity: Severity = Severity.WARN
    enabled: bool = True
    rate_window_minutes: int | None = None
    range_bound: Decimal | None = None
    active_days_of_week: frozenset[int] = field(default_factory=frozenset)
    active_hour_range: HourRange | None = None
    cooldown_minutes: int = 0
    name: str = ""
    message_template: str | None = None

    def validate(self) -> None:
        """Raise MalformedRuleError if the rule cannot be evaluated."""
        if not isinstance(self.condition_type, ConditionType):
            raise MalformedRuleError(
                f"Unsupported condition type: {self.condition_type!r}", self.id
            )
        if self.threshold_value is None:
            raise MalformedRuleError("Rule has no threshold value", self.id)
        if self.cooldown_minutes is None or self.cooldown_minutes < 0:
            raise MalformedRuleError("Cooldown must be zero or positive", self.id)
        if any(not 0 <= day <= 6 for day in self.active_days_of_week):
            raise MalformedRuleError("Days of week must be within 0..6", self.id)
        if self.message_template is not None and not isinstance(self.message_template, str):
            raise MalformedRuleError("Message template must be a string", self.id)
        if self.active_hour_range is not None:
            try:
                self.active_hour_range.validate()
            except MalformedRuleError as exc:
                raise MalformedRuleError(str(exc), self.id) from exc
        if self.condition_type is ConditionType.RATE_OF_CHANGE:
            if not self.rate_window_minutes or self.rate_window_minutes <= 0:
                raise MalformedRuleError(
                    "Rate-of-change rule needs a positive rate window", self.id
                )
            if self.threshold_value == 0:
                raise MalformedRuleError(
                    "Rate-of-change threshold must be non-zero", self.id
                )
        if self.condition_type is ConditionType.RANGE_EXIT:
            if self.range_bound is None or self.range_bound < 0:
                raise MalformedRuleError("Range-exit rule needs a range bound", self.id)

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "AlertRule":
        rule_id = str(data.get("id") or "")
        try:
            rate_window = data.get("rate_window_minutes")
            rule = cls(
                id=rule_id,
                user_id=str(data.get("user_id") or ""),
                condition_type=ConditionType.parse(data.get("condition_type")),
                threshold_value=_decimal(data.get("threshold_value"), "threshold_value"),
                severity=Severity.parse(data.get("severity", "warn")),
                enabled=bool(data.get("enabled", True)),
                rate_window_minutes=int(rate_window) if rate_window is not None else None,
                range_bound=_decimal(data.get("range_bound"), "range_bound"),
                active_days_of_week=frozenset(
                    int(d) for d in (data.get("active_days_of_week") or [])
                ),
                active_hour_range=HourRange.parse(data.get("active_hour_range")),
                cooldown_minutes=int(data.get("cooldown_minutes") or 0),
                name=str(data.get("name") or ""),
                message_template=data.get("message_template") or None,
            )
        except MalformedRuleError as exc:
            raise MalformedRuleError(str(exc), rule_id) from exc
        except (TypeError, ValueError) as exc:
            raise MalformedRuleError(f"Invalid rule field: {exc}", rule_id) from exc
        rule.validate()
        return rule


@dataclass(frozen=True)
class MalformedRule:
    """Placeholder for a stored rule that could not be parsed."""

    id: str
    user_id: str
    reason: str
    enabled: bool = True
    name: str = ""
