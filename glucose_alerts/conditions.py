"""Value and rate-of-change condition checks for alert rules."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from typing import Iterable

from .errors import MalformedRuleError
from .models.readings import Reading
from .models.rules import AlertRule, ConditionType

_SECONDS_PER_MINUTE = Decimal(60)


def _require(value: object, rule: AlertRule, field_name: str) -> None:
    if value is None:
        kind = getattr(rule.condition_type, "value", rule.condition_type)
        raise MalformedRuleError(f"{kind} rule is missing {field_name}", rule.id)


def find_prior_reading(
    reading: Reading, window_minutes: int, recent_readings: Iterable[Reading]
) -> Reading | None:
    """Return the oldest reading inside the window that precedes ``reading``."""
    window_start = reading.timestamp - timedelta(minutes=window_minutes)
    prior: Reading | None = None
    for candidate in recent_readings:
        if candidate.user_id and reading.user_id and candidate.user_id != reading.user_id:
            continue
        if not window_start <= candidate.timestamp < reading.timestamp:
            continue
        if prior is None or candidate.timestamp < prior.timestamp:
            prior = candidate
    return prior


def rate_of_change(
    reading: Reading, window_minutes: int, recent_readings: Iterable[Reading]
) -> Decimal | None:
    """Change per minute against the oldest prior reading in the window."""
    prior = find_prior_reading(reading, window_minutes, recent_readings)
    if prior is None:
        return None
    elapsed_s = Decimal(str((reading.timestamp - prior.timestamp).total_seconds()))
    if elapsed_s <= 0:
        return None
    return (reading.value - prior.value) / (elapsed_s / _SECONDS_PER_MINUTE)


def is_condition_met(
    reading: Reading,
    rule: AlertRule,
    recent_readings: Iterable[Reading] = (),
) -> bool:
    """Decide whether ``rule``'s value or rate condition holds for ``reading``.

    Pure: no I/O and no state change. Missing history for a rate-of-change
    rule means the condition is not met.

    Raises:
        MalformedRuleError: unsupported condition type or a missing field the
            condition type requires.
    """
    condition = rule.condition_type
    threshold = rule.threshold_value
    _require(threshold, rule, "threshold_value")

    if condition is ConditionType.ABOVE_THRESHOLD:
        return reading.value > threshold
    if condition is ConditionType.BELOW_THRESHOLD:
        return reading.value < threshold
    if condition is ConditionType.RANGE_EXIT:
        _require(rule.range_bound, rule, "range_bound")
        low = threshold - rule.range_bound
        high = threshold + rule.range_bound
        return reading.value < low or reading.value > high
    if condition is ConditionType.RATE_OF_CHANGE:
        _require(rule.rate_window_minutes, rule, "rate_window_minutes")
        rate = rate_of_change(reading, rule.rate_window_minutes, recent_readings)
        if rate is None:
            return False
        if threshold > 0:
            return rate >= threshold
        if threshold < 0:
            return rate <= threshold
        raise MalformedRuleError("Rate-of-change threshold must be non-zero", rule.id)
    raise MalformedRuleError(f"Unsupported condition type: {condition!r}", rule.id)


__all__ = ["find_prior_reading", "is_condition_met", "rate_of_change"]
