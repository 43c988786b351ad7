"""Human-readable alert messages built from rule templates."""

from __future__ import annotations

import logging
from decimal import Decimal

from .models.readings import Reading
from .models.rules import AlertRule, ConditionType

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATES: dict[ConditionType, str] = {
    ConditionType.ABOVE_THRESHOLD: "Glucose {value} is above {threshold}",
    ConditionType.BELOW_THRESHOLD: "Glucose {value} is below {threshold}",
    ConditionType.RATE_OF_CHANGE: "Glucose changing {rate}/min (limit {threshold}/min)",
    ConditionType.RANGE_EXIT: "Glucose {value} is outside {low}-{high}",
}


def format_value(value: Decimal | None) -> str:
    if value is None:
        return "n/a"
    text = f"{value:f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _fields(rule: AlertRule, reading: Reading, rate: Decimal | None) -> dict[str, str]:
    threshold = rule.threshold_value
    bound = rule.range_bound
    low = high = None
    if threshold is not None and bound is not None:
        low, high = threshold - bound, threshold + bound
    if rate is not None:
        rate = rate.quantize(Decimal("0.1"))
    return {
        "value": format_value(reading.value),
        "threshold": format_value(threshold),
        "rate": format_value(rate),
        "bound": format_value(bound),
        "low": format_value(low),
        "high": format_value(high),
        "severity": rule.severity.label,
        "rule_name": rule.name or rule.id,
        "device_id": reading.device_id or "unknown device",
    }


def render_message(rule: AlertRule, reading: Reading, rate: Decimal | None = None) -> str:
    """Render the alert text for ``rule`` firing on ``reading``.

    A rule's own ``message_template`` wins; a template naming an unknown
    field falls back to the default for the condition type.
    """
    fields = _fields(rule, reading, rate)
    default = DEFAULT_TEMPLATES.get(rule.condition_type, "Glucose {value}")
    body = default.format(**fields)
    if rule.message_template:
        try:
            body = rule.message_template.format(**fields)
        except (AttributeError, IndexError, KeyError, TypeError, ValueError) as exc:
            logger.warning(
                "Bad message template on rule %s (%s), using default", rule.id, exc
            )
    suffix = f" [{rule.name}]" if rule.name else ""
    return f"{rule.severity.label}: {body}{suffix}"


__all__ = ["DEFAULT_TEMPLATES", "format_value", "render_message"]
