"""Alert event dataclass."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from .rules import ConditionType, Severity


@dataclass(frozen=True)
class AlertEvent:
    rule_id: str
    user_id: str
    severity: Severity
    message: str
    triggered_at: datetime
    reading_value: Decimal
    reading_timestamp: datetime
    condition_type: ConditionType
    threshold_value: Decimal
    device_id: str = ""

    def to_dict(self) -> dict[str, object]:
        return {
            "rule_id": self.rule_id,
            "user_id": self.user_id,
            "severity": self.severity.value,
            "message": self.message,
            "triggered_at": self.triggered_at.isoformat(),
            "reading_value": str(self.reading_value),
            "reading_timestamp": self.reading_timestamp.isoformat(),
            "condition_type": self.condition_type.value,
            "threshold_value": str(self.threshold_value),
            "device_id": self.device_id,
        }


@dataclass(frozen=True)
class RuleDefect:
    """A rule that was skipped because it could not be evaluated."""

    user_id: str
    rule_id: str
    reason: str
    detected_at: datetime
