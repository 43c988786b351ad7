"""Exception types raised by the alert rules engine."""

from __future__ import annotations


class GlucoseAlertsError(Exception):
    """Base class for all glucose_alerts errors."""


class MalformedRuleError(GlucoseAlertsError):
    """A single rule cannot be evaluated (configuration defect).

    Raised for an unsupported condition type or a missing field required by
    the rule's condition type. Only the offending rule is skipped.
    """

    def __init__(self, message: str, rule_id: str | None = None) -> None:
        super().__init__(message)
        self.rule_id = rule_id


class EvaluationError(GlucoseAlertsError):
    """An evaluation call failed as a whole; no alerts were produced."""


class RuleStoreUnavailableError(EvaluationError):
    """The rule store could not be reached or returned an unusable answer."""


class RuleStoreTimeoutError(RuleStoreUnavailableError):
    """The rule store did not answer within the fetch timeout."""


class QuietHoursUnavailableError(EvaluationError):
    """The user's quiet-hours configuration could not be loaded."""


__all__ = [
    "GlucoseAlertsError",
    "MalformedRuleError",
    "EvaluationError",
    "RuleStoreUnavailableError",
    "RuleStoreTimeoutError",
    "QuietHoursUnavailableError",
]
