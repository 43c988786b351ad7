"""Quiet hours configuration dataclass."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import time

from .rules import Severity


def _parse_time(raw: object) -> time:
    if isinstance(raw, time):
        return raw
    return time.fromisoformat(str(raw).strip())


@dataclass(frozen=True)
class QuietHoursConfig:
    user_id: str
    enabled: bool
    start: time
    end: time
    time_zone: str | None = None
    override_severities: frozenset[Severity] = field(
        default_factory=lambda: frozenset({Severity.URGENT})
    )

    def bypassed_by(self, severity: Severity) -> bool:
        return severity in self.override_severities

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "QuietHoursConfig":
        overrides = data.get("override_severities")
        if overrides is None:
            override_set = frozenset({Severity.URGENT})
        else:
            override_set = frozenset(Severity.parse(s) for s in overrides)
        return cls(
            user_id=str(data.get("user_id") or ""),
            enabled=bool(data.get("enabled", False)),
            start=_parse_time(data.get("start", "22:00")),
            end=_parse_time(data.get("end", "06:00")),
            time_zone=data.get("time_zone") or None,
            override_severities=override_set,
        )
