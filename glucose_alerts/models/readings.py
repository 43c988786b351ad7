"""Glucose reading dataclass."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class Reading:
    value: Decimal
    timestamp: datetime
    device_id: str
    user_id: str

    def __post_init__(self) -> None:
        if not isinstance(self.value, Decimal):
            object.__setattr__(self, "value", Decimal(str(self.value)))
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "Reading":
        raw_ts = data.get("timestamp") or data.get("date")
        if isinstance(raw_ts, (int, float)):
            # epoch milliseconds, as the CGM uploaders send them
            ts = datetime.fromtimestamp(raw_ts / 1000.0, tz=timezone.utc)
        elif isinstance(raw_ts, str):
            ts = datetime.fromisoformat(raw_ts.replace("Z", "+00:00"))
        else:
            raise ValueError("Reading is missing a timestamp")
        value = data.get("value", data.get("sgv"))
        if value is None:
            raise ValueError("Reading is missing a value")
        return cls(
            value=Decimal(str(value)),
            timestamp=ts,
            device_id=str(data.get("device_id") or data.get("device") or ""),
            user_id=str(data.get("user_id") or ""),
        )
