"""Device age (time since last sensor/cannula/battery change) calculator.

One algorithm serves every device kind; the differences between kinds live
in ``DeviceProfile`` records rather than in subclasses.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Iterable

_MS_PER_MINUTE = 60_000
_MS_PER_HOUR = 60 * _MS_PER_MINUTE
# Notify only during the first minutes after a threshold hour is reached.
_NOTIFY_GRACE_MINUTES = 20


class Level(IntEnum):
    NONE = -3
    LOWEST = -2
    LOW = -1
    INFO = 0
    WARN = 1
    URGENT = 2


@dataclass(frozen=True)
class Treatment:
    event_type: str
    mills: int
    notes: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "Treatment":
        """Accepts Nightscout treatment documents (``eventType``, ``mills`` or
        ``created_at``) as well as snake_case keys."""
        mills = data.get("mills")
        if mills is None:
            created = data.get("created_at")
            if not created:
                raise ValueError("Treatment has neither mills nor created_at")
            moment = datetime.fromisoformat(str(created).replace("Z", "+00:00"))
            if moment.tzinfo is None:
                moment = moment.replace(tzinfo=timezone.utc)
            mills = int(moment.timestamp() * 1000)
        return cls(
            event_type=str(data.get("eventType") or data.get("event_type") or ""),
            mills=int(mills),
            notes=data.get("notes") or None,
        )


@dataclass(frozen=True)
class DeviceAgePreferences:
    info: int
    warn: int
    urgent: int
    display: str = "hours"  # "hours" or "days"
    enable_alerts: bool = False


@dataclass(frozen=True)
class DeviceProfile:
    label: str
    group: str
    event_types: frozenset[str]
    urgent_message: str
    warn_message: str
    info_message: str
    defaults: DeviceAgePreferences
    title_template: str = "{label} age {age} hours"
    force_days_display: bool = False

    def accepts(self, event_type: str | None) -> bool:
        return (event_type or "").strip().lower() in self.event_types


@dataclass
class DeviceAgeNotification:
    title: str
    message: str
    sound: str
    level: Level
    group: str


@dataclass
class DeviceAgeInfo:
    found: bool = False
    age: int = 0
    days: int = 0
    hours: int = 0
    treatment_date: int | None = None
    notes: str | None = None
    min_fractions: int = 0
    level: Level = Level.NONE
    display: str = "n/a"
    notification: DeviceAgeNotification | None = field(default=None)

    def to_dict(self) -> dict[str, object]:
        data = asdict(self)
        data["level"] = self.level.name
        if self.notification is not None:
            data["notification"]["level"] = self.notification.level.name
        return data


def _types(*names: str) -> frozenset[str]:
    return frozenset(n.lower() for n in names)


SENSOR = DeviceProfile(
    label="Sensor",
    group="SAGE",
    event_types=_types("Sensor Start", "Sensor Change"),
    urgent_message="Sensor change/restart overdue!",
    warn_message="Time to change/restart sensor",
    info_message="Change/restart sensor soon",
    defaults=DeviceAgePreferences(info=144, warn=164, urgent=166, display="days"),
    title_template="Sensor age {days} days {hours} hours",
    force_days_display=True,
)

CANNULA = DeviceProfile(
    label="Cannula",
    group="CAGE",
    event_types=_types("Site Change"),
    urgent_message="Cannula change overdue!",
    warn_message="Time to change cannula",
    info_message="Change cannula soon",
    defaults=DeviceAgePreferences(info=44, warn=48, urgent=72, display="hours"),
)

BATTERY = DeviceProfile(
    label="Pump battery",
    group="BAGE",
    event_types=_types("Pump Battery Change", "Battery Change"),
    urgent_message="Pump battery change overdue!",
    warn_message="Time to change pump battery",
    info_message="Change pump battery soon",
    defaults=DeviceAgePreferences(info=312, warn=336, urgent=360, display="days"),
)

PROFILES: dict[str, DeviceProfile] = {"sage": SENSOR, "cage": CANNULA, "bage": BATTERY}


def _level_for(age: int, prefs: DeviceAgePreferences) -> Level:
    if age >= prefs.urgent:
        return Level.URGENT
    if age >= prefs.warn:
        return Level.WARN
    if age >= prefs.info:
        return Level.INFO
    return Level.NONE


def _days_display(info: DeviceAgeInfo) -> str:
    prefix = f"{info.days}d" if info.age >= 24 else ""
    return f"{prefix}{info.hours}h"


def _long_display(info: DeviceAgeInfo) -> str:
    prefix = f"{info.days} days " if info.age >= 24 else ""
    return f"{prefix}{info.hours} hours"


def _notification(
    info: DeviceAgeInfo, profile: DeviceProfile, prefs: DeviceAgePreferences
) -> DeviceAgeNotification | None:
    if not prefs.enable_alerts or info.level == Level.NONE:
        return None
    if info.age not in (prefs.urgent, prefs.warn, prefs.info):
        return None
    if info.min_fractions > _NOTIFY_GRACE_MINUTES:
        return None
    if info.level >= Level.URGENT:
        message, sound = profile.urgent_message, "persistent"
    elif info.level >= Level.WARN:
        message, sound = profile.warn_message, "incoming"
    else:
        message, sound = profile.info_message, "incoming"
    title = profile.title_template.format(
        label=profile.label, age=info.age, days=info.days, hours=info.hours
    )
    return DeviceAgeNotification(
        title=title, message=message, sound=sound, level=info.level, group=profile.group
    )


def calculate_device_age(
    treatments: Iterable[Treatment],
    now_ms: int,
    profile: DeviceProfile,
    preferences: DeviceAgePreferences | None = None,
) -> DeviceAgeInfo:
    """Age of the device since its most recent change event.

    Treatments in the future are ignored. Age is counted in whole hours.
    """
    prefs = preferences or profile.defaults
    info = DeviceAgeInfo()
    prev_date = 0
    for treatment in treatments:
        if not profile.accepts(treatment.event_type):
            continue
        if not prev_date < treatment.mills <= now_ms:
            continue
        prev_date = treatment.mills
        info.treatment_date = treatment.mills
        elapsed_ms = now_ms - treatment.mills
        age = math.floor(elapsed_ms / _MS_PER_HOUR)
        if not info.found or 0 <= age < info.age:
            info.found = True
            info.age = age
            info.days, info.hours = divmod(age, 24)
            info.notes = treatment.notes
            info.min_fractions = math.floor(elapsed_ms / _MS_PER_MINUTE) - age * 60

    if not info.found:
        return info

    info.level = _level_for(info.age, prefs)
    if prefs.display == "days" or profile.force_days_display:
        info.display = _days_display(info)
    else:
        info.display = f"{info.age}h"
    if profile.force_days_display and not info.notes:
        info.notes = _long_display(info)
    info.notification = _notification(info, profile, prefs)
    return info


__all__ = [
    "BATTERY",
    "CANNULA",
    "PROFILES",
    "SENSOR",
    "DeviceAgeInfo",
    "DeviceAgeNotification",
    "DeviceAgePreferences",
    "DeviceProfile",
    "Level",
    "Treatment",
    "calculate_device_age",
]
