"""Daily time-window checks for rule schedules and quiet hours.

Both checks share ``in_daily_window``: a non-wrapping window is
``[start, end)`` and a window with ``start > end`` spans midnight as
``[start, 24:00) U [00:00, end)``. Quiet hours use an inclusive end.
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .models.quiet_hours import QuietHoursConfig
from .models.readings import ensure_utc
from .models.rules import AlertRule

logger = logging.getLogger(__name__)


@lru_cache(maxsize=256)
def resolve_zone(name: str | None) -> ZoneInfo | timezone:
    """Return the tzinfo for ``name``; unknown or empty names map to UTC."""
    if not name:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown time zone %r, using UTC", name)
        return timezone.utc


def to_local(check_time: datetime, zone_name: str | None) -> datetime:
    return ensure_utc(check_time).astimezone(resolve_zone(zone_name))


def day_of_week(moment: datetime) -> int:
    """Sunday-based day number (Sunday is 0, Saturday is 6)."""
    return (moment.weekday() + 1) % 7


def in_daily_window(
    moment: time, start: time, end: time, *, inclusive_end: bool = False
) -> bool:
    """Return True if ``moment`` falls in the daily window ``start``..``end``.

    ``start == end`` is the whole day when the end is exclusive and the single
    instant when it is inclusive.
    """
    if start == end:
        return moment == start if inclusive_end else True
    if start < end:
        if inclusive_end:
            return start <= moment <= end
        return start <= moment < end
    if inclusive_end:
        return moment >= start or moment <= end
    return moment >= start or moment < end


def is_within_active_window(
    rule: AlertRule, check_time: datetime, time_zone: str | None = None
) -> bool:
    """Return True if the rule's day/hour schedule applies at ``check_time``.

    An empty ``active_days_of_week`` means every day; no hour range means all
    day. Days are numbered from Sunday = 0 to Saturday = 6, as stored by the
    legacy rule editor.
    """
    local = to_local(check_time, time_zone)
    if rule.active_days_of_week and day_of_week(local) not in rule.active_days_of_week:
        return False
    hours = rule.active_hour_range
    if hours is None:
        return True
    moment = local.time().replace(tzinfo=None)
    return in_daily_window(moment, hours.start, hours.end)


def is_in_quiet_window(config: QuietHoursConfig | None, check_time: datetime) -> bool:
    """Return True if ``check_time`` is inside the configured quiet hours.

    Both boundaries count as inside, compared at whole-second precision.
    """
    if config is None or not config.enabled:
        return False
    local = to_local(check_time, config.time_zone)
    moment = local.time().replace(microsecond=0, tzinfo=None)
    return in_daily_window(moment, config.start, config.end, inclusive_end=True)


__all__ = [
    "day_of_week",
    "in_daily_window",
    "is_in_quiet_window",
    "is_within_active_window",
    "resolve_zone",
    "to_local",
]
