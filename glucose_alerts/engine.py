"""Alert rules engine: evaluates one reading against a user's rules."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncIterator, Awaitable, Callable, Iterable, Sequence, TypeVar

from .conditions import is_condition_met, rate_of_change
from .debounce import DebounceTracker
from .errors import (
    EvaluationError,
    MalformedRuleError,
    RuleStoreTimeoutError,
    RuleStoreUnavailableError,
)
from .history import ReadingHistory
from .messages import render_message
from .models.events import AlertEvent, RuleDefect
from .models.metrics import EngineMetrics
from .models.quiet_hours import QuietHoursConfig
from .models.readings import Reading, ensure_utc
from .models.rules import AlertRule, ConditionType, MalformedRule
from .schedule import is_in_quiet_window, is_within_active_window
from .sinks import AlertSink
from .store import RuleStore, StoredRule

logger = logging.getLogger(__name__)

T = TypeVar("T")

_DEFAULT_FETCH_TIMEOUT_S = 5.0
_DEFAULT_ACTIVE_ALERT_MIN = 60
_MAX_DEFECTS = 200


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _UserSlot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class AlertRulesEngine:
    """Decides which of a user's rules fire for a new reading.

    Evaluation runs in two passes. First every rule is checked on its own,
    in store order: disabled rules are skipped, then the time window, the
    value/rate condition and quiet hours (unless the rule's severity
    overrides them). A rule that fails in this pass is reported as a defect
    and skipped. Only then are the surviving candidates run through
    hysteresis, the per-user active alert cap and the cooldown, so no
    cooldown is recorded for an event that is not emitted.

    An alert counts as active for ``active_alert_minutes`` after it fired.
    With ``hysteresis_pct`` set, a threshold rule with an active alert only
    fires again once the value is past the threshold by that fraction of
    the threshold. ``max_active_alerts`` caps how many rules of one user
    can have an active alert.

    Readings for one user are evaluated one at a time; different users do
    not wait on each other. The store fetch is the only await inside an
    evaluation and is bounded by ``fetch_timeout_s``.
    """

    def __init__(
        self,
        store: RuleStore,
        debounce: DebounceTracker | None = None,
        history: ReadingHistory | None = None,
        sinks: Iterable[AlertSink] = (),
        fetch_timeout_s: float = _DEFAULT_FETCH_TIMEOUT_S,
        clock: Callable[[], datetime] | None = None,
        default_time_zone: str | None = None,
        hysteresis_pct: float = 0.0,
        max_active_alerts: int | None = None,
        active_alert_minutes: int = _DEFAULT_ACTIVE_ALERT_MIN,
    ) -> None:
        self.store = store
        self.debounce = debounce if debounce is not None else DebounceTracker()
        self.history = history if history is not None else ReadingHistory()
        self.sinks: list[AlertSink] = list(sinks)
        self.fetch_timeout_s = fetch_timeout_s
        self.default_time_zone = default_time_zone
        self.hysteresis_pct = Decimal(str(max(0.0, hysteresis_pct)))
        self.max_active_alerts = max_active_alerts if max_active_alerts else None
        self.active_window = timedelta(minutes=max(1, active_alert_minutes))
        self.metrics = EngineMetrics()
        self.defects: deque[RuleDefect] = deque(maxlen=_MAX_DEFECTS)
        self._clock = clock or _utcnow
        self._user_slots: dict[str, _UserSlot] = {}
        self._pending: set[asyncio.Task] = set()

    # -- store access -----------------------------------------------------

    async def _fetch(self, awaitable: Awaitable[T], what: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.fetch_timeout_s)
        except asyncio.TimeoutError as exc:
            raise RuleStoreTimeoutError(
                f"{what} timed out after {self.fetch_timeout_s}s"
            ) from exc
        except EvaluationError:
            raise
        except Exception as exc:
            raise RuleStoreUnavailableError(f"{what} failed: {exc}") from exc

    async def _load_context(
        self, user_id: str
    ) -> tuple[list[StoredRule], QuietHoursConfig | None, str | None]:
        rules, quiet_hours, zone = await asyncio.gather(
            self.store.get_active_rules_for_user(user_id),
            self.store.get_quiet_hours(user_id),
            self.store.get_user_time_zone(user_id),
        )
        if rules is None:
            raise RuleStoreUnavailableError(f"Rule store returned no rule list for {user_id}")
        return list(rules), quiet_hours, zone

    async def get_active_rules_for_user(self, user_id: str) -> list[StoredRule]:
        rules = await self._fetch(
            self.store.get_active_rules_for_user(user_id), f"Rule fetch for {user_id}"
        )
        if rules is None:
            raise RuleStoreUnavailableError(f"Rule store returned no rule list for {user_id}")
        return [r for r in rules if r.enabled]

    async def is_user_in_quiet_hours(
        self, user_id: str, check_time: datetime | None = None
    ) -> bool:
        config = await self._fetch(
            self.store.get_quiet_hours(user_id), f"Quiet hours fetch for {user_id}"
        )
        return is_in_quiet_window(config, check_time or self._clock())

    # -- pure checks ------------------------------------------------------

    def is_alert_condition_met(
        self,
        reading: Reading,
        rule: AlertRule,
        recent_readings: Sequence[Reading] | None = None,
    ) -> bool:
        if recent_readings is None:
            recent_readings = self.history.recent(reading.user_id, until=reading.timestamp)
        return is_condition_met(reading, rule, recent_readings)

    def evaluate_time_based_conditions(
        self, rule: AlertRule, check_time: datetime, time_zone: str | None = None
    ) -> bool:
        return is_within_active_window(rule, check_time, time_zone)

    def active_alert_count(self, user_id: str, at: datetime) -> int:
        """Rules of ``user_id`` that fired within the active window before ``at``."""
        return self.debounce.active_count(user_id, ensure_utc(at) - self.active_window)

    # -- evaluation -------------------------------------------------------

    @asynccontextmanager
    async def _serialized(self, user_id: str) -> AsyncIterator[None]:
        # the slot is dropped once no evaluation for the user holds or awaits it
        slot = self._user_slots.get(user_id)
        if slot is None:
            slot = self._user_slots[user_id] = _UserSlot()
        slot.users += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.users -= 1
            if slot.users == 0:
                self._user_slots.pop(user_id, None)

    def _report_defect(self, user_id: str, rule_id: str, reason: str) -> None:
        logger.warning("Skipping malformed rule %s for user %s: %s", rule_id, user_id, reason)
        self.metrics.defects += 1
        self.defects.append(
            RuleDefect(user_id=user_id, rule_id=rule_id, reason=reason, detected_at=self._clock())
        )

    def _build_event(
        self, rule: AlertRule, reading: Reading, recent: Sequence[Reading]
    ) -> AlertEvent:
        rate: Decimal | None = None
        if rule.condition_type is ConditionType.RATE_OF_CHANGE:
            rate = rate_of_change(reading, rule.rate_window_minutes, recent)
        triggered_at = max(ensure_utc(self._clock()), reading.timestamp)
        return AlertEvent(
            rule_id=rule.id,
            user_id=reading.user_id,
            severity=rule.severity,
            message=render_message(rule, reading, rate),
            triggered_at=triggered_at,
            reading_value=reading.value,
            reading_timestamp=reading.timestamp,
            condition_type=rule.condition_type,
            threshold_value=rule.threshold_value,
            device_id=reading.device_id,
        )

    def _candidate(
        self,
        rule: StoredRule,
        reading: Reading,
        recent: Sequence[Reading],
        quiet_hours: QuietHoursConfig | None,
        zone: str | None,
    ) -> AlertEvent | None:
        """Check one rule without touching cooldown state."""
        user_id = reading.user_id
        if not rule.enabled:
            return None
        if isinstance(rule, MalformedRule):
            self._report_defect(user_id, rule.id, rule.reason)
            return None

        at = reading.timestamp
        try:
            rule.validate()
            if not is_within_active_window(rule, at, zone):
                self.metrics.outside_window += 1
                return None
            if not is_condition_met(reading, rule, recent):
                self.metrics.not_met += 1
                return None
            event = self._build_event(rule, reading, recent)
            quiet = (
                quiet_hours is not None
                and not quiet_hours.bypassed_by(rule.severity)
                and is_in_quiet_window(quiet_hours, at)
            )
        except MalformedRuleError as exc:
            self._report_defect(user_id, rule.id, str(exc))
            return None
        except Exception as exc:
            self._report_defect(user_id, rule.id, f"{type(exc).__name__}: {exc}")
            return None

        if quiet:
            logger.debug("Rule %s for user %s held back by quiet hours", rule.id, user_id)
            self.metrics.quiet_hours_suppressed += 1
            return None
        return event

    def _within_hysteresis(self, rule: AlertRule, reading: Reading) -> bool:
        if not self.hysteresis_pct or rule.condition_type not in (
            ConditionType.ABOVE_THRESHOLD,
            ConditionType.BELOW_THRESHOLD,
        ):
            return False
        last = self.debounce.last_fired_at(reading.user_id, rule.id)
        if last is None or not last <= reading.timestamp < last + self.active_window:
            return False
        band = abs(rule.threshold_value * self.hysteresis_pct)
        if rule.condition_type is ConditionType.ABOVE_THRESHOLD:
            return reading.value < rule.threshold_value + band
        return reading.value > rule.threshold_value - band

    def _accept(
        self, candidates: list[tuple[AlertRule, AlertEvent]], reading: Reading
    ) -> list[AlertEvent]:
        user_id, at = reading.user_id, reading.timestamp
        active = self.active_alert_count(user_id, at) if self.max_active_alerts else 0
        accepted: list[AlertEvent] = []
        for rule, event in candidates:
            if self._within_hysteresis(rule, reading):
                logger.debug(
                    "Hysteresis holds back rule %s for user %s (value %s)",
                    rule.id,
                    user_id,
                    reading.value,
                )
                self.metrics.hysteresis_suppressed += 1
                continue
            last = self.debounce.last_fired_at(user_id, rule.id)
            already_active = last is not None and at - last < self.active_window
            if self.max_active_alerts and not already_active and active >= self.max_active_alerts:
                logger.warning(
                    "User %s has %d active alert(s), holding back rule %s",
                    user_id,
                    active,
                    rule.id,
                )
                self.metrics.cap_suppressed += 1
                continue
            if not self.debounce.try_fire(user_id, rule.id, at, rule.cooldown_minutes):
                logger.debug("Rule %s for user %s is cooling down", rule.id, user_id)
                self.metrics.cooldown_suppressed += 1
                continue
            if not already_active:
                active += 1
            accepted.append(event)
        return accepted

    async def evaluate_glucose_data(
        self, reading: Reading, user_id: str | None = None
    ) -> list[AlertEvent]:
        """Evaluate ``reading`` against the user's active rules.

        Returns the accepted alert events in rule-store order.

        Raises:
            EvaluationError: the rule store or quiet-hours config could not be
                loaded in time; no alerts are produced.
            ValueError: ``user_id`` does not match the reading's user.
        """
        user_id = user_id or reading.user_id
        if not user_id:
            raise ValueError("Reading has no user id")
        if reading.user_id and reading.user_id != user_id:
            raise ValueError(
                f"Reading belongs to {reading.user_id!r}, not {user_id!r}"
            )
        if not reading.user_id:
            reading = replace(reading, user_id=user_id)

        async with self._serialized(user_id):
            self.metrics.evaluations += 1
            self.metrics.last_run_ts = time.time()
            try:
                rules, quiet_hours, zone = await self._fetch(
                    self._load_context(user_id), f"Rule fetch for {user_id}"
                )
            except EvaluationError as exc:
                self.metrics.failures += 1
                self.metrics.last_error = str(exc)
                logger.error("Alert evaluation failed for user %s: %s", user_id, exc)
                raise

            zone = zone or self.default_time_zone
            if not rules:
                logger.debug("No active alert rules for user %s", user_id)

            recent = self.history.recent(user_id, until=reading.timestamp)
            candidates: list[tuple[AlertRule, AlertEvent]] = []
            for rule in rules:
                event = self._candidate(rule, reading, recent, quiet_hours, zone)
                if event is not None:
                    candidates.append((rule, event))
            events = self._accept(candidates, reading)
            self.history.record(reading)

        for event in events:
            self.metrics.fired += 1
            logger.info(
                "Generated %s alert for user %s from rule %s (value %s)",
                event.severity.value,
                event.user_id,
                event.rule_id,
                event.reading_value,
            )
            self._dispatch(event)
        return events

    # -- outbound ---------------------------------------------------------

    def _dispatch(self, event: AlertEvent) -> None:
        for sink in self.sinks:
            task = asyncio.create_task(self._deliver(sink, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _deliver(self, sink: AlertSink, event: AlertEvent) -> None:
        try:
            await sink.deliver(event)
        except asyncio.CancelledError:
            raise
        except Exception:
            self.metrics.delivery_errors += 1
            logger.exception(
                "Failed delivering alert for rule %s to %s",
                event.rule_id,
                type(sink).__name__,
            )

    async def drain(self) -> None:
        """Wait for all in-flight sink deliveries."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def stats(self) -> dict[str, object]:
        return {
            **self.metrics.as_dict(),
            "tracked_cooldowns": len(self.debounce),
            "pending_deliveries": len(self._pending),
            "recent_defects": len(self.defects),
            "tracked_users": len(self._user_slots),
        }


__all__ = ["AlertRulesEngine"]
