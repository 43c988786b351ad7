"""Entrypoint for running the alert engine over a stream of readings.

Readings are read as JSON lines from a file or stdin, evaluated per user in
arrival order, and every emitted alert is printed as a JSON line. When
``BOT_TOKEN`` and ``ALERT_CHAT_IDS`` are set, alerts also go to Telegram.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time
from dataclasses import replace
from typing import Iterable, TextIO

from telegram import Bot

from . import config
from .background import ReadingDispatcher
from .debounce import DebounceTracker
from .device_age import PROFILES, Treatment, calculate_device_age
from .engine import AlertRulesEngine
from .history import ReadingHistory
from .logger import setup_logging
from .models.events import AlertEvent
from .models.readings import Reading
from .sinks import AlertHistory, AlertSink, LoggingSink, TelegramSink
from .store import HttpRuleStore, InMemoryRuleStore, RuleStore

logger = logging.getLogger(__name__)


def build_store() -> RuleStore:
    if config.RULE_STORE_URL:
        logger.info("Using rule store at %s", config.RULE_STORE_URL)
        return HttpRuleStore(config.RULE_STORE_URL, timeout_s=config.RULE_STORE_TIMEOUT_S)
    store = InMemoryRuleStore()
    if config.RULES_FILE:
        store.load_rules_file(config.RULES_FILE)
    return store


def build_engine(store: RuleStore, sinks: Iterable[AlertSink] = ()) -> AlertRulesEngine:
    return AlertRulesEngine(
        store,
        debounce=DebounceTracker(max_entries=config.DEBOUNCE_MAX_ENTRIES),
        history=ReadingHistory(max_age_minutes=config.HISTORY_MAX_AGE_MIN),
        sinks=sinks,
        fetch_timeout_s=config.RULE_STORE_TIMEOUT_S,
        default_time_zone=config.DEFAULT_TIME_ZONE,
        hysteresis_pct=config.HYSTERESIS_PCT,
        max_active_alerts=config.MAX_ACTIVE_ALERTS_PER_USER,
        active_alert_minutes=config.ACTIVE_ALERT_MINUTES,
    )


def _parse_line(line: str) -> Reading | None:
    line = line.strip()
    if not line:
        return None
    try:
        reading = Reading.from_dict(json.loads(line))
    except (ArithmeticError, AttributeError, TypeError, ValueError) as exc:
        logger.warning("Skipping unreadable reading %r: %s", line[:80], exc)
        return None
    if not reading.user_id:
        logger.warning("Skipping reading without user_id: %r", line[:80])
        return None
    return reading


async def process_stream(
    lines: Iterable[str],
    output: TextIO,
    store: RuleStore | None = None,
    bot: Bot | None = None,
) -> int:
    """Evaluate every reading in ``lines``; returns the number of failures."""
    history = AlertHistory()
    sinks: list[AlertSink] = [LoggingSink(), history]
    if bot is not None and config.ALERT_CHAT_IDS:
        sinks.append(TelegramSink(bot, config.ALERT_CHAT_IDS))
    engine = build_engine(store if store is not None else build_store(), sinks)

    def emit(reading: Reading, events: list[AlertEvent]) -> None:
        for event in events:
            output.write(json.dumps(event.to_dict()) + "\n")

    dispatcher = ReadingDispatcher(
        engine, queue_size=config.DISPATCH_QUEUE_SIZE, on_result=emit
    )
    for line in lines:
        reading = _parse_line(line)
        if reading is not None:
            await dispatcher.submit(reading)
    await dispatcher.close()
    output.flush()
    logger.info(
        "Processed %d reading(s), %d alert(s), %d failure(s)",
        dispatcher.processed,
        len(history),
        dispatcher.failures,
    )
    return dispatcher.failures


async def _main(source: TextIO, output: TextIO) -> int:
    if not config.BOT_TOKEN:
        return await process_stream(source, output)
    async with Bot(config.BOT_TOKEN) as bot:
        return await process_stream(source, output, bot=bot)


def _load_treatments(source: TextIO) -> list[Treatment]:
    data = json.load(source)
    if isinstance(data, dict):
        data = data.get("treatments") or []
    treatments = []
    for raw in data:
        try:
            treatments.append(Treatment.from_dict(raw))
        except (AttributeError, TypeError, ValueError) as exc:
            logger.warning("Skipping unreadable treatment %r: %s", raw, exc)
    return treatments


def run_device_age(argv: list[str], output: TextIO | None = None) -> int:
    """``glucose-alerts device-age``: print the age of a sensor, cannula or battery."""
    parser = argparse.ArgumentParser(
        prog="glucose-alerts device-age",
        description="Report time since the last device change from treatments JSON.",
    )
    parser.add_argument("kind", choices=sorted(PROFILES), help="sage, cage or bage")
    parser.add_argument(
        "treatments", nargs="?", default="-", help="JSON list of treatments (default: stdin)"
    )
    parser.add_argument("--now", type=int, default=None, help="Epoch milliseconds")
    parser.add_argument("--display", choices=("hours", "days"), default=None)
    parser.add_argument("--alerts", action="store_true", help="Build a notification at thresholds")
    args = parser.parse_args(argv)

    profile = PROFILES[args.kind]
    prefs = replace(
        profile.defaults,
        display=args.display or profile.defaults.display,
        enable_alerts=args.alerts,
    )
    now_ms = args.now if args.now is not None else int(time.time() * 1000)
    if args.treatments == "-":
        treatments = _load_treatments(sys.stdin)
    else:
        with open(args.treatments, encoding="utf-8") as source:
            treatments = _load_treatments(source)
    info = calculate_device_age(treatments, now_ms, profile, prefs)
    (output or sys.stdout).write(json.dumps(info.to_dict()) + "\n")
    return 0


def run(argv: list[str] | None = None) -> None:
    argv = list(sys.argv[1:] if argv is None else argv)
    if argv and argv[0] == "device-age":
        setup_logging()
        raise SystemExit(run_device_age(argv[1:]))
    parser = argparse.ArgumentParser(
        prog="glucose-alerts",
        description="Evaluate glucose readings against alert rules. "
        "Use `glucose-alerts device-age --help` for device ages.",
    )
    parser.add_argument(
        "readings", nargs="?", default="-", help="JSON-lines file of readings (default: stdin)"
    )
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL")
    args = parser.parse_args(argv)
    setup_logging(args.log_level)
    config.validate_settings()
    logger.info("Starting glucose_alerts")
    if args.readings == "-":
        failures = asyncio.run(_main(sys.stdin, sys.stdout))
    else:
        with open(args.readings, encoding="utf-8") as source:
            failures = asyncio.run(_main(source, sys.stdout))
    raise SystemExit(1 if failures else 0)


if __name__ == "__main__":
    run()
