"""Logging setup for the alert service.

Alert events are logged on ``glucose_alerts.events`` (see ``LoggingSink``);
setting ``ALERT_LOG_FILE`` also appends them to a file as an audit trail.
"""
import logging
import os

EVENTS_LOGGER = "glucose_alerts.events"
_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _attach_events_file(path: str) -> None:
    events = logging.getLogger(EVENTS_LOGGER)
    target = os.path.abspath(path)
    for handler in events.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == target:
            return
    handler = logging.FileHandler(target, encoding="utf-8")
    handler.setFormatter(logging.Formatter(fmt="%(asctime)s %(message)s", datefmt=_DATEFMT))
    events.addHandler(handler)
    events.setLevel(logging.INFO)


def setup_logging(level: str | None = None) -> None:
    level_name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    resolved = getattr(logging, level_name, None)
    if not isinstance(resolved, int):
        resolved = logging.INFO

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT))
        root.addHandler(handler)
    root.setLevel(resolved)

    events_file = os.environ.get("ALERT_LOG_FILE")
    if events_file:
        _attach_events_file(events_file)

    # Rule store requests and Telegram polling are noisy at INFO
    for name in ("httpx", "httpcore", "telegram"):
        logging.getLogger(name).setLevel(logging.WARNING)


__all__ = ["EVENTS_LOGGER", "setup_logging"]
