import io
import json
from unittest import mock

import pytest

from glucose_alerts import config
from glucose_alerts.main import _parse_line, build_store, process_stream, run, run_device_age
from glucose_alerts.store import HttpRuleStore, InMemoryRuleStore

from conftest import DummyBot, make_rule, make_store


def _line(value: int, ts: str, user_id: str = "alice") -> str:
    return json.dumps({"value": value, "timestamp": ts, "user_id": user_id, "device_id": "cgm-1"})


def test_parse_line_skips_bad_input() -> None:
    assert _parse_line("") is None
    assert _parse_line("not json") is None
    assert _parse_line("5") is None
    assert _parse_line(json.dumps({"value": 100, "timestamp": "2024-03-04T12:00:00Z"})) is None
    reading = _parse_line(json.dumps({"sgv": 120, "date": 1709553600000, "user_id": "alice"}))
    assert reading is not None
    assert reading.timestamp.isoformat() == "2024-03-04T12:00:00+00:00"


@pytest.mark.asyncio
async def test_process_stream_writes_events_as_json_lines() -> None:
    lines = [
        _line(150, "2024-03-04T12:00:00Z"),
        _line(200, "2024-03-04T12:05:00Z"),
        _line(210, "2024-03-04T12:10:00Z"),
        "garbage",
        _line(260, "2024-03-04T12:10:00Z", user_id="bob"),
    ]
    output = io.StringIO()

    failures = await process_stream(lines, output, store=make_store(make_rule()))

    events = [json.loads(line) for line in output.getvalue().splitlines()]
    assert failures == 0
    assert [(e["user_id"], e["reading_value"]) for e in events] == [("alice", "200")]


@pytest.mark.asyncio
async def test_process_stream_sends_to_telegram() -> None:
    bot = DummyBot()
    output = io.StringIO()
    with mock.patch.object(config, "ALERT_CHAT_IDS", {"alice": 42}):
        await process_stream([_line(300, "2024-03-04T12:00:00Z")], output, make_store(make_rule()), bot)

    assert [m["chat_id"] for m in bot.sent] == [42]


def test_build_store_prefers_http() -> None:
    with mock.patch.object(config, "RULE_STORE_URL", "http://rules.test"):
        assert isinstance(build_store(), HttpRuleStore)
    with mock.patch.object(config, "RULE_STORE_URL", None), mock.patch.object(config, "RULES_FILE", None):
        assert isinstance(build_store(), InMemoryRuleStore)


def test_device_age_command(tmp_path) -> None:
    now = 1_700_000_000_000
    path = tmp_path / "treatments.json"
    path.write_text(
        json.dumps(
            [
                {"eventType": "Pump Battery Change", "mills": now - 336 * 3_600_000 - 5 * 60_000},
                {"eventType": "Meal Bolus", "mills": now - 3_600_000},
                {"notes": "no time"},
            ]
        )
    )
    output = io.StringIO()

    assert run_device_age(["bage", str(path), "--now", str(now), "--alerts"], output=output) == 0

    info = json.loads(output.getvalue())
    assert info["found"] is True
    assert info["age"] == 336
    assert info["level"] == "WARN"
    assert info["notification"]["group"] == "BAGE"


def test_run_dispatches_device_age(tmp_path, capsys) -> None:
    path = tmp_path / "treatments.json"
    path.write_text(json.dumps({"treatments": []}))
    with pytest.raises(SystemExit) as exc:
        run(["device-age", "sage", str(path), "--now", "0"])
    assert exc.value.code == 0
    assert json.loads(capsys.readouterr().out)["found"] is False
