"""Tests for rule parsing and the rule store accessors."""

import json
from datetime import time
from decimal import Decimal

import httpx
import pytest

from glucose_alerts.errors import (
    MalformedRuleError,
    QuietHoursUnavailableError,
    RuleStoreUnavailableError,
)
from glucose_alerts.models.rules import (
    AlertRule,
    ConditionType,
    HourRange,
    MalformedRule,
    Severity,
)
from glucose_alerts.store import HttpRuleStore, InMemoryRuleStore, parse_rule_records

from conftest import make_rule

RULES_PAYLOAD = [
    {
        "id": "high",
        "name": "High",
        "condition_type": "AboveThreshold",
        "threshold_value": 250,
        "severity": "warning",
        "cooldown_minutes": 30,
        "active_hour_range": {"startHour": 22, "endHour": 6},
    },
    {
        "id": "low",
        "name": "Low",
        "condition_type": "below_threshold",
        "threshold_value": "70",
        "severity": "urgent",
        "active_days_of_week": [0, 1, 2, 3, 4],
    },
    {"id": "off", "name": "Off", "condition_type": "above_threshold", "threshold_value": 1, "enabled": False},
    {"id": "weird", "name": "Weird", "condition_type": "sideways", "threshold_value": 1},
]


def test_rule_from_dict_normalizes_fields() -> None:
    rule = AlertRule.from_dict({**RULES_PAYLOAD[0], "user_id": "alice"})
    assert rule.condition_type is ConditionType.ABOVE_THRESHOLD
    assert rule.severity is Severity.WARN
    assert rule.threshold_value == Decimal("250")
    assert rule.active_hour_range == HourRange(22, 6)
    assert rule.active_days_of_week == frozenset()


def test_rule_from_dict_accepts_hour_pairs() -> None:
    rule = AlertRule.from_dict(
        {"id": "r", "condition_type": "above_threshold", "threshold_value": 1, "active_hour_range": [20, 4]}
    )
    assert rule.active_hour_range == HourRange(20, 4)


@pytest.mark.parametrize(
    "data",
    [
        {"id": "x", "condition_type": "sideways", "threshold_value": 1},
        {"id": "x", "condition_type": "above_threshold"},
        {"id": "x", "condition_type": "rate_of_change", "threshold_value": 2},
        {"id": "x", "condition_type": "rate_of_change", "threshold_value": 0, "rate_window_minutes": 15},
        {"id": "x", "condition_type": "range_exit", "threshold_value": 120},
        {"id": "x", "condition_type": "above_threshold", "threshold_value": "lots"},
        {"id": "x", "condition_type": "above_threshold", "threshold_value": 1, "cooldown_minutes": -5},
        {"id": "x", "condition_type": "above_threshold", "threshold_value": 1, "active_days_of_week": [7]},
        {"id": "x", "condition_type": "above_threshold", "threshold_value": 1, "active_hour_range": [25, 3]},
        {"id": "x", "condition_type": "above_threshold", "threshold_value": 1, "message_template": 5},
    ],
)
def test_rule_from_dict_rejects_malformed(data) -> None:
    with pytest.raises(MalformedRuleError) as exc:
        AlertRule.from_dict(data)
    assert exc.value.rule_id == "x"


def test_parse_rule_records_keeps_placeholders() -> None:
    rules = parse_rule_records(RULES_PAYLOAD, "alice")
    assert [r.id for r in rules] == ["high", "low", "off", "weird"]
    assert isinstance(rules[3], MalformedRule)
    assert all(r.user_id == "alice" for r in rules)


@pytest.mark.asyncio
async def test_in_memory_store_returns_enabled_rules_in_name_order() -> None:
    store = InMemoryRuleStore(
        [make_rule("2", name="beta"), make_rule("1", name="alpha"), make_rule("3", name="gamma", enabled=False)]
    )
    rules = await store.get_active_rules_for_user("alice")
    assert [r.id for r in rules] == ["1", "2"]
    assert await store.get_active_rules_for_user("bob") == []


@pytest.mark.asyncio
async def test_in_memory_store_toggle_keeps_old_snapshot() -> None:
    store = InMemoryRuleStore([make_rule("1")])
    snapshot = await store.get_active_rules_for_user("alice")

    assert store.set_rule_enabled("alice", "1", False) is True
    assert snapshot[0].enabled is True
    assert await store.get_active_rules_for_user("alice") == []
    assert store.set_rule_enabled("alice", "missing", True) is False
    assert store.remove_rule("alice", "1") is True


@pytest.mark.asyncio
async def test_load_rules_file(tmp_path) -> None:
    path = tmp_path / "rules.json"
    path.write_text(
        json.dumps(
            {
                "rules": [{**r, "user_id": "alice"} for r in RULES_PAYLOAD],
                "quiet_hours": [
                    {"user_id": "alice", "enabled": True, "start": "23:00", "end": "07:00", "override_severities": ["urgent", "warn"]}
                ],
                "time_zones": {"alice": "Europe/London"},
            }
        )
    )
    store = InMemoryRuleStore()

    assert store.load_rules_file(path) == 4
    rules = await store.get_active_rules_for_user("alice")
    assert [r.id for r in rules] == ["high", "low", "weird"]
    quiet = await store.get_quiet_hours("alice")
    assert quiet.start == time(23, 0)
    assert quiet.override_severities == frozenset({Severity.URGENT, Severity.WARN})
    assert await store.get_user_time_zone("alice") == "Europe/London"


def _transport(routes: dict[str, httpx.Response]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        response = routes.get(request.url.path)
        if response is None:
            return httpx.Response(404)
        return response

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_http_store_fetches_rules() -> None:
    store = HttpRuleStore(
        "http://rules.test/api/",
        transport=_transport({"/api/users/alice/alert-rules": httpx.Response(200, json={"rules": RULES_PAYLOAD})}),
    )
    rules = await store.get_active_rules_for_user("alice")
    assert [r.id for r in rules] == ["high", "low", "weird"]
    assert isinstance(rules[2], MalformedRule)


@pytest.mark.asyncio
async def test_http_store_raises_on_server_error() -> None:
    store = HttpRuleStore(
        "http://rules.test",
        transport=_transport({"/users/alice/alert-rules": httpx.Response(503)}),
    )
    with pytest.raises(RuleStoreUnavailableError):
        await store.get_active_rules_for_user("alice")


@pytest.mark.asyncio
async def test_http_store_raises_on_bad_payload() -> None:
    store = HttpRuleStore(
        "http://rules.test",
        transport=_transport({"/users/alice/alert-rules": httpx.Response(200, json={"oops": 1})}),
    )
    with pytest.raises(RuleStoreUnavailableError):
        await store.get_active_rules_for_user("alice")


@pytest.mark.asyncio
async def test_http_store_raises_on_connection_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    store = HttpRuleStore("http://rules.test", transport=httpx.MockTransport(handler))
    with pytest.raises(RuleStoreUnavailableError):
        await store.get_active_rules_for_user("alice")


@pytest.mark.asyncio
async def test_http_store_quiet_hours_and_profile() -> None:
    store = HttpRuleStore(
        "http://rules.test",
        transport=_transport(
            {
                "/users/alice/quiet-hours": httpx.Response(
                    200, json={"enabled": True, "start": "22:00", "end": "06:30", "time_zone": "Europe/Paris"}
                ),
                "/users/alice/profile": httpx.Response(200, json={"timezone": "Europe/Paris"}),
                "/users/bob/quiet-hours": httpx.Response(500),
            }
        ),
    )
    quiet = await store.get_quiet_hours("alice")
    assert quiet.enabled is True
    assert quiet.end == time(6, 30)
    assert quiet.override_severities == frozenset({Severity.URGENT})
    assert await store.get_user_time_zone("alice") == "Europe/Paris"
    assert await store.get_quiet_hours("carol") is None
    assert await store.get_user_time_zone("carol") is None
    with pytest.raises(QuietHoursUnavailableError):
        await store.get_quiet_hours("bob")
