"""Rule store accessors: where the engine gets rules and quiet hours from.

The engine only depends on the ``RuleStore`` protocol. Stores return enabled
rules only, in a stable order, and raise instead of returning an empty
default when the backing system is unavailable.
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Iterable, Protocol, Union

import httpx

from .errors import MalformedRuleError, QuietHoursUnavailableError, RuleStoreUnavailableError
from .models.quiet_hours import QuietHoursConfig
from .models.rules import AlertRule, MalformedRule

logger = logging.getLogger(__name__)

StoredRule = Union[AlertRule, MalformedRule]


class RuleStore(Protocol):
    async def get_active_rules_for_user(self, user_id: str) -> list[StoredRule]: ...

    async def get_quiet_hours(self, user_id: str) -> QuietHoursConfig | None: ...

    async def get_user_time_zone(self, user_id: str) -> str | None: ...


def _sort_key(rule: StoredRule) -> tuple[str, str]:
    return (rule.name or "", rule.id)


def parse_rule_records(records: Iterable[Any], user_id: str | None = None) -> list[StoredRule]:
    """Build rules from raw records, keeping unparseable ones as placeholders."""
    out: list[StoredRule] = []
    for idx, raw in enumerate(records):
        if not isinstance(raw, dict):
            out.append(
                MalformedRule(id=f"#{idx}", user_id=user_id or "", reason="Rule is not an object")
            )
            continue
        data = dict(raw)
        if user_id and not data.get("user_id"):
            data["user_id"] = user_id
        try:
            out.append(AlertRule.from_dict(data))
        except MalformedRuleError as exc:
            logger.warning("Stored rule %s is malformed: %s", data.get("id"), exc)
            out.append(
                MalformedRule(
                    id=str(data.get("id") or f"#{idx}"),
                    user_id=str(data.get("user_id") or ""),
                    reason=str(exc),
                    enabled=bool(data.get("enabled", True)),
                    name=str(data.get("name") or ""),
                )
            )
    return out


class InMemoryRuleStore:
    """Dict-backed store, used for local runs, file-based config and tests."""

    def __init__(self, rules: Iterable[StoredRule] = ()) -> None:
        self._rules: dict[str, dict[str, StoredRule]] = {}
        self._quiet_hours: dict[str, QuietHoursConfig] = {}
        self._time_zones: dict[str, str] = {}
        for rule in rules:
            self.add_rule(rule)

    def add_rule(self, rule: StoredRule) -> StoredRule:
        self._rules.setdefault(rule.user_id, {})[rule.id] = rule
        return rule

    def remove_rule(self, user_id: str, rule_id: str) -> bool:
        return self._rules.get(user_id, {}).pop(rule_id, None) is not None

    def set_rule_enabled(self, user_id: str, rule_id: str, enabled: bool) -> bool:
        rule = self._rules.get(user_id, {}).get(rule_id)
        if not isinstance(rule, AlertRule):
            return False
        # rules are frozen; swap in a copy so earlier snapshots stay intact
        self._rules[user_id][rule_id] = replace(rule, enabled=enabled)
        return True

    def rules_for_user(self, user_id: str) -> list[StoredRule]:
        return sorted(self._rules.get(user_id, {}).values(), key=_sort_key)

    def set_quiet_hours(self, config: QuietHoursConfig) -> None:
        self._quiet_hours[config.user_id] = config

    def set_time_zone(self, user_id: str, zone: str | None) -> None:
        if zone:
            self._time_zones[user_id] = zone
        else:
            self._time_zones.pop(user_id, None)

    async def get_active_rules_for_user(self, user_id: str) -> list[StoredRule]:
        return [r for r in self.rules_for_user(user_id) if r.enabled]

    async def get_quiet_hours(self, user_id: str) -> QuietHoursConfig | None:
        return self._quiet_hours.get(user_id)

    async def get_user_time_zone(self, user_id: str) -> str | None:
        return self._time_zones.get(user_id)

    def load_rules_file(self, path: str | Path) -> int:
        """Load rules, quiet hours and time zones from a JSON file.

        The file holds either a list of rules or an object with ``rules``,
        ``quiet_hours`` and ``time_zones`` keys. Returns the number of rules
        loaded (malformed ones included as placeholders).
        """
        data = json.loads(Path(path).read_text())
        if isinstance(data, list):
            data = {"rules": data}
        rules = parse_rule_records(data.get("rules") or [])
        for rule in rules:
            self.add_rule(rule)
        for raw in data.get("quiet_hours") or []:
            try:
                self.set_quiet_hours(QuietHoursConfig.from_dict(raw))
            except (MalformedRuleError, TypeError, ValueError) as exc:
                raise ValueError(f"Invalid quiet hours entry {raw!r}: {exc}") from exc
        for user_id, zone in (data.get("time_zones") or {}).items():
            self.set_time_zone(str(user_id), zone)
        logger.info("Loaded %d rule(s) from %s", len(rules), path)
        return len(rules)


class HttpRuleStore:
    """Reads rules and quiet hours from the platform's REST API."""

    def __init__(
        self,
        base_url: str,
        timeout_s: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._transport = transport
        self._headers = headers or {}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_s,
            transport=self._transport,
            headers=self._headers,
        )

    async def _get_json(self, path: str, allow_missing: bool = False) -> Any:
        async with self._client() as client:
            response = await client.get(path)
            if allow_missing and response.status_code == 404:
                return None
            response.raise_for_status()
            return response.json()

    async def get_active_rules_for_user(self, user_id: str) -> list[StoredRule]:
        try:
            data = await self._get_json(f"/users/{user_id}/alert-rules")
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Rule store request failed for user %s: %s", user_id, exc)
            raise RuleStoreUnavailableError(f"Rule store request failed: {exc}") from exc
        if isinstance(data, dict):
            data = data.get("rules")
        if not isinstance(data, list):
            raise RuleStoreUnavailableError("Rule store returned an unexpected payload")
        rules = parse_rule_records(data, user_id)
        return sorted((r for r in rules if r.enabled), key=_sort_key)

    async def get_quiet_hours(self, user_id: str) -> QuietHoursConfig | None:
        try:
            data = await self._get_json(f"/users/{user_id}/quiet-hours", allow_missing=True)
            if data is None:
                return None
            data = {"user_id": user_id, **data}
            return QuietHoursConfig.from_dict(data)
        except (httpx.HTTPError, MalformedRuleError, TypeError, ValueError) as exc:
            logger.error("Quiet hours request failed for user %s: %s", user_id, exc)
            raise QuietHoursUnavailableError(f"Quiet hours unavailable: {exc}") from exc

    async def get_user_time_zone(self, user_id: str) -> str | None:
        try:
            data = await self._get_json(f"/users/{user_id}/profile", allow_missing=True)
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Profile request failed for user %s: %s", user_id, exc)
            raise RuleStoreUnavailableError(f"Profile request failed: {exc}") from exc
        if not isinstance(data, dict):
            return None
        return data.get("time_zone") or data.get("timezone") or None


__all__ = [
    "HttpRuleStore",
    "InMemoryRuleStore",
    "RuleStore",
    "StoredRule",
    "parse_rule_records",
]
