from __future__ import annotations

import uuid
from collections import deque
from typing import Any, Callable, Optional

from screener.alerts.rules import AlertRule
from screener.store.base import CHECK_LOG_LIMIT, AlertSettings, apply_partial, load_rule
from screener.utils.time import utc_now_ms
from screener.utils.types import AlertCheckLog


class MemoryAlertStore:
    """
    Process-local alert store. Rules are kept as dicts and re-parsed on every
    read, so callers never share mutable state with the store.
    """

    def __init__(self, clock: Callable[[], int] = utc_now_ms):
        self._rules: dict[str, dict[str, Any]] = {}
        self._clock = clock

    async def list(self) -> list[AlertRule]:
        rules = (load_rule(k, d) for k, d in self._rules.items())
        return [r for r in rules if r is not None]

    async def get(self, alert_id: str) -> Optional[AlertRule]:
        d = self._rules.get(alert_id)
        return load_rule(alert_id, d) if d is not None else None

    async def create(self, fields: dict[str, Any]) -> AlertRule:
        rule = AlertRule.from_dict(
            {
                **fields,
                "id": str(uuid.uuid4()),
                "createdAt": self._clock(),
                "lastTriggered": None,
                "sentBySymbol": {},
            }
        )
        self._rules[rule.id] = rule.to_dict()
        return rule

    async def update(self, alert_id: str, partial: dict[str, Any]) -> Optional[AlertRule]:
        current = await self.get(alert_id)
        if current is None:
            return None
        rule = apply_partial(current, partial)
        self._rules[alert_id] = rule.to_dict()
        return rule

    async def remove(self, alert_id: str) -> None:
        self._rules.pop(alert_id, None)


class MemoryCheckLogStore:
    """Newest-first ring of check-log entries (oldest evicted past the limit)."""

    def __init__(self, limit: int = CHECK_LOG_LIMIT):
        self._entries: deque[AlertCheckLog] = deque(maxlen=limit)

    async def append(self, entry: AlertCheckLog) -> None:
        self._entries.appendleft(entry)

    async def list(self) -> list[AlertCheckLog]:
        return list(self._entries)

    async def clear(self) -> None:
        self._entries.clear()


class MemorySettingsStore:
    def __init__(self, settings: Optional[AlertSettings] = None):
        self._settings = settings or AlertSettings()

    async def get(self) -> AlertSettings:
        return AlertSettings.from_dict(self._settings.to_dict())

    async def update(self, partial: dict[str, Any]) -> AlertSettings:
        self._settings = AlertSettings.from_dict({**self._settings.to_dict(), **partial})
        return await self.get()
