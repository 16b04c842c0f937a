from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Any, Optional, Protocol

import structlog

from screener.alerts.rules import AlertRule
from screener.utils.types import AlertCheckLog, as_bool

log = structlog.get_logger()

CHECK_LOG_LIMIT = 50


@dataclass(slots=True)
class AlertSettings:
    """Global smart-alert settings. Read-only from the alert core."""
    check_interval_ms: int = 10_000
    max_alerts: int = 50
    auto_filter: bool = True
    adaptive_threshold: bool = False
    telegram_chat_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        return {
            "checkIntervalMs": d["check_interval_ms"],
            "maxAlerts": d["max_alerts"],
            "autoFilter": d["auto_filter"],
            "adaptiveThreshold": d["adaptive_threshold"],
            "telegramChatId": d["telegram_chat_id"],
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "AlertSettings":
        base = cls()
        return cls(
            check_interval_ms=int(d.get("checkIntervalMs", base.check_interval_ms)),
            max_alerts=int(d.get("maxAlerts", base.max_alerts)),
            auto_filter=as_bool(d.get("autoFilter", base.auto_filter)),
            adaptive_threshold=as_bool(d.get("adaptiveThreshold", base.adaptive_threshold)),
            telegram_chat_id=str(d.get("telegramChatId") or ""),
        )


def load_rule(alert_id: str, raw: Any) -> Optional[AlertRule]:
    """
    Parse one stored record (dict or JSON text). An unreadable record is logged
    and skipped so it cannot block the other alerts.
    """
    try:
        d = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
        return AlertRule.from_dict(d)
    except (ValueError, TypeError, KeyError, AttributeError) as e:
        log.warning("alert_record_invalid", alert_id=alert_id, error=str(e))
        return None


def apply_partial(rule: AlertRule, partial: dict[str, Any]) -> AlertRule:
    """Merge camelCase fields into a rule; the id never changes."""
    merged = {**rule.to_dict(), **partial, "id": rule.id}
    return AlertRule.from_dict(merged)


class AlertStore(Protocol):
    async def list(self) -> list[AlertRule]: ...
    async def get(self, alert_id: str) -> Optional[AlertRule]: ...
    async def create(self, fields: dict[str, Any]) -> AlertRule: ...
    async def update(self, alert_id: str, partial: dict[str, Any]) -> Optional[AlertRule]: ...
    async def remove(self, alert_id: str) -> None: ...


class CheckLogStore(Protocol):
    async def append(self, entry: AlertCheckLog) -> None: ...
    async def list(self) -> list[AlertCheckLog]: ...
    async def clear(self) -> None: ...


class SettingsStore(Protocol):
    async def get(self) -> AlertSettings: ...
    async def update(self, partial: dict[str, Any]) -> AlertSettings: ...
