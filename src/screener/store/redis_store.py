# src/screener/store/redis_store.py
from __future__ import annotations

import json
import os
import uuid
from typing import Any, Callable, Optional

from redis.asyncio import Redis

from screener.alerts.rules import AlertRule
from screener.store.base import CHECK_LOG_LIMIT, AlertSettings, apply_partial, load_rule
from screener.utils.time import utc_now_ms
from screener.utils.types import AlertCheckLog

DEFAULT_PREFIX = "screener"


def key(prefix: str, name: str) -> str:
    # {prefix}:{name}  e.g. screener:alerts
    return f"{prefix}:{name}"


def redis_from_env() -> Redis:
    return Redis.from_url(os.getenv("REDIS_URL", "redis://localhost:6379/0"), decode_responses=True)


def prefix_from_env() -> str:
    return os.getenv("SCREENER_PREFIX", DEFAULT_PREFIX)


class RedisAlertStore:
    """
    Alert rules as JSON values in one hash: HSET {prefix}:alerts <id> <json>.
    The list order is creation order (createdAt, then id).
    """

    def __init__(self, r: Redis, prefix: str = DEFAULT_PREFIX, clock: Callable[[], int] = utc_now_ms):
        self.r = r
        self.key = key(prefix, "alerts")
        self._clock = clock

    async def list(self) -> list[AlertRule]:
        raw = await self.r.hgetall(self.key)
        rules = [r for r in (load_rule(k, v) for k, v in raw.items()) if r is not None]
        rules.sort(key=lambda a: (a.created_at, a.id))
        return rules

    async def get(self, alert_id: str) -> Optional[AlertRule]:
        v = await self.r.hget(self.key, alert_id)
        return load_rule(alert_id, v) if v is not None else None

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
        await self.r.hset(self.key, rule.id, json.dumps(rule.to_dict()))
        return rule

    async def update(self, alert_id: str, partial: dict[str, Any]) -> Optional[AlertRule]:
        current = await self.get(alert_id)
        if current is None:
            return None
        rule = apply_partial(current, partial)
        await self.r.hset(self.key, alert_id, json.dumps(rule.to_dict()))
        return rule

    async def remove(self, alert_id: str) -> None:
        await self.r.hdel(self.key, alert_id)


class RedisCheckLogStore:
    """LPUSH + LTRIM keeps the newest `limit` entries, newest first."""

    def __init__(self, r: Redis, prefix: str = DEFAULT_PREFIX, limit: int = CHECK_LOG_LIMIT):
        self.r = r
        self.key = key(prefix, "checklog")
        self.limit = limit

    async def append(self, entry: AlertCheckLog) -> None:
        await self.r.lpush(self.key, json.dumps(entry.to_dict()))
        await self.r.ltrim(self.key, 0, self.limit - 1)

    async def list(self) -> list[AlertCheckLog]:
        raw = await self.r.lrange(self.key, 0, self.limit - 1)
        return [AlertCheckLog.from_dict(json.loads(v)) for v in raw]

    async def clear(self) -> None:
        await self.r.delete(self.key)


class RedisSettingsStore:
    def __init__(self, r: Redis, prefix: str = DEFAULT_PREFIX):
        self.r = r
        self.key = key(prefix, "settings")

    async def get(self) -> AlertSettings:
        v = await self.r.get(self.key)
        if v is None:
            return AlertSettings()
        return AlertSettings.from_dict(json.loads(v))

    async def update(self, partial: dict[str, Any]) -> AlertSettings:
        current = await self.get()
        settings = AlertSettings.from_dict({**current.to_dict(), **partial})
        await self.r.set(self.key, json.dumps(settings.to_dict()))
        return settings
