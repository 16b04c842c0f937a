from __future__ import annotations

from typing import Iterable, TYPE_CHECKING

import structlog

from screener.alerts.rules import AlertRule
from screener.utils.time import DAY_MS, ms_since

if TYPE_CHECKING:
    from screener.store.base import AlertStore

log = structlog.get_logger("cooldown")

SYMBOL_COOLDOWN_MS = DAY_MS


class CooldownTracker:
    """
    Per-alert, per-symbol cooldown over the alert's sent_by_symbol map.

    A symbol is cooling while now - last_sent < 24h; at exactly 24h it is
    eligible again. Expired entries stay in the map. All writes go through
    the alert store.
    """

    def __init__(self, store: "AlertStore", window_ms: int = SYMBOL_COOLDOWN_MS):
        self.store = store
        self.window_ms = window_ms

    def is_cooling(self, rule: AlertRule, symbol: str, now_ms: int) -> bool:
        last = rule.sent_by_symbol.get(symbol)
        if last is None:
            return False
        return ms_since(last, now_ms) < self.window_ms

    async def mark_sent(self, rule_id: str, symbols: Iterable[str], now_ms: int) -> None:
        """Stamp every symbol with now and set last_triggered, merging into the stored map."""
        current = await self.store.get(rule_id)
        if current is None:
            log.warning("cooldown_mark_missing_alert", alert_id=rule_id)
            return
        sent = dict(current.sent_by_symbol)
        for sym in symbols:
            sent[sym] = now_ms
        await self.store.update(rule_id, {"sentBySymbol": sent, "lastTriggered": now_ms})

    async def reset(self, rule_id: str) -> None:
        """Clear the whole map and last_triggered; every symbol is re-armed."""
        await self.store.update(rule_id, {"sentBySymbol": {}, "lastTriggered": None})
