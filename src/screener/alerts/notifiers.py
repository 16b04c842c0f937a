# src/screener/alerts/notifiers.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

import structlog

from screener.alerts.formatting import format_batch_message
from screener.alerts.rules import AlertRule

log = structlog.get_logger("notifier")

BATCH_SIZE = 100


class Notifier(Protocol):
    async def send(self, target: str, text: str) -> bool: ...


class ConsoleNotifier:
    """Prints messages; used when no Telegram bot is configured."""

    async def send(self, target: str, text: str) -> bool:
        print(f"[ALERT -> {target}] {text}", flush=True)
        return True


def partition(symbols: list[str], size: int = BATCH_SIZE) -> list[list[str]]:
    return [symbols[i:i + size] for i in range(0, len(symbols), size)]


@dataclass(slots=True)
class DispatchReport:
    batches: int = 0
    failed_batches: int = 0
    delivered: list[str] = field(default_factory=list)


class NotificationDispatcher:
    """
    Sends one alert's triggered symbols as message-size-bounded batches.

    Batches go out sequentially; a failed batch is logged and the next one
    is still attempted. Nothing raises past dispatch().
    """

    def __init__(self, notifier: Notifier, batch_size: int = BATCH_SIZE):
        self.notifier = notifier
        self.batch_size = batch_size

    async def dispatch(self, target: str, rule: AlertRule, symbols: list[str]) -> DispatchReport:
        batches = partition(symbols, self.batch_size)
        report = DispatchReport(batches=len(batches))
        for i, batch in enumerate(batches):
            text = format_batch_message(rule, batch, i, len(batches))
            try:
                ok = await self.notifier.send(target, text)
            except Exception as e:
                ok = False
                log.warning("notification_batch_failed", alert=rule.name, batch=i + 1, err=str(e))
            else:
                if not ok:
                    log.warning("notification_batch_failed", alert=rule.name, batch=i + 1, err="send returned False")
            if ok:
                report.delivered.extend(batch)
            else:
                report.failed_batches += 1
        log.info(
            "notification_sent",
            alert=rule.name,
            symbols=len(symbols),
            batches=report.batches,
            failed=report.failed_batches,
        )
        return report
