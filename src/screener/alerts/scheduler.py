from __future__ import annotations

import asyncio
from typing import Callable, Optional

import structlog

from screener.alerts.checklog import CheckLogRecorder
from screener.alerts.dedup import CooldownTracker
from screener.alerts.evaluator import AlertEvaluator
from screener.alerts.notifiers import NotificationDispatcher
from screener.alerts.rules import AlertRule
from screener.errors import ConfigurationError, UpstreamError
from screener.ingest.snapshot import MarketSnapshotFetcher, rank_by_volume
from screener.store.base import AlertSettings, AlertStore, SettingsStore
from screener.utils.time import utc_now_ms
from screener.utils.types import TickerSnapshotEntry

log = structlog.get_logger("scheduler")

SKIPPED_MSG = "skipped: previous pass still running"


class AlertScheduler:
    """
    Drives alert passes: one immediately on start(), then every
    settings.check_interval_ms.

    Lifecycle:
      - Idle -> Checking -> Idle per pass; `checking` is True only while a
        pass is in flight
      - a tick that fires while a pass is running is skipped (not queued)
        and leaves a System check-log entry
      - stop() cancels the timer; an in-flight pass is allowed to finish

    Every failure ends in a check-log entry; nothing propagates to the caller.
    Alerts and settings are read once at the start of a pass.
    """

    def __init__(
        self,
        *,
        snapshots: MarketSnapshotFetcher,
        evaluator: AlertEvaluator,
        dispatcher: NotificationDispatcher,
        cooldown: CooldownTracker,
        recorder: CheckLogRecorder,
        alerts: AlertStore,
        settings: SettingsStore,
        clock: Callable[[], int] = utc_now_ms,
    ):
        self.snapshots = snapshots
        self.evaluator = evaluator
        self.dispatcher = dispatcher
        self.cooldown = cooldown
        self.recorder = recorder
        self.alerts = alerts
        self.settings = settings
        self.clock = clock

        self._checking = False
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._inflight: set[asyncio.Task] = set()

    @property
    def checking(self) -> bool:
        return self._checking

    # ---------------------------- public API ---------------------------- #

    async def start(self) -> None:
        self._stop.clear()
        self._task = asyncio.create_task(self._loop(), name="alerts-scheduler")

    async def stop(self, *, wait: bool = True) -> None:
        self._stop.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if wait and self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    async def tick(self) -> None:
        """One timer firing: run a pass unless one is already in flight."""
        if self._checking:
            log.warning("alert_pass_skipped", reason=SKIPPED_MSG)
            await self.recorder.system(SKIPPED_MSG)
            return
        await self.run_pass()

    async def run_pass(self) -> None:
        self._checking = True
        try:
            await self._pass()
        except Exception as e:
            log.exception("alert_pass_error", err=str(e))
            await self.recorder.system(str(e) or type(e).__name__)
        finally:
            self._checking = False

    # --------------------------- core internals ------------------------- #

    async def _loop(self) -> None:
        while not self._stop.is_set():
            self._spawn_tick()
            interval_s = await self._interval_s()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval_s)
            except asyncio.TimeoutError:
                pass

    def _spawn_tick(self) -> None:
        t = asyncio.create_task(self.tick(), name="alerts-pass")
        self._inflight.add(t)
        t.add_done_callback(self._inflight.discard)

    async def _interval_s(self) -> float:
        try:
            settings = await self.settings.get()
            ms = settings.check_interval_ms
        except Exception as e:
            log.warning("settings_read_failed", err=str(e))
            ms = AlertSettings().check_interval_ms
        return max(ms, 1) / 1000.0

    async def _pass(self) -> None:
        settings = await self.settings.get()
        alerts = await self.alerts.list()
        target = settings.telegram_chat_id

        if not target or not alerts:
            err = ConfigurationError(
                "notification target is not configured" if not target else "no alerts configured"
            )
            log.info("alert_pass_skipped", reason=str(err))
            await self.recorder.system(str(err))
            return

        log.debug("alert_pass_started", alerts=len(alerts))
        try:
            snapshot = await self.snapshots.fetch_snapshot()
        except UpstreamError as e:
            log.warning("alert_pass_error", stage="snapshot", err=str(e))
            await self.recorder.system(str(e))
            return

        ranked = rank_by_volume(snapshot)
        to_check = alerts[: max(1, settings.max_alerts)]
        for rule in to_check:
            if not rule.enabled:
                continue
            await self._run_alert(rule, ranked, settings, target)
        log.info("alert_pass_finished", alerts=len(to_check), symbols=len(ranked))

    async def _run_alert(
        self,
        rule: AlertRule,
        ranked: list[TickerSnapshotEntry],
        settings: AlertSettings,
        target: str,
    ) -> None:
        started = self.clock()
        try:
            result = await self.evaluator.evaluate(
                rule, ranked, auto_filter=settings.auto_filter, now_ms=started
            )
        except Exception as e:
            log.exception("alert_evaluation_failed", alert=rule.name, err=str(e))
            await self.recorder.record(rule.name, time=started, error=str(e) or type(e).__name__)
            return

        delivered: list[str] = []
        error: Optional[str] = None
        if result.triggered:
            report = await self.dispatcher.dispatch(target, rule, result.triggered)
            delivered = report.delivered
            # cooldown is marked for every triggered symbol, delivered or not
            try:
                await self.cooldown.mark_sent(rule.id, result.triggered, self.clock())
            except Exception as e:
                log.error("cooldown_mark_failed", alert=rule.name, err=str(e))
                error = f"cooldown update failed: {e}"

        await self.recorder.record(
            rule.name,
            time=started,
            checked=result.checked_coins,
            matched=len(result.triggered),
            sent=delivered,
            error=error,
        )
