import asyncio

import pytest

from screener.alerts.checklog import CheckLogRecorder
from screener.alerts.dedup import CooldownTracker
from screener.alerts.evaluator import AlertEvaluator
from screener.alerts.notifiers import NotificationDispatcher
from screener.alerts.scheduler import SKIPPED_MSG, AlertScheduler
from screener.errors import UpstreamError
from screener.ingest.bybit import BybitConfig
from screener.ingest.candles import CandleFetcher
from screener.ingest.snapshot import MarketSnapshotFetcher
from screener.store.base import AlertSettings
from screener.store.memory import MemoryAlertStore, MemoryCheckLogStore, MemorySettingsStore
from tests.helpers.fakes import FakeKlineSource, FakeNotifier, FakeTickerSource, ticker_row

NOW = 1_700_000_000_000

PUMP = {"name": "Pumps", "type": "price_increase", "timePeriod": "24h", "threshold": 20,
        "minVolume": 0, "blacklist": [], "enabled": True}


class Harness:
    def __init__(self, rows=None, *, chat_id="chat-1", notifier=None, tickers=None, **settings):
        self.clock_ms = NOW
        self.tickers = tickers or FakeTickerSource(rows or [])
        self.klines = FakeKlineSource()
        self.notifier = notifier or FakeNotifier()
        self.alerts = MemoryAlertStore(clock=self.clock)
        self.logs = MemoryCheckLogStore()
        self.settings = MemorySettingsStore(AlertSettings(telegram_chat_id=chat_id, **settings))
        cooldown = CooldownTracker(self.alerts)
        self.scheduler = AlertScheduler(
            snapshots=MarketSnapshotFetcher(self.tickers),
            evaluator=AlertEvaluator(CandleFetcher(self.klines, BybitConfig(retry_base_s=0.0)), cooldown),
            dispatcher=NotificationDispatcher(self.notifier),
            cooldown=cooldown,
            recorder=CheckLogRecorder(self.logs, clock=self.clock),
            alerts=self.alerts,
            settings=self.settings,
            clock=self.clock,
        )

    def clock(self):
        return self.clock_ms


@pytest.mark.asyncio
async def test_missing_target_records_system_entry_and_stops():
    h = Harness([ticker_row("BTCUSDT", 121, prev=100)], chat_id="")
    await h.alerts.create(PUMP)

    await h.scheduler.run_pass()

    entries = await h.logs.list()
    assert len(entries) == 1
    assert entries[0].alert_name == "System"
    assert "target" in entries[0].error
    assert h.tickers.calls == 0
    assert h.notifier.sent == []
    assert h.scheduler.checking is False


@pytest.mark.asyncio
async def test_no_alerts_records_system_entry():
    h = Harness([ticker_row("BTCUSDT", 121, prev=100)])
    await h.scheduler.run_pass()
    entries = await h.logs.list()
    assert [e.alert_name for e in entries] == ["System"]
    assert "no alerts" in entries[0].error
    assert h.tickers.calls == 0


@pytest.mark.asyncio
async def test_snapshot_failure_aborts_pass_without_touching_cooldown():
    h = Harness(tickers=FakeTickerSource(error=UpstreamError("retCode 10006: too many visits")))
    rule = await h.alerts.create(PUMP)

    await h.scheduler.run_pass()

    entries = await h.logs.list()
    assert len(entries) == 1
    assert entries[0].alert_name == "System"
    assert "too many visits" in entries[0].error
    stored = await h.alerts.get(rule.id)
    assert stored.sent_by_symbol == {}
    assert stored.last_triggered is None
    assert h.scheduler.checking is False


@pytest.mark.asyncio
async def test_end_to_end_notifies_marks_cooldown_and_logs():
    h = Harness([ticker_row("BTCUSDT", 121, prev=100), ticker_row("ETHUSDT", 101, prev=100)])
    rule = await h.alerts.create(PUMP)

    await h.scheduler.run_pass()

    assert len(h.notifier.sent) == 1
    target, text = h.notifier.sent[0]
    assert target == "chat-1"
    assert "BTCUSDT" in text and "ETHUSDT" not in text

    stored = await h.alerts.get(rule.id)
    assert stored.sent_by_symbol == {"BTCUSDT": NOW}
    assert stored.last_triggered == NOW

    (entry,) = await h.logs.list()
    assert entry.alert_name == "Pumps"
    assert entry.checked_coins == 2
    assert entry.matched_coins == 1
    assert entry.sent_symbols == ["BTCUSDT"]
    assert entry.error is None


@pytest.mark.asyncio
async def test_unreadable_alert_record_does_not_block_healthy_alerts():
    h = Harness([ticker_row("BTCUSDT", 121, prev=100)])
    h.alerts._rules["broken"] = {**PUMP, "id": "broken", "threshold": None}
    rule = await h.alerts.create(PUMP)

    await h.scheduler.run_pass()

    assert len(h.notifier.sent) == 1
    assert "BTCUSDT" in h.notifier.sent[0][1]
    entries = await h.logs.list()
    assert [e.alert_name for e in entries] == ["Pumps"]
    assert entries[0].error is None
    assert (await h.alerts.get(rule.id)).sent_by_symbol == {"BTCUSDT": NOW}


@pytest.mark.asyncio
async def test_second_pass_within_cooldown_is_suppressed():
    h = Harness([ticker_row("BTCUSDT", 121, prev=100)], auto_filter=True)
    await h.alerts.create(PUMP)

    await h.scheduler.run_pass()
    h.clock_ms += 60_000
    await h.scheduler.run_pass()

    assert len(h.notifier.sent) == 1
    latest = (await h.logs.list())[0]
    assert latest.checked_coins == 1
    assert latest.matched_coins == 0


@pytest.mark.asyncio
async def test_without_auto_filter_repeats_are_sent():
    h = Harness([ticker_row("BTCUSDT", 121, prev=100)], auto_filter=False)
    await h.alerts.create(PUMP)
    await h.scheduler.run_pass()
    await h.scheduler.run_pass()
    assert len(h.notifier.sent) == 2


@pytest.mark.asyncio
async def test_failed_delivery_still_marks_cooldown():
    h = Harness([ticker_row("BTCUSDT", 121, prev=100)], notifier=FakeNotifier(fail_on={0}))
    rule = await h.alerts.create(PUMP)

    await h.scheduler.run_pass()

    stored = await h.alerts.get(rule.id)
    assert stored.sent_by_symbol == {"BTCUSDT": NOW}
    (entry,) = await h.logs.list()
    assert entry.matched_coins == 1
    assert entry.sent_symbols == []


@pytest.mark.asyncio
async def test_max_alerts_and_disabled_alerts():
    h = Harness([ticker_row("BTCUSDT", 121, prev=100)], max_alerts=2)
    await h.alerts.create({**PUMP, "name": "off", "enabled": False})
    await h.alerts.create({**PUMP, "name": "on"})
    await h.alerts.create({**PUMP, "name": "beyond limit"})

    await h.scheduler.run_pass()

    assert [e.alert_name for e in await h.logs.list()] == ["on"]


@pytest.mark.asyncio
async def test_sent_symbols_capped_at_twenty():
    rows = [ticker_row(f"S{i:02d}USDT", 130, prev=100, turnover=1_000 - i) for i in range(30)]
    h = Harness(rows)
    await h.alerts.create(PUMP)
    await h.scheduler.run_pass()
    (entry,) = await h.logs.list()
    assert entry.matched_coins == 30
    assert entry.sent_symbols == [f"S{i:02d}USDT" for i in range(20)]


@pytest.mark.asyncio
async def test_evaluation_error_is_logged_per_alert(monkeypatch):
    h = Harness([ticker_row("BTCUSDT", 121, prev=100)])
    await h.alerts.create({**PUMP, "name": "broken"})
    await h.alerts.create({**PUMP, "name": "fine"})
    real = h.scheduler.evaluator.evaluate

    async def evaluate(rule, coins, **kw):
        if rule.name == "broken":
            raise RuntimeError("bad rule")
        return await real(rule, coins, **kw)

    monkeypatch.setattr(h.scheduler.evaluator, "evaluate", evaluate)
    await h.scheduler.run_pass()

    entries = {e.alert_name: e for e in await h.logs.list()}
    assert entries["broken"].error == "bad rule"
    assert entries["fine"].matched_coins == 1


class _BlockingTickers:
    def __init__(self, rows):
        self.rows = rows
        self.release = asyncio.Event()
        self.entered = asyncio.Event()

    async def get_tickers(self):
        self.entered.set()
        await self.release.wait()
        return self.rows


@pytest.mark.asyncio
async def test_tick_during_running_pass_is_skipped():
    tickers = _BlockingTickers([ticker_row("BTCUSDT", 121, prev=100)])
    h = Harness(tickers=tickers)
    await h.alerts.create(PUMP)

    first = asyncio.create_task(h.scheduler.tick())
    await asyncio.wait_for(tickers.entered.wait(), timeout=1.0)
    assert h.scheduler.checking is True

    await h.scheduler.tick()
    entries = await h.logs.list()
    assert entries[0].alert_name == "System"
    assert entries[0].error == SKIPPED_MSG

    tickers.release.set()
    await asyncio.wait_for(first, timeout=1.0)
    assert h.scheduler.checking is False
    assert len(h.notifier.sent) == 1


@pytest.mark.asyncio
async def test_start_runs_immediately_then_periodically_until_stopped():
    h = Harness(chat_id="", check_interval_ms=20)
    await h.scheduler.start()
    await asyncio.sleep(0.1)
    await h.scheduler.stop()

    n = len(await h.logs.list())
    assert n >= 2
    await asyncio.sleep(0.06)
    assert len(await h.logs.list()) == n
