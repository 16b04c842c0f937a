# src/screener/main.py
import asyncio
import logging
import os

import structlog
from dotenv import load_dotenv

from screener.alerts.checklog import CheckLogRecorder
from screener.alerts.dedup import CooldownTracker
from screener.alerts.evaluator import AlertEvaluator
from screener.alerts.notifiers import ConsoleNotifier, NotificationDispatcher
from screener.alerts.scheduler import AlertScheduler
from screener.errors import ConfigurationError
from screener.ingest.bybit import BybitClient, bybit_config_from_env
from screener.ingest.candles import CandleFetcher
from screener.ingest.snapshot import MarketSnapshotFetcher
from screener.notify.telegram import TelegramNotifier, config_from_env
from screener.store.memory import MemoryAlertStore, MemoryCheckLogStore, MemorySettingsStore
from screener.store.redis_store import (
    RedisAlertStore,
    RedisCheckLogStore,
    RedisSettingsStore,
    prefix_from_env,
    redis_from_env,
)

load_dotenv()
log = structlog.get_logger()


def configure_logging() -> None:
    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
    )


def build_stores():
    """Redis stores when REDIS_URL is set, process-local ones otherwise."""
    if not os.getenv("REDIS_URL"):
        log.info("redis_disabled_missing_env")
        return None, MemoryAlertStore(), MemoryCheckLogStore(), MemorySettingsStore()
    redis_client = redis_from_env()
    prefix = prefix_from_env()
    log.info("redis_enabled", prefix=prefix)
    return (
        redis_client,
        RedisAlertStore(redis_client, prefix),
        RedisCheckLogStore(redis_client, prefix),
        RedisSettingsStore(redis_client, prefix),
    )


async def main():
    configure_logging()

    # Stores (external key-value collaborator)
    redis_client, alert_store, log_store, settings_store = build_stores()

    # Seed the notification target from env if the store has none
    env_chat_id = os.getenv("TELEGRAM_CHAT_ID", "").strip()
    if env_chat_id and not (await settings_store.get()).telegram_chat_id:
        await settings_store.update({"telegramChatId": env_chat_id})

    # Exchange
    bybit_cfg = bybit_config_from_env()
    bybit = BybitClient(bybit_cfg)
    await bybit.start()

    # Notifications: Telegram if configured, console otherwise
    tg_notifier = None
    try:
        tg_notifier = TelegramNotifier(config_from_env())
        await tg_notifier.start()
        notifier = tg_notifier
        log.info("telegram_enabled")
    except ConfigurationError:
        notifier = ConsoleNotifier()
        log.info("telegram_disabled_missing_env")

    cooldown = CooldownTracker(alert_store)
    scheduler = AlertScheduler(
        snapshots=MarketSnapshotFetcher(bybit),
        evaluator=AlertEvaluator(CandleFetcher(bybit, bybit_cfg), cooldown),
        dispatcher=NotificationDispatcher(notifier),
        cooldown=cooldown,
        recorder=CheckLogRecorder(log_store),
        alerts=alert_store,
        settings=settings_store,
    )

    await scheduler.start()
    try:
        await asyncio.Event().wait()
    finally:
        # graceful shutdown to avoid unclosed sessions
        await scheduler.stop()
        await bybit.stop()
        if tg_notifier is not None:
            await tg_notifier.stop()
        if redis_client is not None:
            await redis_client.aclose()


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
