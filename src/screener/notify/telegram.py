from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from typing import Optional

import aiohttp
import structlog

from screener.errors import ConfigurationError, DeliveryError
from screener.utils.backoff import jitter, next_backoff

log = structlog.get_logger("telegram")

# --------- small rate limiter (token bucket) ----------

class RateLimiter:
    def __init__(self, rate_per_sec: float, burst: int = 1):
        self.rate = float(rate_per_sec)
        self.capacity = int(burst)
        self.tokens = float(burst)
        self.updated: Optional[float] = None
        self._lock = asyncio.Lock()

    async def acquire(self):
        async with self._lock:
            loop = asyncio.get_running_loop()
            now = loop.time()
            if self.updated is None:
                self.updated = now
            # refill
            self.tokens = min(self.capacity, self.tokens + (now - self.updated) * self.rate)
            self.updated = now
            # wait if no token
            if self.tokens < 1.0:
                needed = 1.0 - self.tokens
                await asyncio.sleep(needed / self.rate)
                self.updated = loop.time()
                self.tokens = 1.0
            self.tokens -= 1.0

# --------- config & client ----------

@dataclass(slots=True)
class TelegramConfig:
    bot_token: str
    api_base: str = "https://api.telegram.org"
    parse_mode: Optional[str] = None  # "HTML" or "MarkdownV2" or None
    timeout_s: float = 8.0
    per_chat_rate_per_sec: float = 1.0
    per_chat_burst: int = 3
    max_retries: int = 1              # one network call per batch unless raised
    initial_backoff_s: float = 0.5
    max_backoff_s: float = 8.0


def config_from_env() -> TelegramConfig:
    token = os.getenv("TELEGRAM_BOT_TOKEN")
    if not token:
        raise ConfigurationError("TELEGRAM_BOT_TOKEN is not set")
    return TelegramConfig(
        bot_token=token,
        api_base=os.getenv("TELEGRAM_API_BASE", "https://api.telegram.org").rstrip("/"),
        parse_mode=os.getenv("TELEGRAM_PARSE_MODE") or None,
        max_retries=int(os.getenv("TELEGRAM_MAX_RETRIES", "1")),
    )


class TelegramNotifier:
    """
    Sends messages through the Bot API sendMessage method.

    send() is rate limited per chat and never raises: delivery failures are
    logged and reported as False so the dispatcher can move on to the next
    batch.
    """
    def __init__(self, cfg: TelegramConfig):
        self.cfg = cfg
        self._session: Optional[aiohttp.ClientSession] = None
        self._limiters: dict[str, RateLimiter] = {}

    async def start(self):
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.cfg.timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def stop(self):
        if self._session:
            await self._session.close()
            self._session = None

    def _limiter(self, chat_id: str) -> RateLimiter:
        rl = self._limiters.get(chat_id)
        if rl is None:
            rl = RateLimiter(rate_per_sec=self.cfg.per_chat_rate_per_sec, burst=self.cfg.per_chat_burst)
            self._limiters[chat_id] = rl
        return rl

    async def send(self, target: str, text: str) -> bool:
        await self._limiter(target).acquire()
        try:
            await self._send(target, text)
            return True
        except DeliveryError as e:
            log.error("telegram_give_up", chat_id=target, err=str(e))
            return False

    async def _send(self, chat_id: str, text: str) -> None:
        if self._session is None:
            await self.start()
        assert self._session is not None
        url = f"{self.cfg.api_base}/bot{self.cfg.bot_token}/sendMessage"
        payload = {"chat_id": chat_id, "text": text, "disable_web_page_preview": "true"}
        if self.cfg.parse_mode:
            payload["parse_mode"] = self.cfg.parse_mode

        backoff = self.cfg.initial_backoff_s
        last = "no attempt made"
        attempts = max(1, self.cfg.max_retries)
        for attempt in range(1, attempts + 1):
            retry_after: Optional[float] = None
            try:
                async with self._session.post(url, data=payload) as resp:
                    if resp.status == 200:
                        return
                    detail = await _maybe_text(resp)
                    last = f"HTTP {resp.status}: {detail[:200]}"
                    log.warning("telegram_send_failed", status=resp.status, body=detail, attempt=attempt)
                    if resp.status == 429:
                        # Telegram may include retry_after (seconds)
                        try:
                            data = await resp.json(content_type=None)
                            ra = data.get("parameters", {}).get("retry_after")
                            if ra:
                                retry_after = float(ra)
                        except Exception:
                            pass
                    elif not 500 <= resp.status < 600:
                        # other 4xx: don't retry
                        raise DeliveryError(last)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last = f"{type(e).__name__}: {e}"
                log.warning("telegram_network_error", err=str(e), attempt=attempt)
            if attempt < attempts:
                await asyncio.sleep(retry_after if retry_after is not None else jitter(backoff))
                backoff = next_backoff(backoff, self.cfg.max_backoff_s)
        raise DeliveryError(last)


async def _maybe_text(resp: aiohttp.ClientResponse) -> str:
    try:
        return await resp.text()
    except Exception:
        return "<no body>"
