from __future__ import annotations

import asyncio
from typing import Any, Optional, Protocol

import structlog

from screener.errors import UpstreamError
from screener.ingest.bybit import BybitConfig
from screener.ingest.parser import parse_kline_rows
from screener.utils.backoff import linear_backoff
from screener.utils.types import Candle, IntervalCode

log = structlog.get_logger("candles")


class KlineSource(Protocol):
    async def get_kline(self, symbol: str, interval: IntervalCode, limit: int) -> list[Any]: ...


class CandleFetcher:
    """
    Fetch recent candles for one symbol, ascending by open time.

    Each attempt races the request against a hard timeout; any failure
    (transport, envelope, timeout, malformed rows) consumes an attempt and is
    followed by a retry_base_s * attempt sleep. Exhausting attempts raises
    UpstreamError. Results are never cached: alert decisions always see fresh
    candles.
    """

    def __init__(self, source: KlineSource, cfg: Optional[BybitConfig] = None):
        self.source = source
        self.cfg = cfg or BybitConfig()

    async def fetch_candles(self, symbol: str, interval: IntervalCode, limit: int) -> list[Candle]:
        attempts = max(1, self.cfg.max_attempts)
        last_err: Optional[BaseException] = None
        for attempt in range(1, attempts + 1):
            try:
                rows = await asyncio.wait_for(
                    self.source.get_kline(symbol, interval, limit),
                    timeout=self.cfg.timeout_s,
                )
                return parse_kline_rows(rows)
            except Exception as e:
                last_err = e
                if attempt < attempts:
                    delay = linear_backoff(attempt, self.cfg.retry_base_s)
                    log.warning(
                        "kline_fetch_retry",
                        symbol=symbol,
                        interval=interval,
                        attempt=attempt,
                        err=_describe(e),
                        backoff_s=delay,
                    )
                    await asyncio.sleep(delay)
        log.warning("kline_fetch_failed", symbol=symbol, interval=interval, attempts=attempts, err=_describe(last_err))
        raise UpstreamError(f"kline fetch for {symbol} failed after {attempts} attempts: {_describe(last_err)}")


def _describe(e: Optional[BaseException]) -> str:
    if e is None:
        return "unknown"
    if isinstance(e, asyncio.TimeoutError):
        return "timeout"
    return str(e) or type(e).__name__
