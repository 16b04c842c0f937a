from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp
import structlog

from screener.errors import UpstreamError
from screener.utils.time import DAY_MS, MINUTE_MS, utc_now_ms
from screener.utils.types import IntervalCode

log = structlog.get_logger("bybit")

# logical interval code -> (bybit v5 code, interval length ms)
INTERVALS: dict[str, tuple[str, int]] = {
    "1m": ("1", MINUTE_MS),
    "3m": ("3", 3 * MINUTE_MS),
    "5m": ("5", 5 * MINUTE_MS),
    "15m": ("15", 15 * MINUTE_MS),
    "30m": ("30", 30 * MINUTE_MS),
    "60m": ("60", 60 * MINUTE_MS),
    "D": ("D", DAY_MS),
    "W": ("W", 7 * DAY_MS),
    "M": ("M", 30 * DAY_MS),
}


@dataclass(slots=True)
class BybitConfig:
    base_url: str = "https://api.bybit.com"
    category: str = "linear"       # USDT perpetuals
    timeout_s: float = 10.0        # hard per-call timeout for kline requests
    max_attempts: int = 3          # kline attempts before UpstreamError
    retry_base_s: float = 1.0      # delay after attempt n = retry_base_s * n


def bybit_config_from_env() -> BybitConfig:
    return BybitConfig(
        base_url=os.getenv("BYBIT_BASE_URL", "https://api.bybit.com").rstrip("/"),
        category=os.getenv("BYBIT_CATEGORY", "linear"),
        timeout_s=float(os.getenv("BYBIT_TIMEOUT_S", "10")),
        max_attempts=int(os.getenv("BYBIT_MAX_ATTEMPTS", "3")),
        retry_base_s=float(os.getenv("BYBIT_RETRY_BASE_S", "1.0")),
    )


class BybitClient:
    """
    Thin Bybit v5 REST client (market endpoints only).

    Every call is one network round trip; transport failures, non-200
    responses, undecodable bodies and non-zero retCode envelopes all surface
    as UpstreamError. Retrying is the caller's job (see CandleFetcher).

    Usage:
        client = BybitClient(bybit_config_from_env())
        await client.start()
        rows = await client.get_tickers()
        await client.stop()
    """

    def __init__(self, cfg: Optional[BybitConfig] = None):
        self.cfg = cfg or BybitConfig()
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(headers={"Accept": "application/json"})

    async def stop(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    # ---------------------------- endpoints ---------------------------- #

    async def get_tickers(self) -> list[dict]:
        result = await self._get("/v5/market/tickers", {"category": self.cfg.category})
        rows = result.get("list")
        if not isinstance(rows, list):
            raise UpstreamError("tickers response has no list")
        return rows

    async def get_kline(self, symbol: str, interval: IntervalCode, limit: int) -> list[Any]:
        code, interval_ms = INTERVALS[interval]
        end = utc_now_ms()
        start = end - limit * interval_ms
        result = await self._get(
            "/v5/market/kline",
            {
                "category": self.cfg.category,
                "symbol": symbol,
                "interval": code,
                "start": str(start),
                "end": str(end),
                "limit": str(limit),
            },
        )
        rows = result.get("list")
        if not isinstance(rows, list):
            raise UpstreamError(f"kline response for {symbol} has no list")
        return rows

    # --------------------------- core internals ------------------------ #

    async def _get(self, path: str, params: dict[str, str]) -> dict:
        if self._session is None:
            await self.start()
        assert self._session is not None
        url = f"{self.cfg.base_url}{path}"
        try:
            async with self._session.get(url, params=params) as resp:
                if resp.status != 200:
                    body = await _maybe_text(resp)
                    raise UpstreamError(f"HTTP {resp.status}: {body[:200]}")
                try:
                    j = await resp.json(content_type=None)
                except ValueError as e:
                    raise UpstreamError(f"invalid JSON from {path}: {e}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UpstreamError(f"{path}: {type(e).__name__}: {e}") from e

        if not isinstance(j, dict):
            raise UpstreamError(f"unexpected envelope from {path}")
        if j.get("retCode") != 0:
            raise UpstreamError(str(j.get("retMsg") or "Bybit API error"))
        result = j.get("result")
        if not isinstance(result, dict):
            raise UpstreamError(f"envelope from {path} has no result")
        return result


async def _maybe_text(resp: aiohttp.ClientResponse) -> str:
    try:
        return await resp.text()
    except Exception:
        return "<no body>"
