from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Sequence, assert_never

import numpy as np
import structlog

from screener.alerts.dedup import CooldownTracker
from screener.alerts.rules import (
    AlertRule,
    DensityAppearance,
    PriceDecrease,
    PriceIncrease,
    Volatility,
    VolumeSpike,
    candle_window,
)
from screener.errors import UpstreamError
from screener.ingest.candles import CandleFetcher
from screener.utils.concurrency import map_limit
from screener.utils.types import TickerSnapshotEntry

log = structlog.get_logger("evaluator")


@dataclass(slots=True)
class EvaluatorConfig:
    max_kline_coins: int = 200      # candle-based checks only look at the top-N by volume
    kline_concurrency: int = 10
    density_interval: str = "1m"
    density_limit: int = 60
    density_window: int = 20


@dataclass(slots=True)
class EvaluationResult:
    checked_coins: int
    eligible_coins: int
    triggered: list[str] = field(default_factory=list)


class AlertEvaluator:
    """
    Decides which symbols currently satisfy one alert.

    Steps:
      1) universe filter (blacklist, min/max volume) -> checked_coins
      2) cooldown filter when auto_filter is on
      3) the condition test; snapshot-only for volatility and 24h price
         moves, per-symbol candles (top max_kline_coins, bounded concurrency)
         for everything else

    `coins` must already be ranked by descending 24h volume; the triggered
    list keeps that order. A candle failure for one symbol counts as
    "not triggered" for that symbol only.
    """

    def __init__(
        self,
        candles: CandleFetcher,
        cooldown: CooldownTracker,
        cfg: Optional[EvaluatorConfig] = None,
    ):
        self.candles = candles
        self.cooldown = cooldown
        self.cfg = cfg or EvaluatorConfig()

    async def evaluate(
        self,
        rule: AlertRule,
        coins: Sequence[TickerSnapshotEntry],
        *,
        auto_filter: bool,
        now_ms: int,
    ) -> EvaluationResult:
        universe = self.filter_universe(rule, coins)
        eligible = (
            [c for c in universe if not self.cooldown.is_cooling(rule, c.symbol, now_ms)]
            if auto_filter
            else universe
        )
        triggered = await self._triggered(rule, eligible)
        log.debug(
            "alert_evaluated",
            alert=rule.name,
            type=rule.type,
            checked=len(universe),
            eligible=len(eligible),
            matched=len(triggered),
        )
        return EvaluationResult(checked_coins=len(universe), eligible_coins=len(eligible), triggered=triggered)

    @staticmethod
    def filter_universe(rule: AlertRule, coins: Sequence[TickerSnapshotEntry]) -> list[TickerSnapshotEntry]:
        out = []
        for c in coins:
            if c.symbol in rule.blacklist:
                continue
            if rule.min_volume and c.volume_24h < rule.min_volume:
                continue
            if rule.max_volume and c.volume_24h > rule.max_volume:
                continue
            out.append(c)
        return out

    # --- condition dispatch ---

    async def _triggered(self, rule: AlertRule, eligible: list[TickerSnapshotEntry]) -> list[str]:
        cond = rule.condition
        match cond:
            case PriceIncrease(threshold_pct=t) if rule.time_period == "24h":
                return [c.symbol for c in eligible if c.price_change_pct >= t]
            case PriceDecrease(threshold_pct=t) if rule.time_period == "24h":
                return [c.symbol for c in eligible if c.price_change_pct <= -t]
            case PriceIncrease(threshold_pct=t):
                return await self._per_symbol(eligible, lambda s: self._check_price_move(rule, s, t, up=True))
            case PriceDecrease(threshold_pct=t):
                return await self._per_symbol(eligible, lambda s: self._check_price_move(rule, s, t, up=False))
            case Volatility(threshold_pct=t):
                return [c.symbol for c in eligible if c.volatility_pct >= t]
            case VolumeSpike(threshold_pct=t):
                return await self._per_symbol(eligible, lambda s: self._check_volume_spike(rule, s, t))
            case DensityAppearance(max_range_pct=t):
                return await self._per_symbol(eligible, lambda s: self._check_density(s, t))
            case _:
                assert_never(cond)

    async def _per_symbol(
        self,
        eligible: list[TickerSnapshotEntry],
        check: Callable[[str], Awaitable[bool]],
    ) -> list[str]:
        coins = eligible[: self.cfg.max_kline_coins]

        async def run(coin: TickerSnapshotEntry) -> Optional[str]:
            try:
                return coin.symbol if await check(coin.symbol) else None
            except UpstreamError as e:
                log.info("symbol_check_failed", symbol=coin.symbol, err=str(e))
                return None

        results = await map_limit(coins, self.cfg.kline_concurrency, run)
        return [s for s in results if s]

    # --- per-symbol checks (raise UpstreamError on fetch failure) ---

    async def _check_price_move(self, rule: AlertRule, symbol: str, threshold: float, *, up: bool) -> bool:
        interval, limit = candle_window(rule.time_period)
        candles = await self.candles.fetch_candles(symbol, interval, limit)
        if len(candles) < 2:
            return False
        old = candles[0].close
        cur = candles[-1].close
        if old <= 0.0:
            return False
        pct = (cur - old) / old * 100.0
        return pct >= threshold if up else pct <= -threshold

    async def _check_volume_spike(self, rule: AlertRule, symbol: str, threshold: float) -> bool:
        interval, limit = candle_window(rule.time_period)
        candles = await self.candles.fetch_candles(symbol, interval, limit)
        if len(candles) < 2:
            return False
        volumes = np.fromiter((c.volume for c in candles), dtype=np.float64, count=len(candles))
        avg = float(volumes[:-1].mean())
        if avg <= 0.0:
            return False
        increase = (float(volumes[-1]) - avg) / avg * 100.0
        return increase >= threshold

    async def _check_density(self, symbol: str, max_range_pct: float) -> bool:
        candles = await self.candles.fetch_candles(symbol, self.cfg.density_interval, self.cfg.density_limit)
        n = self.cfg.density_window
        if len(candles) < n:
            return False
        closes = np.fromiter((c.close for c in candles[-n:]), dtype=np.float64, count=n)
        lo = float(closes.min())
        hi = float(closes.max())
        if lo <= 0.0:
            return False
        return (hi - lo) / lo * 100.0 <= max_range_pct
