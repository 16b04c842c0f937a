from __future__ import annotations

import math
from typing import Any, Iterable, Optional

from screener.errors import UpstreamError
from screener.utils.types import Candle, TickerSnapshotEntry


def _to_float(v: Any) -> float:
    """Exchange numbers arrive as strings; anything unparsable/non-finite -> 0.0."""
    try:
        x = float(v)
    except (TypeError, ValueError):
        return 0.0
    return x if math.isfinite(x) else 0.0


def parse_ticker(m: dict) -> Optional[TickerSnapshotEntry]:
    """
    Return a TickerSnapshotEntry for one Bybit v5 linear ticker; None if the
    row has no symbol.

    Bybit fields used:
      - "symbol":        "BTCUSDT"
      - "lastPrice":     "67123.5"
      - "prevPrice24h":  "66001.0"   (may be "" or "0" on fresh listings)
      - "highPrice24h" / "lowPrice24h"
      - "turnover24h":   quote-currency volume

    The 24h reference price falls back to lastPrice when absent or zero; if
    both are unusable the derived metrics are 0.0 instead of NaN/Inf.
    """
    sym = m.get("symbol")
    if not sym:
        return None

    last = _to_float(m.get("lastPrice"))
    prev = _to_float(m.get("prevPrice24h")) or last
    high = _to_float(m.get("highPrice24h"))
    low = _to_float(m.get("lowPrice24h"))
    turnover = _to_float(m.get("turnover24h"))

    if prev > 0.0:
        change_pct = (last - prev) / prev * 100.0
        volatility_pct = (high - low) / prev * 100.0
    else:
        change_pct = 0.0
        volatility_pct = 0.0

    return TickerSnapshotEntry(
        symbol=str(sym),
        last_price=last,
        prev_price_24h=prev,
        high_price_24h=high,
        low_price_24h=low,
        turnover_24h=turnover,
        price_change_pct=change_pct,
        volatility_pct=volatility_pct,
    )


def parse_kline_rows(rows: Iterable[Any]) -> list[Candle]:
    """
    Convert kline rows [startTime, open, high, low, close, volume, turnover]
    into Candles sorted ascending by open time.

    Bybit returns the newest candle first; callers compare first vs last, so
    the order is normalized here. A row that cannot be parsed makes the whole
    body malformed.
    """
    out: list[Candle] = []
    for row in rows:
        if not isinstance(row, (list, tuple)) or len(row) < 6:
            raise UpstreamError(f"malformed kline row: {row!r}")
        try:
            open_time = int(row[0])
        except (TypeError, ValueError) as e:
            raise UpstreamError(f"malformed kline start time: {row[0]!r}") from e
        out.append(
            Candle(
                open_time=open_time,
                open=_to_float(row[1]),
                high=_to_float(row[2]),
                low=_to_float(row[3]),
                close=_to_float(row[4]),
                volume=_to_float(row[5]),
                turnover=_to_float(row[6]) if len(row) > 6 else 0.0,
            )
        )
    out.sort(key=lambda c: c.open_time)
    return out
