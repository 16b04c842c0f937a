from __future__ import annotations

import time

MINUTE_MS = 60_000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS


def utc_now_ms() -> int:
    """Unix epoch milliseconds (int)."""
    return time.time_ns() // 1_000_000


def ms_since(ts_past_ms: int, now_ms: int | None = None) -> int:
    """Non-negative elapsed milliseconds since ts_past_ms (clamped at 0)."""
    now = utc_now_ms() if now_ms is None else now_ms
    return max(0, now - ts_past_ms)
