from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Optional

# ---- market data primitives ----

@dataclass(frozen=True, slots=True)
class TickerSnapshotEntry:
    """
    One symbol from one ticker fetch. Derived metrics are computed once at
    parse time (see ingest.parser.parse_ticker) and never NaN/Inf.
    """
    symbol: str
    last_price: float
    prev_price_24h: float     # already falls back to last_price when absent/zero
    high_price_24h: float
    low_price_24h: float
    turnover_24h: float       # quote-currency (USD) volume
    price_change_pct: float = 0.0
    volatility_pct: float = 0.0

    @property
    def volume_24h(self) -> float:
        return self.turnover_24h


@dataclass(frozen=True, slots=True)
class Candle:
    """OHLCV candle; open_time is epoch milliseconds."""
    open_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    turnover: float


# ---- alerting domain ----

IntervalCode = Literal["1m", "3m", "5m", "15m", "30m", "60m", "D", "W", "M"]


@dataclass(slots=True)
class AlertCheckLog:
    """One audit entry per alert evaluation (or per System-level outcome)."""
    time: int
    alert_name: str
    checked_coins: int = 0
    matched_coins: int = 0
    sent_symbols: list[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "time": self.time,
            "alertName": self.alert_name,
            "checkedCoins": self.checked_coins,
            "matchedCoins": self.matched_coins,
            "sentSymbols": list(self.sent_symbols),
        }
        if self.error is not None:
            d["error"] = self.error
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "AlertCheckLog":
        return cls(
            time=int(d.get("time", 0)),
            alert_name=str(d.get("alertName", "")),
            checked_coins=int(d.get("checkedCoins", 0)),
            matched_coins=int(d.get("matchedCoins", 0)),
            sent_symbols=list(d.get("sentSymbols") or []),
            error=d.get("error"),
        )


def as_bool(v: Any) -> bool:
    """Stored flags may round-trip as strings ("false", "0")."""
    if isinstance(v, str):
        return v.strip().lower() in ("1", "true", "yes", "on")
    return bool(v)
