# src/screener/alerts/rules.py
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Literal, Optional, Union

from screener.utils.time import HOUR_MS, MINUTE_MS
from screener.utils.types import IntervalCode, as_bool

AlertType = Literal["price_increase", "price_decrease", "volatility", "volume_spike", "density_appearance"]
TimePeriod = Literal["1h", "2h", "3h", "6h", "10h", "16h", "24h"]

TIME_PERIOD_MS: dict[str, int] = {
    "1h": 1 * HOUR_MS,
    "2h": 2 * HOUR_MS,
    "3h": 3 * HOUR_MS,
    "6h": 6 * HOUR_MS,
    "10h": 10 * HOUR_MS,
    "16h": 16 * HOUR_MS,
    "24h": 24 * HOUR_MS,
}

PERIOD_INTERVAL: dict[str, IntervalCode] = {
    "1h": "1m",
    "2h": "3m",
    "3h": "5m",
    "6h": "15m",
    "10h": "30m",
    "16h": "60m",
    "24h": "60m",
}

MAX_CANDLES = 100


def candle_window(period: str) -> tuple[IntervalCode, int]:
    """(interval, limit) used for look-back checks over `period`."""
    period_ms = TIME_PERIOD_MS[period]
    return PERIOD_INTERVAL[period], min(math.ceil(period_ms / MINUTE_MS), MAX_CANDLES)


# ---- conditions: one variant per alert kind ----

@dataclass(frozen=True, slots=True)
class PriceIncrease:
    """Close-to-close rise over the period >= threshold_pct."""
    threshold_pct: float


@dataclass(frozen=True, slots=True)
class PriceDecrease:
    """Close-to-close fall over the period >= threshold_pct (pct <= -threshold_pct)."""
    threshold_pct: float


@dataclass(frozen=True, slots=True)
class Volatility:
    """24h (high - low) / prev >= threshold_pct. Snapshot only."""
    threshold_pct: float


@dataclass(frozen=True, slots=True)
class VolumeSpike:
    """Last candle volume exceeds the mean of the prior candles by >= threshold_pct."""
    threshold_pct: float


@dataclass(frozen=True, slots=True)
class DensityAppearance:
    """Range of the last 20 one-minute closes <= max_range_pct."""
    max_range_pct: float


AlertCondition = Union[PriceIncrease, PriceDecrease, Volatility, VolumeSpike, DensityAppearance]

_CONDITION_BY_TYPE: dict[str, type] = {
    "price_increase": PriceIncrease,
    "price_decrease": PriceDecrease,
    "volatility": Volatility,
    "volume_spike": VolumeSpike,
    "density_appearance": DensityAppearance,
}
_TYPE_BY_CONDITION: dict[type, str] = {v: k for k, v in _CONDITION_BY_TYPE.items()}


def condition_from(alert_type: str, threshold: float) -> AlertCondition:
    cls = _CONDITION_BY_TYPE.get(alert_type)
    if cls is None:
        raise ValueError(f"unknown alert type: {alert_type!r}")
    return cls(float(threshold))


@dataclass(slots=True)
class AlertRule:
    """
    A user-defined smart alert.

    - condition:     which test to run and its threshold
    - time_period:   look-back for price/volume checks ("24h" uses the snapshot
                     for price checks)
    - min_volume / max_volume: USD 24h turnover bounds; 0 means unbounded
    - sent_by_symbol: symbol -> last notification epoch ms (cooldown source)
    """
    id: str
    name: str
    condition: AlertCondition
    time_period: TimePeriod = "2h"
    min_volume: float = 0.0
    max_volume: float = 0.0
    blacklist: frozenset[str] = frozenset()
    enabled: bool = True
    created_at: int = 0
    last_triggered: Optional[int] = None
    sent_by_symbol: dict[str, int] = field(default_factory=dict)

    @property
    def type(self) -> AlertType:
        return _TYPE_BY_CONDITION[type(self.condition)]  # type: ignore[return-value]

    @property
    def threshold(self) -> float:
        c = self.condition
        return c.max_range_pct if isinstance(c, DensityAppearance) else c.threshold_pct

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "timePeriod": self.time_period,
            "threshold": self.threshold,
            "minVolume": self.min_volume,
            "maxVolume": self.max_volume,
            "blacklist": sorted(self.blacklist),
            "enabled": self.enabled,
            "createdAt": self.created_at,
            "sentBySymbol": dict(self.sent_by_symbol),
        }
        if self.last_triggered is not None:
            d["lastTriggered"] = self.last_triggered
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "AlertRule":
        period = d.get("timePeriod") or "2h"
        if period not in TIME_PERIOD_MS:
            raise ValueError(f"unknown time period: {period!r}")
        last = d.get("lastTriggered")
        return cls(
            id=str(d["id"]),
            name=str(d.get("name", "")),
            condition=condition_from(d["type"], d.get("threshold", 0.0)),
            time_period=period,
            min_volume=float(d.get("minVolume") or 0.0),
            max_volume=float(d.get("maxVolume") or 0.0),
            blacklist=frozenset(str(s).upper() for s in (d.get("blacklist") or [])),
            enabled=as_bool(d.get("enabled", True)),
            created_at=int(d.get("createdAt") or 0),
            last_triggered=int(last) if last is not None else None,
            sent_by_symbol={str(k): int(v) for k, v in (d.get("sentBySymbol") or {}).items()},
        )
