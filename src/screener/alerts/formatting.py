from __future__ import annotations

from screener.alerts.rules import AlertRule

_ICONS = {
    "price_increase": "📈",
    "price_decrease": "📉",
    "volatility": "📊",
    "volume_spike": "🔊",
    "density_appearance": "🎯",
}


def alert_icon(rule: AlertRule) -> str:
    return _ICONS.get(rule.type, "🔔")


def condition_label(rule: AlertRule) -> str:
    t = f"{rule.threshold:g}"
    match rule.type:
        case "price_increase":
            return f"Price increase ≥ {t}%"
        case "price_decrease":
            return f"Price decrease ≥ {t}%"
        case "volatility":
            return f"Volatility ≥ {t}%"
        case "volume_spike":
            return f"Volume spike ≥ {t}%"
        case "density_appearance":
            return f"Density (range) ≤ {t}%"
    return str(rule.type)


def format_batch_message(rule: AlertRule, symbols: list[str], index: int, total: int) -> str:
    """
    e.g.
        📈 Pumps 2h (part 2/3)
        Coins: AAAUSDT, BBBUSDT
        Condition: Price increase ≥ 20%
        Period: 2h
    """
    part = f" (part {index + 1}/{total})" if total > 1 else ""
    return (
        f"{alert_icon(rule)} {rule.name}{part}\n"
        f"Coins: {', '.join(symbols)}\n"
        f"Condition: {condition_label(rule)}\n"
        f"Period: {rule.time_period}"
    )
