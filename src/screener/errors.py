from __future__ import annotations


class ScreenerError(Exception):
    """Base class for alert-core failures."""


class UpstreamError(ScreenerError):
    """Ticker/kline source unreachable, non-success envelope or malformed body."""


class DeliveryError(ScreenerError):
    """Notification channel rejected or failed to deliver a message."""


class ConfigurationError(ScreenerError):
    """Missing notification target, bot token or alerts."""
