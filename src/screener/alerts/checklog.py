from __future__ import annotations

from typing import Callable, Optional, Sequence, TYPE_CHECKING

import structlog

from screener.utils.time import utc_now_ms
from screener.utils.types import AlertCheckLog

if TYPE_CHECKING:
    from screener.store.base import CheckLogStore

log = structlog.get_logger("checklog")

SYSTEM = "System"
MAX_SENT_SYMBOLS = 20


class CheckLogRecorder:
    """Builds audit entries and appends them to the check-log store; never raises."""

    def __init__(self, store: "CheckLogStore", clock: Callable[[], int] = utc_now_ms):
        self.store = store
        self._clock = clock

    async def record(
        self,
        alert_name: str,
        *,
        checked: int = 0,
        matched: int = 0,
        sent: Sequence[str] = (),
        error: Optional[str] = None,
        time: Optional[int] = None,
    ) -> AlertCheckLog:
        entry = AlertCheckLog(
            time=self._clock() if time is None else time,
            alert_name=alert_name,
            checked_coins=checked,
            matched_coins=matched,
            sent_symbols=list(sent[:MAX_SENT_SYMBOLS]),
            error=error,
        )
        try:
            await self.store.append(entry)
        except Exception as e:
            log.error("checklog_append_failed", alert=alert_name, err=str(e))
        return entry

    async def system(self, error: str) -> AlertCheckLog:
        return await self.record(SYSTEM, error=error)
