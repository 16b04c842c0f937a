from __future__ import annotations

from typing import Protocol

import structlog

from screener.errors import UpstreamError
from screener.ingest.parser import parse_ticker
from screener.utils.types import TickerSnapshotEntry

log = structlog.get_logger("snapshot")

Snapshot = dict[str, TickerSnapshotEntry]


class TickerSource(Protocol):
    async def get_tickers(self) -> list[dict]: ...


class MarketSnapshotFetcher:
    """
    One round trip for the whole ticker list, parsed into a symbol-keyed
    snapshot. No retry: a failed fetch means "skip this tick" for the caller.
    """

    def __init__(self, source: TickerSource):
        self.source = source

    async def fetch_snapshot(self) -> Snapshot:
        try:
            rows = await self.source.get_tickers()
        except UpstreamError:
            raise
        except Exception as e:
            raise UpstreamError(f"ticker fetch failed: {e}") from e

        snap: Snapshot = {}
        for row in rows:
            if not isinstance(row, dict):
                continue
            entry = parse_ticker(row)
            if entry is not None:
                snap[entry.symbol] = entry
        log.debug("snapshot_fetched", symbols=len(snap))
        return snap


def rank_by_volume(snapshot: Snapshot) -> list[TickerSnapshotEntry]:
    """Snapshot entries ordered by descending 24h turnover."""
    return sorted(snapshot.values(), key=lambda e: e.turnover_24h, reverse=True)
