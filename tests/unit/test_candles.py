import asyncio

import pytest

import screener.ingest.candles as candles_mod
from screener.errors import UpstreamError
from screener.ingest.bybit import BybitConfig
from screener.ingest.candles import CandleFetcher
from tests.helpers.fakes import FakeKlineSource, kline_rows


@pytest.fixture
def sleeps(monkeypatch):
    """Record backoff sleeps instead of waiting."""
    recorded = []
    real_sleep = asyncio.sleep

    async def _sleep(delay):
        if delay:
            recorded.append(delay)
        await real_sleep(0)

    monkeypatch.setattr(candles_mod.asyncio, "sleep", _sleep)
    return recorded


@pytest.mark.asyncio
async def test_returns_ascending_candles():
    src = FakeKlineSource({"AAAUSDT": kline_rows([1.0, 2.0, 3.0])})
    out = await CandleFetcher(src).fetch_candles("AAAUSDT", "1m", 3)
    assert [c.close for c in out] == [1.0, 2.0, 3.0]
    assert src.calls == [("AAAUSDT", "1m", 3)]


@pytest.mark.asyncio
async def test_retries_with_linear_backoff_then_succeeds(sleeps):
    src = FakeKlineSource({"AAAUSDT": kline_rows([1.0, 2.0])}, failures={"AAAUSDT": 2})
    out = await CandleFetcher(src).fetch_candles("AAAUSDT", "5m", 2)
    assert len(out) == 2
    assert len(src.calls) == 3
    assert sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_exhausted_attempts_raise_upstream_error(sleeps):
    src = FakeKlineSource({"AAAUSDT": ConnectionError("down")})
    with pytest.raises(UpstreamError):
        await CandleFetcher(src).fetch_candles("AAAUSDT", "1m", 10)
    assert len(src.calls) == 3


@pytest.mark.asyncio
async def test_malformed_body_counts_as_failed_attempt(sleeps):
    src = FakeKlineSource({"AAAUSDT": [["garbage"]]})
    with pytest.raises(UpstreamError):
        await CandleFetcher(src).fetch_candles("AAAUSDT", "1m", 10)
    assert len(src.calls) == 3


@pytest.mark.asyncio
async def test_timeout_is_a_failed_attempt():
    src = FakeKlineSource({"AAAUSDT": kline_rows([1.0, 2.0])}, delay=0.2)
    cfg = BybitConfig(timeout_s=0.01, max_attempts=2, retry_base_s=0.0)
    with pytest.raises(UpstreamError, match="timeout"):
        await CandleFetcher(src, cfg).fetch_candles("AAAUSDT", "1m", 2)
    assert len(src.calls) == 2
