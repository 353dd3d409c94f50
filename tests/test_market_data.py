from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from ai_signals.config import Settings
from ai_signals.data.binance import BinanceMarketData, timeframe_duration, to_exchange_symbol
from ai_signals.data.candles import CandleStore, MarketDataService
from ai_signals.errors import MarketDataError
from ai_signals.types import Candle
from ai_signals.utils.rate_limiter import RateLimiter
from ai_signals.utils.retry import RetryPolicy

_START = datetime(2024, 2, 1, tzinfo=UTC)


def _build_candle(index: int, close: float = 100.0, timeframe: str = "1h") -> Candle:
    return Candle(
        instrument="BTC/USDT",
        timeframe=timeframe,
        open_time=_START + timedelta(hours=index),
        open=close,
        high=close + 1,
        low=close - 1,
        close=close,
        volume=10.0,
    )


def _kline_row(open_time: datetime, close: float, duration: timedelta) -> list[Any]:
    open_ms = int(open_time.timestamp() * 1000)
    close_ms = int((open_time + duration).timestamp() * 1000) - 1
    return [open_ms, str(close), str(close + 1), str(close - 1), str(close), "12.5", close_ms]


class _FakeSource:
    def __init__(self, candles: list[Candle]) -> None:
        self.candles = candles
        self.calls: list[dict[str, Any]] = []
        self.fail = False

    async def fetch_candles(
        self,
        instrument: str,
        timeframe: str,
        *,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[Candle]:
        self.calls.append({"since": since, "limit": limit})
        if self.fail:
            raise MarketDataError("klines unavailable")
        rows = [c for c in self.candles if since is None or c.open_time >= since]
        return rows[-limit:]


class _FakeBinanceClient:
    def __init__(self, rows: list[list[Any]], *, failures: list[Exception] | None = None) -> None:
        self.rows = rows
        self.failures = failures or []
        self.kline_calls: list[dict[str, Any]] = []

    async def get_klines(self, **params: Any) -> list[list[Any]]:
        self.kline_calls.append(params)
        if self.failures:
            raise self.failures.pop(0)
        return self.rows

    async def get_symbol_ticker(self, **params: Any) -> dict[str, str]:
        return {"symbol": params["symbol"], "price": "43210.5"}


def _build_source(client: _FakeBinanceClient, max_retries: int = 0) -> BinanceMarketData:
    return BinanceMarketData(
        Settings(journal_dir="data/journal"),
        client=client,
        limiter=RateLimiter("exchange", 100, 60.0),
        retry_policy=RetryPolicy(max_retries=max_retries, initial_delay=0.0),
    )


def test_store_upsert_replaces_existing_keys() -> None:
    store = CandleStore()

    assert store.upsert([_build_candle(0), _build_candle(1)]) == 2
    assert store.upsert([_build_candle(1, close=105.0), _build_candle(2)]) == 1

    assert len(store.recent("BTC/USDT", "1h", 100)) == 3
    latest = store.latest("BTC/USDT", "1h")
    assert latest is not None
    assert latest.open_time == _START + timedelta(hours=2)
    assert [c.close for c in store.recent("BTC/USDT", "1h", 2)] == [105.0, 100.0]


def test_store_keeps_only_newest_candles_per_series() -> None:
    store = CandleStore(retention=3)

    store.upsert([_build_candle(i) for i in range(5)])
    store.upsert([_build_candle(i, timeframe="4h") for i in range(2)])

    assert [c.open_time for c in store.recent("BTC/USDT", "1h", 10)] == [
        _START + timedelta(hours=i) for i in (2, 3, 4)
    ]
    assert len(store.recent("BTC/USDT", "4h", 10)) == 2
    with pytest.raises(ValueError):
        CandleStore(retention=0)


@pytest.mark.asyncio
async def test_sync_resumes_after_latest_stored_candle() -> None:
    source = _FakeSource([_build_candle(i) for i in range(5)])
    service = MarketDataService(source, CandleStore(), sync_limit=3)

    first = await service.sync_candles("BTC/USDT", "1h")
    source.candles.append(_build_candle(5))
    second = await service.sync_candles("BTC/USDT", "1h")
    third = await service.sync_candles("BTC/USDT", "1h")

    assert (first, second, third) == (3, 1, 0)
    assert source.calls[0]["since"] is None
    assert source.calls[1]["since"] == _START + timedelta(hours=5)
    assert len(service.recent_candles("BTC/USDT", "1h", 100)) == 4


@pytest.mark.asyncio
async def test_sync_many_reports_failed_pairs() -> None:
    source = _FakeSource([_build_candle(i) for i in range(3)])
    service = MarketDataService(source, CandleStore())
    source.fail = True

    summary = await service.sync_many(["BTC/USDT"], ["1h", "4h"])

    assert summary == {"BTC/USDT:1h": -1, "BTC/USDT:4h": -1}


def test_symbol_and_timeframe_helpers() -> None:
    assert to_exchange_symbol("btc/usdt") == "BTCUSDT"
    assert timeframe_duration("4h") == timedelta(hours=4)
    with pytest.raises(ValueError):
        timeframe_duration("7m")


@pytest.mark.asyncio
async def test_fetch_candles_drops_forming_bar() -> None:
    hour = timedelta(hours=1)
    now = datetime.now(UTC).replace(minute=0, second=0, microsecond=0)
    rows = [
        _kline_row(now - 2 * hour, 100.0, hour),
        _kline_row(now - hour, 101.0, hour),
        _kline_row(now, 102.0, hour),
    ]
    client = _FakeBinanceClient(rows)

    candles = await _build_source(client).fetch_candles(
        "BTC/USDT", "1h", since=now - 2 * hour, limit=3
    )

    assert [c.close for c in candles] == [100.0, 101.0]
    assert candles[0].volume == 12.5
    params = client.kline_calls[0]
    assert params["symbol"] == "BTCUSDT"
    assert params["startTime"] == int((now - 2 * hour).timestamp() * 1000)


@pytest.mark.asyncio
async def test_transient_exchange_errors_are_retried() -> None:
    hour = timedelta(hours=1)
    rows = [_kline_row(_START, 100.0, hour)]
    client = _FakeBinanceClient(rows, failures=[ConnectionError("connection reset by peer")])

    candles = await _build_source(client, max_retries=2).fetch_candles("BTC/USDT", "1h")

    assert len(candles) == 1
    assert len(client.kline_calls) == 2


@pytest.mark.asyncio
async def test_exchange_failure_is_wrapped() -> None:
    client = _FakeBinanceClient([], failures=[RuntimeError("invalid symbol")])

    with pytest.raises(MarketDataError) as exc_info:
        await _build_source(client, max_retries=3).fetch_candles("BTC/USDT", "1h")

    assert "invalid symbol" in str(exc_info.value)
    assert len(client.kline_calls) == 1


@pytest.mark.asyncio
async def test_fetch_price_reads_ticker() -> None:
    price = await _build_source(_FakeBinanceClient([])).fetch_price("BTC/USDT")

    assert price == 43210.5
