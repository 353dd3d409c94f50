"""Binance market data source (spot klines and ticker price)."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any

from binance import AsyncClient  # type: ignore[import-untyped]
from binance.client import Client  # type: ignore[import-untyped]

from ai_signals.config import Settings
from ai_signals.errors import MarketDataError
from ai_signals.types import Candle
from ai_signals.utils.logging import get_logger
from ai_signals.utils.rate_limiter import RateLimiter
from ai_signals.utils.retry import RetryPolicy, run_with_retry

INTERVAL_MAP = {
    "1m": Client.KLINE_INTERVAL_1MINUTE,
    "3m": Client.KLINE_INTERVAL_3MINUTE,
    "5m": Client.KLINE_INTERVAL_5MINUTE,
    "15m": Client.KLINE_INTERVAL_15MINUTE,
    "30m": Client.KLINE_INTERVAL_30MINUTE,
    "1h": Client.KLINE_INTERVAL_1HOUR,
    "2h": Client.KLINE_INTERVAL_2HOUR,
    "4h": Client.KLINE_INTERVAL_4HOUR,
    "6h": Client.KLINE_INTERVAL_6HOUR,
    "8h": Client.KLINE_INTERVAL_8HOUR,
    "12h": Client.KLINE_INTERVAL_12HOUR,
    "1d": Client.KLINE_INTERVAL_1DAY,
    "3d": Client.KLINE_INTERVAL_3DAY,
    "1w": Client.KLINE_INTERVAL_1WEEK,
    "1M": Client.KLINE_INTERVAL_1MONTH,
}

TIMEFRAME_DURATIONS = {
    "1m": timedelta(minutes=1),
    "3m": timedelta(minutes=3),
    "5m": timedelta(minutes=5),
    "15m": timedelta(minutes=15),
    "30m": timedelta(minutes=30),
    "1h": timedelta(hours=1),
    "2h": timedelta(hours=2),
    "4h": timedelta(hours=4),
    "6h": timedelta(hours=6),
    "8h": timedelta(hours=8),
    "12h": timedelta(hours=12),
    "1d": timedelta(days=1),
    "3d": timedelta(days=3),
    "1w": timedelta(weeks=1),
    "1M": timedelta(days=30),
}

_EXCHANGE_RETRY_TOKENS = ("connect", "-1003", "binancerequestexception", "clientoserror")


def timeframe_duration(timeframe: str) -> timedelta:
    try:
        return TIMEFRAME_DURATIONS[timeframe]
    except KeyError:
        raise ValueError(f"unsupported_timeframe: {timeframe}") from None


def to_exchange_symbol(instrument: str) -> str:
    """``BTC/USDT`` -> ``BTCUSDT``."""
    return instrument.replace("/", "").replace("-", "").upper()


class BinanceMarketData:
    """Read-only async client for candles and last price.

    Every request goes through the shared exchange rate limiter, is bounded
    by ``exchange_timeout`` and retried for transient failures.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        client: Any | None = None,
        limiter: RateLimiter | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._settings = settings
        self._client = client
        self._owns_client = client is None
        self._timeout = settings.exchange_timeout
        self._limiter = limiter or RateLimiter.for_exchange_api(
            capacity=settings.exchange_rate_limit,
            window_seconds=settings.exchange_rate_window,
        )
        base_policy = retry_policy or RetryPolicy(
            max_retries=settings.retry_max_retries,
            initial_delay=settings.retry_initial_delay,
            backoff_factor=settings.retry_backoff_factor,
            max_delay=settings.retry_max_delay_exchange,
        )
        self._retry_policy = base_policy.with_tokens(*_EXCHANGE_RETRY_TOKENS)
        self._logger = get_logger("ai_signals.data.binance")

    async def connect(self) -> None:
        if self._client is None:
            self._client = await AsyncClient.create(
                api_key=self._settings.binance_api_key or None,
                api_secret=self._settings.binance_api_secret or None,
                testnet=self._settings.binance_testnet,
            )

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.close_connection()
            self._client = None

    async def fetch_candles(
        self,
        instrument: str,
        timeframe: str,
        *,
        since: datetime | None = None,
        limit: int = 100,
        finalized_only: bool = True,
    ) -> list[Candle]:
        """Fetch klines in ascending open-time order.

        With ``finalized_only`` the still-forming last bar is dropped.
        """
        interval = INTERVAL_MAP.get(timeframe)
        if interval is None:
            raise ValueError(f"unsupported_timeframe: {timeframe}")

        params: dict[str, Any] = {
            "symbol": to_exchange_symbol(instrument),
            "interval": interval,
            "limit": limit,
        }
        if since is not None:
            params["startTime"] = int(since.timestamp() * 1000)

        rows = await self._request("get_klines", f"klines:{instrument}:{timeframe}", **params)
        now_ms = int(datetime.now(UTC).timestamp() * 1000)
        candles: list[Candle] = []
        for row in rows:
            if finalized_only and int(row[6]) > now_ms:
                continue
            candles.append(
                Candle(
                    instrument=instrument,
                    timeframe=timeframe,
                    open_time=datetime.fromtimestamp(int(row[0]) / 1000, tz=UTC),
                    open=float(row[1]),
                    high=float(row[2]),
                    low=float(row[3]),
                    close=float(row[4]),
                    volume=float(row[5]),
                )
            )
        candles.sort(key=lambda c: c.open_time)
        self._logger.debug(
            "candles_fetched",
            instrument=instrument,
            timeframe=timeframe,
            count=len(candles),
        )
        return candles

    async def fetch_price(self, instrument: str) -> float:
        """Latest traded price from the ticker endpoint."""
        payload = await self._request(
            "get_symbol_ticker",
            f"price:{instrument}",
            symbol=to_exchange_symbol(instrument),
        )
        try:
            return float(payload["price"])
        except (KeyError, TypeError, ValueError) as exc:
            raise MarketDataError(f"invalid_ticker_payload: {instrument}") from exc

    async def _request(self, method: str, context: str, **params: Any) -> Any:
        await self.connect()
        call = getattr(self._client, method)

        async def attempt() -> Any:
            await self._limiter.acquire()
            return await asyncio.wait_for(call(**params), self._timeout)

        try:
            return await run_with_retry(attempt, self._retry_policy, context=context)
        except MarketDataError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise MarketDataError(f"{context} failed: {type(exc).__name__}: {exc}") from exc
