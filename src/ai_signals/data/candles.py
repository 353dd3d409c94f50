"""Candle storage with upsert-by-key and incremental sync."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Protocol

from ai_signals.data.binance import timeframe_duration
from ai_signals.types import Candle
from ai_signals.utils.logging import get_logger


class CandleSource(Protocol):
    async def fetch_candles(
        self,
        instrument: str,
        timeframe: str,
        *,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[Candle]: ...


class CandleStore:
    """In-memory candle history keyed by (instrument, timeframe, open_time).

    Writing a candle whose key already exists replaces it, so replaying a
    fetch is harmless. Each series keeps at most ``retention`` of its newest
    candles.
    """

    def __init__(self, retention: int = 1000) -> None:
        if retention < 1:
            raise ValueError("retention must be positive")
        self._retention = retention
        self._series: dict[tuple[str, str], dict[datetime, Candle]] = {}

    def upsert(self, candles: Iterable[Candle]) -> int:
        """Insert or replace candles; returns how many keys were new."""
        inserted = 0
        touched: set[tuple[str, str]] = set()
        for candle in candles:
            key = (candle.instrument, candle.timeframe)
            series = self._series.setdefault(key, {})
            if candle.open_time not in series:
                inserted += 1
            series[candle.open_time] = candle
            touched.add(key)
        for key in touched:
            self._trim(key)
        return inserted

    def latest(self, instrument: str, timeframe: str) -> Candle | None:
        series = self._series.get((instrument, timeframe))
        if not series:
            return None
        return series[max(series)]

    def recent(self, instrument: str, timeframe: str, limit: int) -> list[Candle]:
        """Last ``limit`` candles in ascending open-time order."""
        series = self._series.get((instrument, timeframe), {})
        ordered = [series[key] for key in sorted(series)]
        return ordered[-limit:] if limit > 0 else []

    def _trim(self, key: tuple[str, str]) -> None:
        series = self._series[key]
        excess = len(series) - self._retention
        if excess > 0:
            for open_time in sorted(series)[:excess]:
                del series[open_time]


class MarketDataService:
    """Keeps the candle store current from a market data source."""

    def __init__(self, source: CandleSource, store: CandleStore, *, sync_limit: int = 100) -> None:
        self._source = source
        self.store = store
        self._sync_limit = sync_limit
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._logger = get_logger("ai_signals.data.candles")

    async def sync_candles(self, instrument: str, timeframe: str, limit: int | None = None) -> int:
        """Fetch candles newer than the stored history and upsert them.

        Resumes one timeframe after the latest stored candle; with no
        history the most recent ``limit`` candles are fetched.
        """
        async with self._locks.setdefault((instrument, timeframe), asyncio.Lock()):
            latest = self.store.latest(instrument, timeframe)
            since = latest.open_time + timeframe_duration(timeframe) if latest else None
            candles = await self._source.fetch_candles(
                instrument,
                timeframe,
                since=since,
                limit=limit or self._sync_limit,
            )
            inserted = self.store.upsert(candles)
            self._logger.info(
                "candles_synced",
                instrument=instrument,
                timeframe=timeframe,
                fetched=len(candles),
                inserted=inserted,
                since=since.isoformat() if since else None,
            )
            return inserted

    async def sync_many(
        self,
        instruments: Sequence[str],
        timeframes: Sequence[str],
    ) -> dict[str, int]:
        """Sync every pair concurrently; a failed pair reports -1."""
        keys = [(i, t) for i in instruments for t in timeframes]
        results = await asyncio.gather(
            *(self.sync_candles(i, t) for i, t in keys),
            return_exceptions=True,
        )
        summary: dict[str, int] = {}
        for (instrument, timeframe), result in zip(keys, results):
            key = f"{instrument}:{timeframe}"
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                self._logger.error(
                    "candle_sync_failed",
                    instrument=instrument,
                    timeframe=timeframe,
                    error=str(result),
                )
                summary[key] = -1
            else:
                summary[key] = result
        return summary

    def recent_candles(self, instrument: str, timeframe: str, limit: int) -> list[Candle]:
        return self.store.recent(instrument, timeframe, limit)
