"""Technical indicators (RSI, MACD, volume MA) and market context."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

import pandas as pd  # type: ignore[import-untyped]

from ai_signals.config import Settings
from ai_signals.errors import InsufficientHistoryError
from ai_signals.types import Candle, IndicatorSet, MacdValues

_CONTEXT_WINDOW = 10


@dataclass(frozen=True, slots=True)
class IndicatorPeriods:
    rsi: int = 14
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    volume_ma: int = 20
    buffer: int = 10

    @property
    def required_history(self) -> int:
        return max(self.rsi, self.macd_slow, self.volume_ma) + self.buffer

    @classmethod
    def from_settings(cls, settings: Settings) -> IndicatorPeriods:
        return cls(
            rsi=settings.rsi_period,
            macd_fast=settings.macd_fast_period,
            macd_slow=settings.macd_slow_period,
            macd_signal=settings.macd_signal_period,
            volume_ma=settings.volume_ma_period,
            buffer=settings.indicator_buffer,
        )


def candles_to_frame(candles: Sequence[Candle]) -> pd.DataFrame:
    """Build an OHLCV frame sorted ascending by open time."""
    frame = pd.DataFrame(
        [
            {
                "open_time": c.open_time,
                "open": c.open,
                "high": c.high,
                "low": c.low,
                "close": c.close,
                "volume": c.volume,
            }
            for c in candles
        ],
        columns=["open_time", "open", "high", "low", "close", "volume"],
    )
    if not _is_time_ascending(frame):
        frame = frame.sort_values("open_time", kind="stable")
    return frame.reset_index(drop=True)


def compute_indicator_set(
    candles: Sequence[Candle],
    periods: IndicatorPeriods | None = None,
) -> IndicatorSet:
    """Compute the latest RSI, MACD and volume MA.

    Raises:
        InsufficientHistoryError: fewer candles than the longest lookback plus buffer.
    """
    periods = periods or IndicatorPeriods()
    required = periods.required_history
    if len(candles) < required:
        raise InsufficientHistoryError(required, len(candles))

    frame = candles_to_frame(candles)
    close = frame["close"].astype(float)
    volume = frame["volume"].astype(float)

    macd_line = _ema(close, periods.macd_fast) - _ema(close, periods.macd_slow)
    signal_line = _ema(macd_line, periods.macd_signal)
    volume_ma = volume.rolling(window=periods.volume_ma, min_periods=periods.volume_ma).mean()

    line = float(macd_line.iloc[-1])
    signal = float(signal_line.iloc[-1])
    return IndicatorSet(
        rsi=compute_rsi(close, periods.rsi),
        macd=MacdValues(line=line, signal=signal, histogram=line - signal),
        volume_ma=max(0.0, float(volume_ma.iloc[-1])),
    )


def compute_rsi(close: pd.Series, period: int = 14) -> float:
    """Wilder RSI of the last value, bounded to [0, 100].

    The first average is a simple mean over ``period`` changes; later values
    use Wilder smoothing ``avg = (prev * (period - 1) + current) / period``.
    """
    delta = close.astype(float).diff().dropna()
    if len(delta) < period:
        raise InsufficientHistoryError(period + 1, len(close))

    gains = delta.clip(lower=0.0).tolist()
    losses = (-delta).clip(lower=0.0).tolist()
    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period
    for gain, loss in zip(gains[period:], losses[period:]):
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period

    if avg_loss == 0:
        return 50.0 if avg_gain == 0 else 100.0
    rs = avg_gain / avg_loss
    rsi = 100.0 - 100.0 / (1.0 + rs)
    if math.isnan(rsi):
        return 50.0
    return min(100.0, max(0.0, rsi))


def summarize_market_context(candles: Sequence[Candle]) -> dict[str, float | str]:
    """Describe trend, volatility and volume over the last few candles."""
    frame = candles_to_frame(candles).tail(_CONTEXT_WINDOW)
    if len(frame) < 2:
        return {"trend": "Unknown", "volatility": 0.0, "volume_analysis": "Unknown"}

    close = frame["close"].astype(float)
    volume = frame["volume"].astype(float)
    first_close = float(close.iloc[0])
    last_close = float(close.iloc[-1])
    price_change_pct = (last_close - first_close) / first_close * 100 if first_close else 0.0

    if price_change_pct > 2:
        trend = "Strong Uptrend"
    elif price_change_pct > 0.5:
        trend = "Uptrend"
    elif price_change_pct < -2:
        trend = "Strong Downtrend"
    elif price_change_pct < -0.5:
        trend = "Downtrend"
    else:
        trend = "Sideways"

    mean_close = float(close.mean())
    # Population stdev over the window.
    volatility = float(close.std(ddof=0)) / mean_close * 100 if mean_close else 0.0

    avg_volume = float(volume.iloc[:-1].mean())
    volume_ratio = float(volume.iloc[-1]) / avg_volume if avg_volume > 0 else 1.0
    if volume_ratio > 1.5:
        volume_analysis = "High Volume"
    elif volume_ratio < 0.7:
        volume_analysis = "Low Volume"
    else:
        volume_analysis = "Normal Volume"

    return {
        "trend": trend,
        "volatility": round(volatility, 2),
        "volume_analysis": volume_analysis,
        "price_change_pct": round(price_change_pct, 4),
    }


def _is_time_ascending(df: pd.DataFrame) -> bool:
    open_time = df.get("open_time")
    if open_time is None:
        return False
    return bool(pd.Series(open_time).is_monotonic_increasing)


def _ema(series: pd.Series, period: int) -> pd.Series:
    return series.ewm(span=period, adjust=False).mean()
