from __future__ import annotations

import math
import random
from datetime import UTC, datetime, timedelta

import pandas as pd  # type: ignore[import-untyped]
import pytest

from ai_signals.errors import InsufficientHistoryError
from ai_signals.features.indicators import (
    IndicatorPeriods,
    compute_indicator_set,
    compute_rsi,
    summarize_market_context,
)
from ai_signals.types import Candle


def _build_candles(closes: list[float], volumes: list[float] | None = None) -> list[Candle]:
    start = datetime(2024, 1, 1, tzinfo=UTC)
    volumes = volumes or [1_000.0] * len(closes)
    candles: list[Candle] = []
    for i, (close, volume) in enumerate(zip(closes, volumes)):
        open_ = closes[i - 1] if i else close
        candles.append(
            Candle(
                instrument="BTC/USDT",
                timeframe="1h",
                open_time=start + timedelta(hours=i),
                open=open_,
                high=max(open_, close) * 1.001,
                low=min(open_, close) * 0.999,
                close=close,
                volume=volume,
            )
        )
    return candles


def test_default_periods_need_thirty_six_candles() -> None:
    periods = IndicatorPeriods()

    assert periods.required_history == 36
    with pytest.raises(InsufficientHistoryError) as exc_info:
        compute_indicator_set(_build_candles([100.0 + i for i in range(35)]))

    assert exc_info.value.required == 36
    assert exc_info.value.actual == 35
    assert "insufficient_history" in str(exc_info.value)


def test_indicator_set_on_minimum_history() -> None:
    indicators = compute_indicator_set(_build_candles([100.0 + i for i in range(36)]))

    assert 0.0 <= indicators.rsi <= 100.0
    assert indicators.volume_ma == pytest.approx(1_000.0)
    assert indicators.macd.histogram == pytest.approx(indicators.macd.line - indicators.macd.signal)


def test_rsi_extremes_and_flat_series() -> None:
    rising = pd.Series([100.0 + i for i in range(30)])
    falling = pd.Series([100.0 - i for i in range(30)])
    flat = pd.Series([100.0] * 30)

    assert compute_rsi(rising, 14) == 100.0
    assert compute_rsi(falling, 14) == 0.0
    assert compute_rsi(flat, 14) == 50.0


def test_rsi_uses_wilder_smoothing() -> None:
    # Seed averages 0.5/0.5, then one more gain: 0.75 / 0.25 -> RS 3 -> RSI 75.
    value = compute_rsi(pd.Series([1.0, 2.0, 1.0, 2.0]), 2)

    assert value == pytest.approx(75.0)


def test_rsi_stays_bounded_on_noisy_series() -> None:
    rng = random.Random(7)
    closes = [100.0]
    for _ in range(199):
        closes.append(max(1.0, closes[-1] * (1 + rng.uniform(-0.03, 0.03))))

    indicators = compute_indicator_set(_build_candles(closes))

    assert 0.0 <= indicators.rsi <= 100.0
    assert not math.isnan(indicators.macd.line)


def test_uptrend_has_positive_macd_line() -> None:
    indicators = compute_indicator_set(_build_candles([100.0 * 1.01**i for i in range(60)]))

    assert indicators.macd.line > 0
    assert indicators.rsi > 70


def test_volume_ma_uses_last_window() -> None:
    volumes = [500.0] * 40 + [1_000.0] * 19 + [3_000.0]
    candles = _build_candles([100.0] * 60, volumes)

    indicators = compute_indicator_set(candles)

    assert indicators.volume_ma == pytest.approx(1_100.0)


def test_unsorted_input_is_ordered_before_computing() -> None:
    candles = _build_candles([100.0 + math.sin(i / 3) * 5 for i in range(50)])
    shuffled = list(candles)
    random.Random(3).shuffle(shuffled)

    assert compute_indicator_set(shuffled) == compute_indicator_set(candles)


def test_market_context_labels_strong_uptrend_and_high_volume() -> None:
    closes = [100.0 + i * 0.5 for i in range(10)]
    volumes = [1_000.0] * 9 + [2_000.0]

    summary = summarize_market_context(_build_candles(closes, volumes))

    assert summary["trend"] == "Strong Uptrend"
    assert summary["volume_analysis"] == "High Volume"
    assert summary["volatility"] > 0


def test_market_context_flat_market() -> None:
    summary = summarize_market_context(_build_candles([100.0] * 12))

    assert summary["trend"] == "Sideways"
    assert summary["volume_analysis"] == "Normal Volume"
    assert summary["volatility"] == 0.0


def test_market_context_needs_two_candles() -> None:
    summary = summarize_market_context(_build_candles([100.0]))

    assert summary["trend"] == "Unknown"
