from __future__ import annotations

from datetime import UTC, datetime

from ai_signals.strategy.hard_filter import HardFilterThresholds, evaluate_hard_filter
from ai_signals.types import Candle, IndicatorSet, MacdValues


def _build_indicators(rsi: float, histogram: float, volume_ma: float = 1_000.0) -> IndicatorSet:
    return IndicatorSet(
        rsi=rsi,
        macd=MacdValues(line=histogram, signal=0.0, histogram=histogram),
        volume_ma=volume_ma,
    )


def _build_candle(open_: float = 100.0, close: float = 100.6, volume: float = 1_500.0) -> Candle:
    return Candle(
        instrument="BTC/USDT",
        timeframe="1h",
        open_time=datetime(2024, 1, 1, tzinfo=UTC),
        open=open_,
        high=max(open_, close) + 0.1,
        low=min(open_, close) - 0.1,
        close=close,
        volume=volume,
    )


def test_buy_candidate_when_all_conditions_hold() -> None:
    result = evaluate_hard_filter(_build_indicators(rsi=25.0, histogram=0.5), _build_candle())

    assert result.candidate_action == "BUY"
    assert result.passed
    assert result.metrics["volume_ratio"] == 1.5
    assert result.metrics["body_pct"] >= 0.5


def test_sell_candidate_ignores_volume_and_body() -> None:
    candle = _build_candle(close=100.01, volume=100.0)

    result = evaluate_hard_filter(_build_indicators(rsi=75.0, histogram=-0.2), candle)

    assert result.candidate_action == "SELL"
    assert result.reason == "overbought with negative momentum"


def test_weak_volume_blocks_buy() -> None:
    candle = _build_candle(volume=1_100.0)

    result = evaluate_hard_filter(_build_indicators(rsi=25.0, histogram=0.5), candle)

    assert result.candidate_action == "NEUTRAL"
    assert not result.passed
    assert "volume_spike" in result.reason


def test_small_body_blocks_buy() -> None:
    result = evaluate_hard_filter(
        _build_indicators(rsi=25.0, histogram=0.5), _build_candle(close=100.2)
    )

    assert result.candidate_action == "NEUTRAL"
    assert "body_move" in result.reason


def test_rsi_thresholds_are_strict() -> None:
    at_buy_edge = evaluate_hard_filter(_build_indicators(rsi=30.0, histogram=0.5), _build_candle())
    at_sell_edge = evaluate_hard_filter(_build_indicators(rsi=70.0, histogram=-0.5), _build_candle())

    assert at_buy_edge.candidate_action == "NEUTRAL"
    assert "rsi_oversold" in at_buy_edge.reason
    assert at_sell_edge.candidate_action == "NEUTRAL"


def test_volume_ratio_threshold_is_inclusive() -> None:
    result = evaluate_hard_filter(
        _build_indicators(rsi=25.0, histogram=0.5), _build_candle(volume=1_200.0)
    )

    assert result.candidate_action == "BUY"


def test_zero_volume_average_never_passes_volume_check() -> None:
    result = evaluate_hard_filter(
        _build_indicators(rsi=25.0, histogram=0.5, volume_ma=0.0), _build_candle()
    )

    assert result.candidate_action == "NEUTRAL"
    assert result.metrics["volume_ratio"] == 0.0


def test_custom_thresholds_and_repeatability() -> None:
    thresholds = HardFilterThresholds(buy_max_rsi=40.0, min_volume_ratio=1.0, min_body_pct=0.1)
    indicators = _build_indicators(rsi=35.0, histogram=0.1)
    candle = _build_candle(close=100.2, volume=1_000.0)

    first = evaluate_hard_filter(indicators, candle, thresholds)
    second = evaluate_hard_filter(indicators, candle, thresholds)

    assert first.candidate_action == "BUY"
    assert first == second
