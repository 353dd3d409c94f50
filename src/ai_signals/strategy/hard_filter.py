"""Deterministic pre-AI filter over the latest candle."""

from __future__ import annotations

from dataclasses import dataclass

from ai_signals.config import Settings
from ai_signals.types import Candle, HardFilterResult, IndicatorSet


@dataclass(frozen=True, slots=True)
class HardFilterThresholds:
    buy_max_rsi: float = 30.0
    sell_min_rsi: float = 70.0
    min_volume_ratio: float = 1.2
    min_body_pct: float = 0.5

    @classmethod
    def from_settings(cls, settings: Settings) -> HardFilterThresholds:
        return cls(
            buy_max_rsi=settings.filter_buy_max_rsi,
            sell_min_rsi=settings.filter_sell_min_rsi,
            min_volume_ratio=settings.filter_min_volume_ratio,
            min_body_pct=settings.filter_min_body_pct,
        )


def evaluate_hard_filter(
    indicators: IndicatorSet,
    latest: Candle,
    thresholds: HardFilterThresholds | None = None,
) -> HardFilterResult:
    """Classify the latest candle as a BUY, SELL or NEUTRAL candidate.

    BUY needs oversold RSI, a positive MACD histogram, a volume spike and a
    large enough candle body. SELL needs overbought RSI and a negative
    histogram only.
    """
    thresholds = thresholds or HardFilterThresholds()
    histogram = indicators.macd.histogram
    volume_ratio = latest.volume / indicators.volume_ma if indicators.volume_ma > 0 else 0.0
    body_pct = abs(latest.close - latest.open) / latest.open * 100 if latest.open > 0 else 0.0

    metrics = {
        "rsi": indicators.rsi,
        "macd_histogram": histogram,
        "volume_ratio": volume_ratio,
        "body_pct": body_pct,
        "close": latest.close,
    }

    buy_checks = {
        "rsi_oversold": indicators.rsi < thresholds.buy_max_rsi,
        "macd_positive": histogram > 0,
        "volume_spike": volume_ratio >= thresholds.min_volume_ratio,
        "body_move": body_pct >= thresholds.min_body_pct,
    }
    if all(buy_checks.values()):
        return HardFilterResult(
            candidate_action="BUY",
            reason="oversold with positive momentum, strong volume and significant body move",
            metrics=metrics,
        )

    if indicators.rsi > thresholds.sell_min_rsi and histogram < 0:
        return HardFilterResult(
            candidate_action="SELL",
            reason="overbought with negative momentum",
            metrics=metrics,
        )

    failed = [name for name, ok in buy_checks.items() if not ok]
    return HardFilterResult(
        candidate_action="NEUTRAL",
        reason="no_candidate: " + ",".join(failed),
        metrics=metrics,
    )
