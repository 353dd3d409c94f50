"""Fuse the hard filter and AI validation into a final trading signal."""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Any

from ai_signals.ai.manager import AIProviderManager
from ai_signals.ai.schemas import AIDecision, MarketContext
from ai_signals.errors import InsufficientHistoryError, ProviderError
from ai_signals.features.indicators import IndicatorPeriods, compute_indicator_set
from ai_signals.result import Err, Result
from ai_signals.strategy.hard_filter import HardFilterThresholds, evaluate_hard_filter
from ai_signals.types import Candle, FinalAction, HardFilterResult, IndicatorSet, TradingSignal
from ai_signals.utils.logging import get_logger, log_trade_signal

REASON_FILTER_NOT_MET = "hard filter not met"
REASON_AI_UNAVAILABLE = "AI unavailable"
REASON_AUTO_SELL_DISABLED = "SELL candidate observed; auto-sell disabled"

_logger = get_logger("ai_signals.strategy.decision")


def clamp_confidence(value: Any) -> float:
    """Clamp to [0, 100]; non-numeric values and NaN become 0."""
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number):
        return 0.0
    return min(100.0, max(0.0, number))


class SignalDecisionEngine:
    """Stateless evaluator: the same inputs always produce the same signal.

    Only BUY is actionable by default. With ``allow_auto_sell`` a SELL
    candidate is sent to the AI as well, and a confirmed SELL is emitted so
    the position manager can close an open long.
    """

    def __init__(
        self,
        ai_manager: AIProviderManager | None,
        *,
        min_confidence: float = 80.0,
        allow_auto_sell: bool = False,
        periods: IndicatorPeriods | None = None,
        thresholds: HardFilterThresholds | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._ai_manager = ai_manager
        self.min_confidence = min_confidence
        self.allow_auto_sell = allow_auto_sell
        self._periods = periods or IndicatorPeriods()
        self._thresholds = thresholds or HardFilterThresholds()
        self._clock = clock

    async def evaluate(
        self,
        instrument: str,
        timeframe: str,
        candles: Sequence[Candle],
    ) -> TradingSignal:
        """Run indicators, hard filter and (when warranted) the AI for one pair."""
        try:
            indicators = compute_indicator_set(candles, self._periods)
        except InsufficientHistoryError as exc:
            signal = self._signal(
                instrument,
                timeframe,
                final_action="WAIT",
                confidence=0.0,
                reason=str(exc),
                candidate_action="NEUTRAL",
                hard_filter_passed=False,
            )
            self._log(signal)
            return signal

        latest = max(candles, key=lambda c: c.open_time)
        hard_filter = evaluate_hard_filter(indicators, latest, self._thresholds)

        outcome: Result[AIDecision, ProviderError] | None = None
        if self._needs_ai(hard_filter) and self._ai_manager is not None and self._ai_manager.available:
            context = MarketContext.from_candles(
                instrument,
                timeframe,
                candles,
                indicators,
                candidate_action=hard_filter.candidate_action,  # type: ignore[arg-type]
            )
            outcome = await self._ai_manager.try_predict(context)

        signal = self.decide(instrument, timeframe, hard_filter, outcome, indicators=indicators)
        self._log(signal)
        return signal

    def decide(
        self,
        instrument: str,
        timeframe: str,
        hard_filter: HardFilterResult,
        outcome: Result[AIDecision, ProviderError] | None,
        *,
        indicators: IndicatorSet | None = None,
    ) -> TradingSignal:
        """Pure decision step over a hard-filter verdict and an AI outcome."""
        base: dict[str, Any] = {
            "candidate_action": hard_filter.candidate_action,
            "hard_filter_passed": hard_filter.passed,
            "indicators": indicators,
        }

        if not hard_filter.passed:
            return self._wait(instrument, timeframe, REASON_FILTER_NOT_MET, base)

        if hard_filter.candidate_action == "SELL" and not self.allow_auto_sell:
            return self._wait(instrument, timeframe, REASON_AUTO_SELL_DISABLED, base)

        if outcome is None:
            return self._wait(instrument, timeframe, REASON_AI_UNAVAILABLE, base)

        if isinstance(outcome, Err):
            return self._wait(instrument, timeframe, f"{REASON_AI_UNAVAILABLE}: {outcome.error}", base)

        decision = outcome.value
        confidence = clamp_confidence(decision.confidence)
        confirmed = (
            decision.action == hard_filter.candidate_action
            and confidence >= self.min_confidence
        )
        final_action: FinalAction = decision.action if confirmed else "WAIT"  # type: ignore[assignment]
        return self._signal(
            instrument,
            timeframe,
            final_action=final_action,
            confidence=confidence,
            reason=decision.reason,
            risk_level=decision.risk_level,
            ai_decision=decision,
            **base,
        )

    def _needs_ai(self, hard_filter: HardFilterResult) -> bool:
        if hard_filter.candidate_action == "BUY":
            return True
        return hard_filter.candidate_action == "SELL" and self.allow_auto_sell

    def _wait(
        self, instrument: str, timeframe: str, reason: str, base: dict[str, Any]
    ) -> TradingSignal:
        return self._signal(
            instrument, timeframe, final_action="WAIT", confidence=0.0, reason=reason, **base
        )

    def _signal(self, instrument: str, timeframe: str, **fields: Any) -> TradingSignal:
        return TradingSignal(
            instrument=instrument,
            timeframe=timeframe,
            timestamp=self._clock(),
            **fields,
        )

    def _log(self, signal: TradingSignal) -> None:
        log_trade_signal(
            _logger,
            instrument=signal.instrument,
            timeframe=signal.timeframe,
            action=signal.final_action,
            confidence=signal.confidence,
            candidate=signal.candidate_action,
            reason=signal.reason,
            provider=signal.ai_decision.provider if signal.ai_decision else None,
        )
