"""AI input/output schemas and strict parsing helpers."""

from __future__ import annotations

import json
import math
import re
from collections.abc import Sequence
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ai_signals.errors import ResponseValidationError
from ai_signals.features.indicators import summarize_market_context
from ai_signals.types import Candle, IndicatorSet

_REQUIRED_FIELDS = ("action", "confidence", "reason", "riskLevel")
_RECENT_CANDLES = 5


class CandleSnapshot(BaseModel):
    """One candle as shown to the model."""

    model_config = ConfigDict(extra="forbid")

    open_time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float


class MarketContext(BaseModel):
    """Everything the validation prompt needs for one instrument/timeframe."""

    model_config = ConfigDict(extra="forbid")

    instrument: str
    timeframe: str
    latest: CandleSnapshot
    previous: CandleSnapshot | None = None
    rsi: float = Field(ge=0.0, le=100.0)
    macd_line: float
    macd_signal: float
    macd_histogram: float
    volume_ma: float = Field(ge=0.0)
    trend: str
    volatility_pct: float
    volume_analysis: str
    recent: list[CandleSnapshot] = Field(default_factory=list)
    candidate_action: Literal["BUY", "SELL"] | None = None

    @classmethod
    def from_candles(
        cls,
        instrument: str,
        timeframe: str,
        candles: Sequence[Candle],
        indicators: IndicatorSet,
        *,
        candidate_action: Literal["BUY", "SELL"] | None = None,
    ) -> MarketContext:
        ordered = sorted(candles, key=lambda c: c.open_time)
        if not ordered:
            raise ValueError("market_context_requires_candles")
        summary = summarize_market_context(ordered)
        snapshots = [_snapshot(c) for c in ordered[-_RECENT_CANDLES:]]
        return cls(
            instrument=instrument,
            timeframe=timeframe,
            latest=_snapshot(ordered[-1]),
            previous=_snapshot(ordered[-2]) if len(ordered) > 1 else None,
            rsi=indicators.rsi,
            macd_line=indicators.macd.line,
            macd_signal=indicators.macd.signal,
            macd_histogram=indicators.macd.histogram,
            volume_ma=indicators.volume_ma,
            trend=str(summary["trend"]),
            volatility_pct=float(summary["volatility"]),
            volume_analysis=str(summary["volume_analysis"]),
            recent=snapshots,
            candidate_action=candidate_action,
        )


class AIDecision(BaseModel):
    """Canonical decision produced by any provider."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    action: Literal["BUY", "SELL", "WAIT"]
    confidence: float = Field(ge=0.0, le=100.0)
    reason: str = Field(min_length=1)
    risk_level: Literal["LOW", "MEDIUM", "HIGH"] = Field(alias="riskLevel")
    suggested_stop_loss: float | None = Field(default=None, alias="suggestedStopLoss")
    suggested_take_profit: float | None = Field(default=None, alias="suggestedTakeProfit")
    provider: str | None = None


def parse_decision_payload(payload: dict[str, Any], provider: str | None = None) -> AIDecision:
    """Validate a decoded JSON object against the decision schema.

    Missing required fields, unknown actions or risk levels and numeric
    confidence outside [0, 100] are rejected. A confidence that is not a
    number at all (null, text, NaN) becomes 0.
    """
    missing = [name for name in _REQUIRED_FIELDS if name not in payload]
    if missing:
        raise ResponseValidationError(
            f"missing_required_fields: {','.join(missing)}", service_id=provider
        )

    normalized = dict(payload)
    for key in ("action", "riskLevel"):
        if isinstance(normalized[key], str):
            normalized[key] = normalized[key].strip().upper()
    normalized["confidence"] = _coerce_confidence(normalized["confidence"])
    for key in ("suggestedStopLoss", "suggestedTakeProfit"):
        if key in normalized and _coerce_number(normalized[key]) is None:
            normalized[key] = None
    normalized["provider"] = provider

    try:
        return AIDecision.model_validate(normalized)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise ResponseValidationError(
            f"schema_validation_error: {location}: {first['msg']}", service_id=provider
        ) from exc


def parse_decision_text(text: str, provider: str | None = None) -> AIDecision:
    """Parse raw model text, stripping code fences, into an ``AIDecision``."""
    try:
        json_obj = _extract_json_obj(text)
    except ValueError as exc:
        raise ResponseValidationError(str(exc), service_id=provider) from exc
    return parse_decision_payload(json_obj, provider)


def _coerce_confidence(value: Any) -> float:
    number = _coerce_number(value)
    return 0.0 if number is None else number


def _coerce_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int | float):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip().rstrip("%"))
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number):
        return None
    return number


def _snapshot(candle: Candle) -> CandleSnapshot:
    return CandleSnapshot(
        open_time=candle.open_time,
        open=candle.open,
        high=candle.high,
        low=candle.low,
        close=candle.close,
        volume=candle.volume,
    )


def _extract_json_obj(text: str) -> dict[str, Any]:
    """Extract the first JSON object from plain text or fenced content."""
    stripped = text.strip()
    if stripped.startswith("{") and stripped.endswith("}"):
        decoded = json.loads(stripped)
        if isinstance(decoded, dict):
            return decoded
        raise ValueError("model_response_json_not_object")

    fenced_match = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", stripped, re.DOTALL)
    if fenced_match:
        decoded = json.loads(fenced_match.group(1))
        if isinstance(decoded, dict):
            return decoded
        raise ValueError("model_response_json_not_object")

    brace_match = re.search(r"\{.*\}", stripped, re.DOTALL)
    if brace_match:
        decoded = json.loads(brace_match.group(0))
        if isinstance(decoded, dict):
            return decoded
        raise ValueError("model_response_json_not_object")

    raise ValueError("model_response_not_json")
