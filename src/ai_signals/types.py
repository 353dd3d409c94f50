"""Shared domain types for the signal pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from ai_signals.ai.schemas import AIDecision

CandidateAction = Literal["BUY", "SELL", "NEUTRAL"]
FinalAction = Literal["BUY", "SELL", "WAIT"]
RiskLevel = Literal["LOW", "MEDIUM", "HIGH"]
PositionStatus = Literal["OPEN", "CLOSED"]
CloseReason = Literal["TAKE_PROFIT", "STOP_LOSS", "SIGNAL_EXIT"]


@dataclass(frozen=True, slots=True)
class Candle:
    """One finalized OHLCV bar, identified by (instrument, timeframe, open_time)."""

    instrument: str
    timeframe: str
    open_time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float

    @property
    def key(self) -> tuple[str, str, datetime]:
        return (self.instrument, self.timeframe, self.open_time)


@dataclass(frozen=True, slots=True)
class MacdValues:
    line: float
    signal: float
    histogram: float


@dataclass(frozen=True, slots=True)
class IndicatorSet:
    """Latest indicator values computed from an ascending candle window."""

    rsi: float
    macd: MacdValues
    volume_ma: float


@dataclass(frozen=True, slots=True)
class HardFilterResult:
    """Deterministic pre-AI verdict for the latest candle."""

    candidate_action: CandidateAction
    reason: str
    metrics: dict[str, float] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.candidate_action != "NEUTRAL"


@dataclass(frozen=True, slots=True)
class TradingSignal:
    """Authoritative output of one evaluation."""

    instrument: str
    timeframe: str
    final_action: FinalAction
    confidence: float
    reason: str
    hard_filter_passed: bool
    candidate_action: CandidateAction
    timestamp: datetime
    risk_level: RiskLevel = "MEDIUM"
    indicators: IndicatorSet | None = None
    ai_decision: AIDecision | None = None

    @property
    def actionable(self) -> bool:
        return self.final_action != "WAIT"


@dataclass(slots=True)
class Position:
    """Position record. Status moves OPEN -> CLOSED exactly once."""

    id: str
    instrument: str
    entry_price: float
    size: float
    open_time: datetime
    status: PositionStatus = "OPEN"
    pnl: float = 0.0
    close_time: datetime | None = None
    exit_price: float | None = None
    close_reason: CloseReason | None = None


@dataclass(slots=True)
class ProviderHealth:
    """Per-provider health and usage counters."""

    service_id: str
    cost_per_call: float
    ready: bool = False
    request_count: int = 0
    error_count: int = 0
    last_error: str | None = None

    @property
    def cost_accrued(self) -> float:
        return self.cost_per_call * self.request_count


@dataclass(slots=True)
class CycleResult:
    """Outcome of one pipeline cycle run."""

    status: str
    signals: list[TradingSignal] = field(default_factory=list)
    positions: list[dict[str, object]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    elapsed_ms: float = 0.0
