"""Signal and position-monitor cycles, and the wiring that builds them."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime
from time import perf_counter
from typing import Any, Protocol

from ai_signals.ai.manager import AIProviderManager, build_ai_manager
from ai_signals.config import Settings
from ai_signals.data.binance import BinanceMarketData, timeframe_duration
from ai_signals.data.candles import CandleStore, MarketDataService
from ai_signals.errors import MarketDataError
from ai_signals.exec.positions import JsonPositionStore, PositionManager, position_to_json
from ai_signals.features.indicators import IndicatorPeriods
from ai_signals.journal.store import JournalStore
from ai_signals.risk.rules import ExitRules
from ai_signals.scheduler import Scheduler
from ai_signals.strategy.decision import SignalDecisionEngine
from ai_signals.strategy.hard_filter import HardFilterThresholds
from ai_signals.types import CycleResult, Position, TradingSignal
from ai_signals.utils.logging import get_logger

_logger = get_logger("ai_signals.pipeline")


class Closeable(Protocol):
    async def close(self) -> None: ...


class Orchestrator:
    """Runs signal cycles per (instrument, timeframe) and position monitor ticks.

    A failing cycle is logged and journaled and resolves to a WAIT signal;
    it never propagates to the scheduler.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        market: MarketDataService,
        engine: SignalDecisionEngine,
        positions: PositionManager,
        ai_manager: AIProviderManager | None = None,
        journal: JournalStore | None = None,
        data_source: Closeable | None = None,
    ) -> None:
        self._settings = settings
        self._market = market
        self._engine = engine
        self._positions = positions
        self._ai_manager = ai_manager
        self._journal = journal
        self._data_source = data_source
        self._scheduler: Scheduler | None = None

    @property
    def pairs(self) -> list[tuple[str, str]]:
        return [(i, t) for i in self._settings.instruments for t in self._settings.timeframes]

    async def start(self, *, start_health_checks: bool = True) -> None:
        if self._ai_manager is not None:
            await self._ai_manager.initialize(start_health_checks=start_health_checks)

    async def shutdown(self) -> None:
        if self._scheduler is not None:
            self._scheduler.stop()
        if self._ai_manager is not None:
            await self._ai_manager.dispose()
        if self._data_source is not None:
            await self._data_source.close()

    async def run_signal_cycle(
        self,
        instrument: str,
        timeframe: str,
        *,
        dry_run: bool = False,
        sync: bool = True,
    ) -> tuple[TradingSignal, list[Position]]:
        """Sync candles, evaluate one pair and act on an actionable signal.

        With ``sync=False`` the pair is evaluated on whatever history the
        store already holds.
        """
        self._record(
            "cycle_start",
            {"instrument": instrument, "timeframe": timeframe, "dry_run": dry_run},
        )
        active_before = self._ai_manager.active_service if self._ai_manager else None
        touched: list[Position] = []
        try:
            if sync:
                await self._sync_pair(instrument, timeframe)

            candles = self._market.recent_candles(
                instrument, timeframe, self._settings.analysis_window
            )
            signal = await self._engine.evaluate(instrument, timeframe, candles)
            self._record_signal(signal, active_before)

            if signal.actionable and not dry_run:
                position = await self._act(signal)
                if position is not None:
                    touched.append(position)
        except Exception as exc:  # noqa: BLE001
            _logger.exception(
                "signal_cycle_failed",
                instrument=instrument,
                timeframe=timeframe,
                error=str(exc),
            )
            self._record(
                "error",
                {"instrument": instrument, "timeframe": timeframe, "error": str(exc)},
            )
            signal = TradingSignal(
                instrument=instrument,
                timeframe=timeframe,
                final_action="WAIT",
                confidence=0.0,
                reason=f"cycle_failed: {exc}",
                hard_filter_passed=False,
                candidate_action="NEUTRAL",
                timestamp=datetime.now(UTC),
            )
        self._record(
            "cycle_end",
            {"instrument": instrument, "timeframe": timeframe, "final_action": signal.final_action},
        )
        return signal, touched

    async def run_all_signals(
        self,
        *,
        dry_run: bool = False,
        instruments: Sequence[str] | None = None,
        timeframes: Sequence[str] | None = None,
    ) -> CycleResult:
        """Sync every pair in one batch, then evaluate the pairs concurrently.

        A pair whose sync failed is evaluated on stored history.
        """
        started = perf_counter()
        selected_instruments = list(instruments or self._settings.instruments)
        selected_timeframes = list(timeframes or self._settings.timeframes)
        pairs = [(i, t) for i in selected_instruments for t in selected_timeframes]

        synced = await self._market.sync_many(selected_instruments, selected_timeframes)
        self._record("candle_sync", {"pairs": synced})
        failed_syncs = [key for key, inserted in synced.items() if inserted < 0]
        if failed_syncs:
            _logger.warning("candle_sync_failed_using_stored_history", pairs=failed_syncs)

        outcomes = await asyncio.gather(
            *(self.run_signal_cycle(i, t, dry_run=dry_run, sync=False) for i, t in pairs)
        )
        result = CycleResult(status="completed")
        for signal, touched in outcomes:
            result.signals.append(signal)
            result.positions.extend(position_to_json(p) for p in touched)
            if signal.reason.startswith("cycle_failed"):
                result.warnings.append(f"{signal.instrument}:{signal.timeframe} {signal.reason}")
        if result.warnings:
            result.status = "completed_with_errors"
        result.elapsed_ms = (perf_counter() - started) * 1000
        _logger.info(
            "signal_batch_completed",
            pairs=len(pairs),
            actionable=sum(1 for s in result.signals if s.actionable),
            positions=len(result.positions),
            elapsed_ms=round(result.elapsed_ms, 2),
        )
        return result

    async def run_monitor_cycle(self) -> list[Position]:
        """One position monitor tick."""
        try:
            closed = await self._positions.monitor()
        except Exception as exc:  # noqa: BLE001
            _logger.exception("monitor_cycle_failed", error=str(exc))
            self._record("error", {"stage": "monitor", "error": str(exc)})
            return []
        for position in closed:
            self._record("position_close", position_to_json(position))
        self._record(
            "monitor_tick",
            {"open": len(self._positions.store.list_open()), "closed": len(closed)},
        )
        return closed

    async def run_health_check(self) -> dict[str, Any]:
        """Refresh provider readiness and report what is usable."""
        if self._ai_manager is None:
            return {"ai": "not_configured"}
        active_before = self._ai_manager.active_service
        results = await self._ai_manager.check_health()
        if self._ai_manager.active_service != active_before:
            self._record(
                "provider_switch",
                {"previous": active_before, "active": self._ai_manager.active_service},
            )
        return {"providers": results, "active_service": self._ai_manager.active_service}

    def build_scheduler(self) -> Scheduler:
        """Signal jobs per pair at their timeframe, plus monitor and health jobs."""
        scheduler = Scheduler(tick=self._settings.scheduler_tick)
        for instrument, timeframe in self.pairs:
            scheduler.add_job(
                f"signal:{instrument}:{timeframe}",
                timeframe_duration(timeframe).total_seconds(),
                _bind_signal_job(self, instrument, timeframe),
            )
        scheduler.add_job("monitor", self._settings.monitor_interval, self.run_monitor_cycle)
        scheduler.add_job(
            "health",
            self._settings.health_check_interval,
            self.run_health_check,
            run_immediately=False,
        )
        self._scheduler = scheduler
        return scheduler

    def status(self) -> dict[str, Any]:
        return {
            "pairs": [f"{i}:{t}" for i, t in self.pairs],
            "jobs": self._scheduler.status() if self._scheduler else {},
            "ai": self._ai_manager.stats() if self._ai_manager else None,
            "open_positions": [position_to_json(p) for p in self._positions.store.list_open()],
        }

    async def _sync_pair(self, instrument: str, timeframe: str) -> None:
        try:
            inserted = await self._market.sync_candles(instrument, timeframe)
        except MarketDataError as exc:
            _logger.warning(
                "candle_sync_failed_using_stored_history",
                instrument=instrument,
                timeframe=timeframe,
                error=str(exc),
            )
            return
        self._record(
            "candle_sync",
            {"instrument": instrument, "timeframe": timeframe, "inserted": inserted},
        )

    async def _act(self, signal: TradingSignal) -> Position | None:
        if signal.final_action == "BUY":
            position = await self._positions.open_position(signal.instrument)
            if position is None:
                self._record(
                    "position_skip",
                    {"instrument": signal.instrument, "reason": "already_open"},
                )
            else:
                self._record("position_open", position_to_json(position))
            return position
        if signal.final_action == "SELL":
            closed = await self._positions.close_on_signal(signal.instrument)
            if closed is not None:
                self._record("position_close", position_to_json(closed))
            return closed
        return None

    def _record_signal(self, signal: TradingSignal, active_before: str | None) -> None:
        self._record(
            "hard_filter",
            {
                "instrument": signal.instrument,
                "timeframe": signal.timeframe,
                "candidate_action": signal.candidate_action,
                "passed": signal.hard_filter_passed,
            },
        )
        if signal.ai_decision is not None:
            self._record("ai_decision", signal.ai_decision.model_dump())
        if self._ai_manager is not None and self._ai_manager.active_service != active_before:
            self._record(
                "provider_switch",
                {"previous": active_before, "active": self._ai_manager.active_service},
            )
        self._record("signal", _signal_summary(signal))

    def _record(self, event_type: str, payload: dict[str, Any]) -> None:
        if self._journal is not None:
            self._journal.append(event_type, payload)


def build_orchestrator(settings: Settings) -> Orchestrator:
    """Wire the production graph from settings."""
    settings.ensure_directories()
    source = BinanceMarketData(settings)
    market = MarketDataService(
        source,
        CandleStore(retention=settings.analysis_window * 3),
        sync_limit=settings.candle_sync_limit,
    )
    ai_manager = build_ai_manager(settings)
    engine = SignalDecisionEngine(
        ai_manager,
        min_confidence=settings.ai_min_confidence,
        allow_auto_sell=settings.allow_auto_sell,
        periods=IndicatorPeriods.from_settings(settings),
        thresholds=HardFilterThresholds.from_settings(settings),
    )
    positions = PositionManager(
        JsonPositionStore(settings.positions_file),
        source,
        ExitRules.from_settings(settings),
        default_size=settings.position_size,
    )
    return Orchestrator(
        settings,
        market=market,
        engine=engine,
        positions=positions,
        ai_manager=ai_manager,
        journal=JournalStore(settings.journal_dir),
        data_source=source,
    )


def _bind_signal_job(
    orchestrator: Orchestrator, instrument: str, timeframe: str
) -> Callable[[], Awaitable[None]]:
    async def job() -> None:
        await orchestrator.run_signal_cycle(instrument, timeframe)

    return job


def _signal_summary(signal: TradingSignal) -> dict[str, Any]:
    return {
        "instrument": signal.instrument,
        "timeframe": signal.timeframe,
        "final_action": signal.final_action,
        "confidence": signal.confidence,
        "reason": signal.reason,
        "risk_level": signal.risk_level,
        "hard_filter_passed": signal.hard_filter_passed,
        "candidate_action": signal.candidate_action,
        "provider": signal.ai_decision.provider if signal.ai_decision else None,
        "timestamp": signal.timestamp.isoformat(),
    }

