"""Position stores and the open/monitor/close lifecycle."""

from __future__ import annotations

import asyncio
import json
import uuid
from collections.abc import Callable
from dataclasses import asdict, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from ai_signals.errors import MarketDataError, PositionConflictError
from ai_signals.risk.rules import ExitRules, realized_pnl
from ai_signals.types import Candle, CloseReason, Position
from ai_signals.utils.logging import get_logger, log_position_event

_logger = get_logger("ai_signals.exec.positions")


class PositionStore(Protocol):
    def find_open(self, instrument: str) -> Position | None: ...

    def insert(self, position: Position) -> None: ...

    def close(
        self,
        position_id: str,
        *,
        exit_price: float,
        pnl: float,
        close_time: datetime,
        reason: CloseReason,
    ) -> Position: ...

    def list_open(self) -> list[Position]: ...

    def list_all(self) -> list[Position]: ...


class PriceSource(Protocol):
    async def fetch_price(self, instrument: str) -> float: ...

    async def fetch_candles(
        self,
        instrument: str,
        timeframe: str,
        *,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[Candle]: ...


class InMemoryPositionStore:
    """Position rows keyed by id; rejects a second OPEN row per instrument."""

    def __init__(self) -> None:
        self._rows: dict[str, Position] = {}

    def find_open(self, instrument: str) -> Position | None:
        for position in self._rows.values():
            if position.instrument == instrument and position.status == "OPEN":
                return replace(position)
        return None

    def insert(self, position: Position) -> None:
        if position.status == "OPEN" and self.find_open(position.instrument) is not None:
            raise PositionConflictError(f"open_position_exists: {position.instrument}")
        if position.id in self._rows:
            raise PositionConflictError(f"duplicate_position_id: {position.id}")
        self._rows[position.id] = replace(position)
        self._persist()

    def close(
        self,
        position_id: str,
        *,
        exit_price: float,
        pnl: float,
        close_time: datetime,
        reason: CloseReason,
    ) -> Position:
        """Move an OPEN row to CLOSED; a row is closed at most once."""
        current = self._rows.get(position_id)
        if current is None:
            raise KeyError(position_id)
        if current.status != "OPEN":
            raise PositionConflictError(f"position_not_open: {position_id}")
        closed = replace(
            current,
            status="CLOSED",
            exit_price=exit_price,
            pnl=pnl,
            close_time=close_time,
            close_reason=reason,
        )
        self._rows[position_id] = closed
        self._persist()
        return replace(closed)

    def list_open(self) -> list[Position]:
        return [replace(p) for p in self._rows.values() if p.status == "OPEN"]

    def list_all(self) -> list[Position]:
        return [replace(p) for p in self._rows.values()]

    def _persist(self) -> None:
        """Hook for durable subclasses."""


class JsonPositionStore(InMemoryPositionStore):
    """Position store persisted to a local JSON file after every change."""

    def __init__(self, state_file: Path) -> None:
        super().__init__()
        self._state_file = state_file
        self._load_state()

    def _load_state(self) -> None:
        if not self._state_file.exists():
            return
        raw = json.loads(self._state_file.read_text(encoding="utf-8"))
        for item in raw.get("positions", []):
            position = Position(
                id=str(item["id"]),
                instrument=str(item["instrument"]),
                entry_price=float(item["entry_price"]),
                size=float(item["size"]),
                open_time=datetime.fromisoformat(item["open_time"]),
                status=item.get("status", "OPEN"),
                pnl=float(item.get("pnl", 0.0)),
                close_time=_parse_time(item.get("close_time")),
                exit_price=_optional_float(item.get("exit_price")),
                close_reason=item.get("close_reason"),
            )
            self._rows[position.id] = position

    def _persist(self) -> None:
        payload: dict[str, Any] = {
            "positions": [position_to_json(p) for p in self._rows.values()],
        }
        self._state_file.parent.mkdir(parents=True, exist_ok=True)
        serialized = json.dumps(payload, ensure_ascii=True, indent=2)
        self._state_file.write_text(serialized, encoding="utf-8")


class PositionManager:
    """Opens at most one position per instrument and closes it on TP/SL.

    Opens for the same instrument are serialized with a per-instrument lock,
    and a store-level conflict is treated as "already open".
    """

    def __init__(
        self,
        store: PositionStore,
        prices: PriceSource,
        rules: ExitRules,
        *,
        default_size: float = 1.0,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._store = store
        self._prices = prices
        self._rules = rules
        self._default_size = default_size
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def store(self) -> PositionStore:
        return self._store

    async def open_position(
        self,
        instrument: str,
        *,
        price: float | None = None,
        size: float | None = None,
    ) -> Position | None:
        """Open a long; returns None when one is already open.

        Raises:
            MarketDataError: no price given and none could be fetched.
        """
        async with self._lock_for(instrument):
            existing = self._store.find_open(instrument)
            if existing is not None:
                _logger.info("position_open_skipped", instrument=instrument, existing_id=existing.id)
                return None

            entry_price = price if price is not None else await self.current_price(instrument)
            if entry_price is None:
                raise MarketDataError(f"no_price_available: {instrument}")

            position = Position(
                id=uuid.uuid4().hex,
                instrument=instrument,
                entry_price=float(entry_price),
                size=float(size if size is not None else self._default_size),
                open_time=self._clock(),
            )
            try:
                self._store.insert(position)
            except PositionConflictError:
                _logger.info("position_open_conflict", instrument=instrument)
                return None

        log_position_event(
            _logger,
            event="position_opened",
            instrument=instrument,
            entry_price=position.entry_price,
            size=position.size,
            position_id=position.id,
            take_profit=self._rules.take_profit_price(position.entry_price),
            stop_loss=self._rules.stop_loss_price(position.entry_price),
        )
        return position

    async def monitor(self) -> list[Position]:
        """One monitor tick over every OPEN position; returns what was closed."""
        closed: list[Position] = []
        for snapshot in self._store.list_open():
            try:
                result = await self._check_position(snapshot)
            except Exception:  # noqa: BLE001
                _logger.exception(
                    "position_monitor_failed",
                    instrument=snapshot.instrument,
                    position_id=snapshot.id,
                )
                continue
            if result is not None:
                closed.append(result)
        return closed

    async def _check_position(self, snapshot: Position) -> Position | None:
        async with self._lock_for(snapshot.instrument):
            position = self._store.find_open(snapshot.instrument)
            if position is None or position.id != snapshot.id:
                # closed or replaced by a signal while this tick was queued
                return None
            current = await self.current_price(position.instrument)
            if current is None:
                _logger.warning(
                    "position_monitor_skipped",
                    instrument=position.instrument,
                    position_id=position.id,
                )
                return None
            reason = self._rules.check_exit(position, current)
            if reason is None:
                _logger.debug(
                    "position_checked",
                    instrument=position.instrument,
                    price=current,
                    unrealized_pnl=realized_pnl(position, current),
                )
                return None
            return self._close(position, current, reason)

    async def close_on_signal(self, instrument: str, *, price: float | None = None) -> Position | None:
        """Close the open long after a confirmed SELL; None when nothing is open."""
        async with self._lock_for(instrument):
            position = self._store.find_open(instrument)
            if position is None:
                return None
            exit_price = price if price is not None else await self.current_price(instrument)
            if exit_price is None:
                raise MarketDataError(f"no_price_available: {instrument}")
            return self._close(position, exit_price, "SIGNAL_EXIT")

    async def current_price(self, instrument: str) -> float | None:
        """Ticker price, else the last close of a small 1m fetch, else None."""
        try:
            return await self._prices.fetch_price(instrument)
        except MarketDataError as exc:
            _logger.warning("price_fetch_failed", instrument=instrument, error=str(exc))

        try:
            candles = await self._prices.fetch_candles(instrument, "1m", limit=2)
        except MarketDataError as exc:
            _logger.warning("price_fallback_failed", instrument=instrument, error=str(exc))
            return None
        if not candles:
            return None
        return max(candles, key=lambda c: c.open_time).close

    def _close(self, position: Position, exit_price: float, reason: CloseReason) -> Position:
        closed = self._store.close(
            position.id,
            exit_price=exit_price,
            pnl=realized_pnl(position, exit_price),
            close_time=self._clock(),
            reason=reason,
        )
        log_position_event(
            _logger,
            event="position_closed",
            instrument=closed.instrument,
            entry_price=closed.entry_price,
            size=closed.size,
            exit_price=exit_price,
            pnl=closed.pnl,
            reason=reason,
            position_id=closed.id,
        )
        return closed

    def _lock_for(self, instrument: str) -> asyncio.Lock:
        return self._locks.setdefault(instrument, asyncio.Lock())


def position_to_json(position: Position) -> dict[str, Any]:
    data = asdict(position)
    data["open_time"] = position.open_time.isoformat()
    data["close_time"] = position.close_time.isoformat() if position.close_time else None
    return data


def _parse_time(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _optional_float(value: Any) -> float | None:
    return float(value) if value is not None else None
