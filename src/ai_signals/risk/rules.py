"""Take-profit / stop-loss exit rules."""

from __future__ import annotations

from ai_signals.config import Settings
from ai_signals.types import CloseReason, Position


class ExitRules:
    """Percentage TP/SL boundaries relative to the entry price."""

    def __init__(self, take_profit_pct: float = 6.0, stop_loss_pct: float = 3.0) -> None:
        if take_profit_pct <= 0:
            raise ValueError("take_profit_pct must be > 0")
        if not 0 < stop_loss_pct < 100:
            raise ValueError("stop_loss_pct must be in (0, 100)")
        self.take_profit_pct = take_profit_pct
        self.stop_loss_pct = stop_loss_pct

    @classmethod
    def from_settings(cls, settings: Settings) -> ExitRules:
        return cls(settings.take_profit_pct, settings.stop_loss_pct)

    def take_profit_price(self, entry_price: float) -> float:
        return entry_price * (1 + self.take_profit_pct / 100)

    def stop_loss_price(self, entry_price: float) -> float:
        return entry_price * (1 - self.stop_loss_pct / 100)

    def check_exit(self, position: Position, current_price: float) -> CloseReason | None:
        """Return the trigger when the price strictly crosses a boundary."""
        if current_price > self.take_profit_price(position.entry_price):
            return "TAKE_PROFIT"
        if current_price < self.stop_loss_price(position.entry_price):
            return "STOP_LOSS"
        return None


def realized_pnl(position: Position, exit_price: float) -> float:
    return (exit_price - position.entry_price) * position.size
