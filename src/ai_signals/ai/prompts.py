"""Prompt templates for signal validation and provider probes."""

from __future__ import annotations

from ai_signals.ai.schemas import CandleSnapshot, MarketContext

SYSTEM_PROMPT = (
    "You are a cryptocurrency trading analyst validating technical signals. "
    "Prioritize capital preservation. Recommend BUY only when the indicators "
    "clearly align and your confidence is at least 80; otherwise respond WAIT. "
    "Respond with a single JSON object and nothing else."
)

RESPONSE_FORMAT = (
    "Respond with JSON containing exactly these fields:\n"
    "{\n"
    '  "action": "BUY" | "SELL" | "WAIT",\n'
    '  "confidence": number between 0 and 100,\n'
    '  "reason": "short explanation",\n'
    '  "riskLevel": "LOW" | "MEDIUM" | "HIGH",\n'
    '  "suggestedStopLoss": number (optional),\n'
    '  "suggestedTakeProfit": number (optional)\n'
    "}"
)

PROBE_PROMPT = (
    'Reply with this JSON only: {"action": "WAIT", "confidence": 0, '
    '"reason": "connection test", "riskLevel": "LOW"}'
)


def build_validation_prompt(context: MarketContext) -> str:
    """Render the user prompt for one market context."""
    latest = context.latest
    previous = context.previous
    price_change = _pct_change(previous.close, latest.close) if previous else 0.0
    volume_change = _pct_change(previous.volume, latest.volume) if previous else 0.0
    candidate = (
        f"\nThe deterministic filter flagged a {context.candidate_action} candidate.\n"
        if context.candidate_action
        else ""
    )

    return f"""Analyze the following cryptocurrency market data for {context.instrument} on the {context.timeframe} timeframe:

LATEST CANDLE DATA:
- Time: {latest.open_time.isoformat()}
- Open: ${latest.open:.2f}
- High: ${latest.high:.2f}
- Low: ${latest.low:.2f}
- Close: ${latest.close:.2f}
- Volume: {latest.volume:.4f}
- Price Change: {price_change:.2f}%
- Volume Change: {volume_change:.2f}%

TECHNICAL INDICATORS:
- RSI: {context.rsi:.2f} ({describe_rsi(context.rsi)})
- MACD: {context.macd_line:.4f} | Signal: {context.macd_signal:.4f} | Histogram: {context.macd_histogram:.4f}
- Volume MA: {context.volume_ma:.4f}

MARKET CONTEXT:
- Trend: {context.trend}
- Volatility: {context.volatility_pct:.2f}%
- Volume Analysis: {context.volume_analysis}

RECENT PRICE ACTION (last {len(context.recent)} candles):
{_recent_price_action(context.recent)}
{candidate}
Based on this analysis, should we BUY, SELL, or WAIT?

{RESPONSE_FORMAT}"""


def describe_rsi(rsi: float) -> str:
    if rsi > 70:
        return "Overbought"
    if rsi < 30:
        return "Oversold"
    if rsi > 50:
        return "Bullish momentum"
    return "Bearish momentum"


def _recent_price_action(candles: list[CandleSnapshot]) -> str:
    lines = []
    for index, candle in enumerate(candles):
        change = _pct_change(candles[index - 1].close, candle.close) if index > 0 else 0.0
        lines.append(
            f"  {index + 1}. Close: ${candle.close:.2f} | Volume: {candle.volume:.4f} | Change: {change:.2f}%"
        )
    return "\n".join(lines)


def _pct_change(before: float, after: float) -> float:
    if before == 0:
        return 0.0
    return (after - before) / before * 100
