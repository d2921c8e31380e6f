"""
Prompt construction for signal generation.
"""

from datetime import datetime, timezone
from typing import Optional, Sequence

from llm_consensus.state.playbook import SignalHistory

SIGNAL_INSTRUCTION = (
    "Instruction: Generate a structured JSON trading signal with fields: "
    "type (BUY|SELL|HOLD), confidence (0-100), price/entry (number), "
    "stopLoss (number), takeProfit (number), reasoning (string). "
    "Provide numbers in plain digits."
)


def format_past_signal(history: SignalHistory) -> str:
    """One bullet: date, type @ price, trend context, outcome / PnL."""
    if history.timestamp:
        date_str = datetime.fromtimestamp(history.timestamp / 1000, tz=timezone.utc).strftime("%Y-%m-%d")
    else:
        date_str = "unknown date"

    line = f"- {date_str}: {history.signal_type} @ {history.entry_price}"
    if history.trend_context:
        line += f" ({history.trend_context})"

    outcome = history.outcome
    if history.pnl_percent is not None:
        outcome += f" {history.pnl_percent:+.2f}%"
    elif history.pnl is not None:
        outcome += f" PnL {history.pnl:+.2f}"
    return f"{line} -> {outcome}"


def build_prompt(
    symbol: str,
    market_context: str,
    past_signals: Optional[Sequence[SignalHistory]] = None,
    extra_context: Optional[str] = None,
) -> str:
    """
    Build the prompt sent to every provider.

    Args:
        symbol: Instrument symbol
        market_context: Multi-timeframe summary, embedded verbatim
        past_signals: Similar earlier signals shown as examples
        extra_context: Free-form text appended as an Extra block

    Returns:
        Prompt text
    """
    prompt = f"Symbol: {symbol}\nMulti-timeframe summary:\n{market_context}\n\n"

    if past_signals:
        examples = "\n".join(format_past_signal(h) for h in past_signals)
        prompt += f"Similar past signals and their outcomes:\n{examples}\n\n"

    prompt += SIGNAL_INSTRUCTION

    if extra_context:
        prompt += f"\n\nExtra: {extra_context}"
    return prompt
