"""
Final signal assembly.

Turns an AggregateResult into the record handed to persistence and
callers: identity, timestamp, risk metrics and the merged reasoning of
the winning voters.
"""

import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from llm_consensus.strategy.aggregator import AggregateResult, round_half_up

STRATEGY_NAME = "multi-llm-consensus"
DEFAULT_POSITION_SIZE_PERCENT = 2.0
REASONING_SEPARATOR = "\n---\n"
NO_REASONING = "No reasoning provided."


@dataclass
class RiskMetrics:
    stop_loss: float
    take_profit: float
    risk_reward_ratio: float
    position_size_percent: float


@dataclass
class FinalSignal:
    """Consensus trading signal."""

    id: str
    symbol: str
    type: str
    confidence: int
    price: float
    timestamp: int  # epoch ms
    risk_metrics: RiskMetrics
    reasoning: str
    status: str = "NEW"
    strategy: str = STRATEGY_NAME
    indicators: dict[str, Any] = field(default_factory=dict)
    providers: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FinalSignal":
        data = dict(data)
        data["risk_metrics"] = RiskMetrics(**data["risk_metrics"])
        return cls(**data)


def risk_reward_ratio(price: float, stop_loss: float, take_profit: float) -> float:
    """
    Reward over risk, rounded to 2 dp.

    Returns 0 when any input is missing (0) or the stop sits at the entry.
    """
    if not price or not stop_loss or not take_profit:
        return 0.0
    risk = abs(price - stop_loss)
    if risk <= 0:
        return 0.0
    return round_half_up(abs(take_profit - price) / risk)


def merge_reasoning(result: AggregateResult) -> str:
    return REASONING_SEPARATOR.join(
        m.parsed.reasoning or NO_REASONING for m in result.members
    )


def assemble_signal(
    symbol: str,
    result: AggregateResult,
    position_size_percent: float = DEFAULT_POSITION_SIZE_PERCENT,
    indicators: Optional[dict[str, Any]] = None,
) -> FinalSignal:
    """
    Build the final signal for a symbol from the winning vote group.

    Args:
        symbol: Instrument symbol, e.g. "BTCUSDT"
        result: Aggregation output
        position_size_percent: Suggested position size as % of equity
        indicators: Optional indicator snapshot to attach

    Returns:
        FinalSignal with a fresh id and the current timestamp
    """
    return FinalSignal(
        id=str(uuid.uuid4()),
        symbol=symbol,
        type=result.signal_type.value,
        confidence=result.confidence,
        price=result.price,
        timestamp=int(time.time() * 1000),
        risk_metrics=RiskMetrics(
            stop_loss=result.stop_loss,
            take_profit=result.take_profit,
            risk_reward_ratio=risk_reward_ratio(result.price, result.stop_loss, result.take_profit),
            position_size_percent=position_size_percent,
        ),
        reasoning=merge_reasoning(result),
        indicators=dict(indicators or {}),
        providers=[m.provider_id for m in result.members],
    )
