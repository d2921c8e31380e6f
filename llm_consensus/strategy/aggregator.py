"""
Consensus voting over provider signals.

Usable responses are grouped by signal type and a winning group is picked
by the selected mode:

- MAJORITY: most votes
- WEIGHTED: highest votes * mean confidence (default)
- FIRST: type of the first usable response in dispatch order

Ties go to the alphabetically first type (BUY < HOLD < SELL), so the result
depends only on the input list, never on provider completion order.
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional, Sequence

import structlog

from llm_consensus.ai.provider_adapter import ParsedResponse
from llm_consensus.ai.signal_parser import SignalType

logger = structlog.get_logger(__name__)

DEFAULT_CONFIDENCE = 50.0


class AggregationMode(str, Enum):
    """Winner selection strategy."""

    MAJORITY = "MAJORITY"
    WEIGHTED = "WEIGHTED"
    FIRST = "FIRST"


def round_half_up(value: float, places: int = 2) -> float:
    """Round like a spreadsheet (0.125 -> 0.13), not banker's rounding."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


@dataclass
class VoteGroup:
    """Responses voting for one signal type."""

    signal_type: SignalType
    members: list[ParsedResponse] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.members)

    @property
    def mean_confidence(self) -> float:
        return _mean([
            m.parsed.confidence if m.parsed.confidence is not None else DEFAULT_CONFIDENCE
            for m in self.members
        ])

    @property
    def weighted_score(self) -> float:
        return self.count * self.mean_confidence

    def average_of(self, attr: str) -> float:
        """Average a numeric field over members that supplied it; 0 if none did."""
        values = [
            getattr(m.parsed, attr) for m in self.members
            if getattr(m.parsed, attr) is not None
        ]
        return _mean(values)


@dataclass(frozen=True)
class AggregateResult:
    """Winning vote group reduced to a single set of numbers."""

    signal_type: SignalType
    confidence: int
    price: float
    stop_loss: float
    take_profit: float
    members: tuple[ParsedResponse, ...]
    mode: AggregationMode
    vote_counts: dict[str, int] = field(default_factory=dict)


def group_votes(responses: Sequence[ParsedResponse]) -> dict[SignalType, VoteGroup]:
    """Group usable responses by type, defaulting a missing type to HOLD."""
    groups: dict[SignalType, VoteGroup] = {}
    for response in responses:
        signal_type = response.parsed.type or SignalType.HOLD
        groups.setdefault(signal_type, VoteGroup(signal_type)).members.append(response)
    return groups


def select_winner(
    groups: dict[SignalType, VoteGroup],
    usable: Sequence[ParsedResponse],
    mode: AggregationMode,
) -> SignalType:
    """Pick the winning signal type for the given mode."""
    if mode == AggregationMode.FIRST:
        return usable[0].parsed.type or SignalType.HOLD

    if mode == AggregationMode.MAJORITY:
        def score(group: VoteGroup) -> float:
            return group.count
    else:
        def score(group: VoteGroup) -> float:
            return group.weighted_score

    ranked = sorted(groups.values(), key=lambda g: (-score(g), g.signal_type.value))
    return ranked[0].signal_type


def aggregate(
    responses: Sequence[ParsedResponse],
    mode: AggregationMode = AggregationMode.WEIGHTED,
) -> Optional[AggregateResult]:
    """
    Reduce provider responses to one consensus.

    Args:
        responses: All dispatcher results, in dispatch order
        mode: Winner selection strategy

    Returns:
        AggregateResult, or None when no response is usable
    """
    usable = [r for r in responses if r.usable]
    if not usable:
        logger.warning(
            "aggregation_no_usable_responses",
            total=len(responses),
            errors={r.provider_id: r.error for r in responses},
        )
        return None

    mode = AggregationMode(mode)
    groups = group_votes(usable)
    winner = groups[select_winner(groups, usable, mode)]

    result = AggregateResult(
        signal_type=winner.signal_type,
        confidence=int(round_half_up(winner.mean_confidence, 0)),
        price=round_half_up(winner.average_of("price")),
        stop_loss=round_half_up(winner.average_of("stop_loss")),
        take_profit=round_half_up(winner.average_of("take_profit")),
        members=tuple(winner.members),
        mode=mode,
        vote_counts={t.value: g.count for t, g in sorted(groups.items(), key=lambda kv: kv[0].value)},
    )

    logger.info(
        "aggregation_completed",
        mode=mode.value,
        winner=result.signal_type.value,
        confidence=result.confidence,
        votes=result.vote_counts,
    )
    return result
