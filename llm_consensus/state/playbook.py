"""
Signal history ("playbook").

Every consensus signal is appended with outcome PENDING and can later be
closed with its exit price and PnL. Retention is bounded: once more than
max_signals rows exist, the oldest are dropped.

All methods are blocking SQLite calls; async callers should run them via
asyncio.to_thread.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

import structlog

from llm_consensus.state.database import Database, PlaybookEntry
from llm_consensus.strategy.aggregator import round_half_up
from llm_consensus.strategy.signal_assembler import FinalSignal

logger = structlog.get_logger(__name__)

DEFAULT_MAX_SIGNALS = 500


class Outcome(str, Enum):
    WIN = "WIN"
    LOSS = "LOSS"
    PENDING = "PENDING"
    CANCELLED = "CANCELLED"


@dataclass
class SignalHistory:
    """A stored signal and what happened to it."""

    id: str
    signal: dict[str, Any]
    outcome: str = Outcome.PENDING.value
    entry_price: float = 0.0
    exit_price: Optional[float] = None
    pnl: Optional[float] = None
    pnl_percent: Optional[float] = None
    hit_target: Optional[str] = None  # TP/SL/MANUAL
    duration_ms: Optional[int] = None
    closed_at: Optional[int] = None  # epoch ms
    trend_context: Optional[str] = None

    @property
    def symbol(self) -> str:
        return self.signal.get("symbol", "")

    @property
    def signal_type(self) -> str:
        return self.signal.get("type", "")

    @property
    def timestamp(self) -> int:
        return int(self.signal.get("timestamp", 0))


@dataclass
class PlaybookSummary:
    total: int = 0
    wins: int = 0
    losses: int = 0
    pending: int = 0
    win_rate: float = 0.0  # percent of all signals
    avg_pnl_percent: float = 0.0
    net_pnl: float = 0.0
    best_strategy: Optional[str] = None
    strategy_counts: dict[str, int] = field(default_factory=dict)


def _ms_to_datetime(ms: Optional[int]) -> Optional[datetime]:
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def _datetime_to_ms(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    if value.tzinfo is None:
        # SQLite drops tzinfo; values are always written as UTC
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def _to_history(entry: PlaybookEntry) -> SignalHistory:
    return SignalHistory(
        id=entry.id,
        signal=json.loads(entry.signal_json),
        outcome=entry.outcome,
        entry_price=entry.entry_price,
        exit_price=entry.exit_price,
        pnl=entry.pnl,
        pnl_percent=entry.pnl_percent,
        hit_target=entry.hit_target,
        duration_ms=entry.duration_ms,
        closed_at=_datetime_to_ms(entry.closed_at),
        trend_context=entry.trend_context,
    )


class Playbook:
    """Bounded, append-only history of consensus signals."""

    def __init__(self, db: Database, max_signals: int = DEFAULT_MAX_SIGNALS):
        if max_signals < 1:
            raise ValueError(f"max_signals must be >= 1, got {max_signals}")
        self.db = db
        self.max_signals = max_signals

    def add_to_history(self, signal: FinalSignal, trend_context: Optional[str] = None) -> SignalHistory:
        """
        Append a new signal with outcome PENDING, then apply retention.

        Args:
            signal: Assembled consensus signal
            trend_context: Short market description stored for later prompts

        Returns:
            The stored history record
        """
        history = SignalHistory(
            id=signal.id,
            signal=signal.to_dict(),
            entry_price=signal.price,
            trend_context=trend_context,
        )

        with self.db.session() as session:
            session.add(PlaybookEntry(
                id=history.id,
                symbol=signal.symbol,
                signal_type=signal.type,
                signal_json=json.dumps(history.signal),
                trend_context=trend_context,
                outcome=history.outcome,
                entry_price=history.entry_price,
            ))

        dropped = self.db.trim_playbook(self.max_signals)
        logger.info(
            "playbook_signal_added",
            signal_id=signal.id,
            symbol=signal.symbol,
            type=signal.type,
            dropped=dropped,
        )
        return history

    def load(self) -> list[SignalHistory]:
        """All stored signals, oldest first."""
        with self.db.session() as session:
            entries = session.query(PlaybookEntry).order_by(PlaybookEntry.seq.asc()).all()
            return [_to_history(e) for e in entries]

    def get(self, signal_id: str) -> Optional[SignalHistory]:
        entry = self.db.get_playbook_entry(signal_id)
        return _to_history(entry) if entry else None

    def update_outcome(
        self,
        signal_id: str,
        outcome: Optional[str] = None,
        exit_price: Optional[float] = None,
        pnl: Optional[float] = None,
        pnl_percent: Optional[float] = None,
        hit_target: Optional[str] = None,
        closed_at: Optional[int] = None,
    ) -> bool:
        """
        Merge outcome fields into a stored signal. Fields left as None are
        not touched.

        Args:
            signal_id: Signal id
            outcome: WIN, LOSS, PENDING or CANCELLED
            exit_price: Price the position was closed at
            pnl: Absolute profit/loss
            pnl_percent: Profit/loss as percent of entry
            hit_target: TP, SL or MANUAL
            closed_at: Close time in epoch ms; also sets duration

        Returns:
            False if no signal has that id
        """
        if outcome is not None:
            outcome = Outcome(outcome).value

        with self.db.session() as session:
            entry = session.query(PlaybookEntry).filter(PlaybookEntry.id == signal_id).first()
            if entry is None:
                logger.warning("playbook_signal_not_found", signal_id=signal_id)
                return False

            if outcome is not None:
                entry.outcome = outcome
            if exit_price is not None:
                entry.exit_price = exit_price
            if pnl is not None:
                entry.pnl = pnl
            if pnl_percent is not None:
                entry.pnl_percent = pnl_percent
            if hit_target is not None:
                entry.hit_target = hit_target
            if closed_at is not None:
                entry.closed_at = _ms_to_datetime(closed_at)
                opened_at = json.loads(entry.signal_json).get("timestamp")
                if opened_at is not None:
                    entry.duration_ms = max(0, closed_at - int(opened_at))

            logger.info(
                "playbook_outcome_updated",
                signal_id=signal_id,
                outcome=entry.outcome,
                pnl=entry.pnl,
            )
            return True

    def clear(self) -> int:
        """Delete every stored signal. Returns the number removed."""
        with self.db.session() as session:
            removed = session.query(PlaybookEntry).delete()
        logger.info("playbook_cleared", removed=removed)
        return removed

    def find_similar(
        self,
        symbol: str,
        signal_type: Optional[str] = None,
        limit: int = 5,
    ) -> list[SignalHistory]:
        """
        Most recent signals for a symbol, optionally of one type.

        Used to show the models how comparable calls turned out.
        """
        with self.db.session() as session:
            query = session.query(PlaybookEntry).filter(PlaybookEntry.symbol == symbol)
            if signal_type:
                query = query.filter(PlaybookEntry.signal_type == signal_type.upper())
            entries = query.order_by(PlaybookEntry.seq.desc()).limit(limit).all()
            return [_to_history(e) for e in entries]

    def summary(self) -> PlaybookSummary:
        """Win/loss statistics over everything stored."""
        history = self.load()
        total = len(history)
        if total == 0:
            return PlaybookSummary()

        wins = sum(1 for h in history if h.outcome == Outcome.WIN.value)
        losses = sum(1 for h in history if h.outcome == Outcome.LOSS.value)
        pending = sum(1 for h in history if h.outcome == Outcome.PENDING.value)
        pnl_percents = [h.pnl_percent for h in history if h.pnl_percent is not None]

        strategy_counts: dict[str, int] = {}
        for h in history:
            strategy = h.signal.get("strategy") or "unknown"
            strategy_counts[strategy] = strategy_counts.get(strategy, 0) + 1
        best_strategy = sorted(strategy_counts.items(), key=lambda kv: (-kv[1], kv[0]))[0][0]

        return PlaybookSummary(
            total=total,
            wins=wins,
            losses=losses,
            pending=pending,
            win_rate=round_half_up(wins / total * 100),
            avg_pnl_percent=sum(pnl_percents) / len(pnl_percents) if pnl_percents else 0.0,
            net_pnl=round_half_up(sum(h.pnl for h in history if h.pnl is not None)),
            best_strategy=best_strategy,
            strategy_counts=strategy_counts,
        )
