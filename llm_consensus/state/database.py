"""
SQLite database for engine state and signal history.

Tables:
- system_state: Key-value store (provider health records, provider secrets)
- playbook: Consensus signals with their eventual outcome
"""

import json
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator, Optional

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    create_engine,
    func,
    inspect,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker

import structlog

logger = structlog.get_logger(__name__)

Base = declarative_base()


class SystemState(Base):
    """Key-value store for provider health and secrets."""

    __tablename__ = "system_state"

    key = Column(String(200), primary_key=True)
    value = Column(Text, nullable=False)  # JSON-encoded
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))


class PlaybookEntry(Base):
    """A consensus signal and what eventually happened to it.

    The full signal is kept as JSON in signal_json; the columns alongside it
    are the fields the playbook filters and summarizes on.
    """

    __tablename__ = "playbook"

    seq = Column(Integer, primary_key=True, autoincrement=True)  # insertion order for retention
    id = Column(String(64), nullable=False, unique=True)
    symbol = Column(String(20), nullable=False)
    signal_type = Column(String(10), nullable=False)  # BUY/SELL/HOLD
    signal_json = Column(Text, nullable=False)
    trend_context = Column(Text, nullable=True)

    outcome = Column(String(20), nullable=False, default="PENDING")  # WIN/LOSS/PENDING/CANCELLED
    entry_price = Column(Float, nullable=False)
    exit_price = Column(Float, nullable=True)
    pnl = Column(Float, nullable=True)
    pnl_percent = Column(Float, nullable=True)
    hit_target = Column(String(10), nullable=True)  # TP/SL/MANUAL
    duration_ms = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    closed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_playbook_symbol_type", "symbol", "signal_type"),
    )


class Database:
    """
    Database manager for engine persistence.

    Handles:
    - Key-value state (health, secrets)
    - Playbook rows
    """

    def __init__(self, db_path: Path):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file
        """
        db_path = Path(db_path).resolve()
        self.db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(
            f"sqlite:///{db_path}",
            echo=False,
            connect_args={"check_same_thread": False},
        )
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

        # create_all() is idempotent - creates missing tables, skips existing ones.
        Base.metadata.create_all(self.engine)

        tables = inspect(self.engine).get_table_names()
        logger.info("database_initialized", path=str(db_path), tables=tables)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Get a database session with automatic commit/rollback."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # System state methods
    def set_state(self, key: str, value: Any) -> None:
        """Set a system state value."""
        with self.session() as session:
            state = session.query(SystemState).filter(SystemState.key == key).first()

            if state:
                state.value = json.dumps(value)
            else:
                state = SystemState(key=key, value=json.dumps(value))
                session.add(state)

    def get_state(self, key: str, default: Any = None) -> Any:
        """Get a system state value."""
        with self.session() as session:
            state = session.query(SystemState).filter(SystemState.key == key).first()

            if state:
                return json.loads(state.value)
            return default

    def delete_state(self, key: str) -> bool:
        """Delete a system state value."""
        with self.session() as session:
            result = session.query(SystemState).filter(SystemState.key == key).delete()
            return result > 0

    # Playbook methods
    def count_playbook(self) -> int:
        with self.session() as session:
            return session.query(func.count(PlaybookEntry.seq)).scalar() or 0

    def trim_playbook(self, max_entries: int) -> int:
        """
        Drop the oldest playbook rows beyond max_entries.

        Returns:
            Number of rows deleted
        """
        with self.session() as session:
            total = session.query(func.count(PlaybookEntry.seq)).scalar() or 0
            excess = total - max_entries
            if excess <= 0:
                return 0

            oldest = (
                session.query(PlaybookEntry.seq)
                .order_by(PlaybookEntry.seq.asc())
                .limit(excess)
                .all()
            )
            seqs = [row.seq for row in oldest]
            session.query(PlaybookEntry).filter(PlaybookEntry.seq.in_(seqs)).delete(
                synchronize_session=False
            )
            return len(seqs)

    def get_playbook_entry(self, signal_id: str) -> Optional[PlaybookEntry]:
        with self.session() as session:
            return session.query(PlaybookEntry).filter(PlaybookEntry.id == signal_id).first()
