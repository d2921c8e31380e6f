"""
Pytest configuration and shared fixtures for llm-consensus tests.
"""

import sys
from pathlib import Path

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest
from unittest.mock import MagicMock
import pandas as pd
import numpy as np

# Silence structlog during tests
import structlog

from llm_consensus.ai.provider_adapter import ParsedResponse
from llm_consensus.ai.signal_parser import ParsedSignal
from llm_consensus.safety.provider_health import ProviderHealthTracker
from llm_consensus.state.database import Database
from llm_consensus.state.store import InMemoryStore, SecretStore


def _mock_logger_factory(*args):
    """Factory that creates mock loggers for testing."""
    mock = MagicMock()
    # Configure mock methods to return the mock itself (for chaining)
    mock.bind.return_value = mock
    return mock


structlog.configure(
    processors=[],
    logger_factory=_mock_logger_factory,
)


# ============================================================================
# Shared Fixtures
# ============================================================================

@pytest.fixture
def store():
    """Empty in-memory key-value store."""
    return InMemoryStore()


@pytest.fixture
def health(store):
    """Health tracker with default threshold (3) and timeout (60s)."""
    return ProviderHealthTracker(store)


@pytest.fixture
def secrets(store):
    """Secret store sharing the in-memory store."""
    return SecretStore(store)


@pytest.fixture
def db(tmp_path):
    """Fresh SQLite database in a temp directory."""
    return Database(tmp_path / "test.db")


@pytest.fixture
def make_response():
    """Build a ParsedResponse from signal fields."""
    def _make(provider_id="p", ok=True, error=None, **fields):
        parsed = ParsedSignal(**fields) if ok else None
        return ParsedResponse(
            provider_id=provider_id,
            raw={"fields": fields},
            ok=ok,
            parsed=parsed,
            error=error,
        )
    return _make


@pytest.fixture
def sample_ohlcv_data():
    """Generate sample OHLCV market data for testing indicators."""
    def _generate(length=100, base_price=100.0, volatility=0.02, drift=0.0):
        """
        Generate realistic OHLCV data.

        Args:
            length: Number of candles
            base_price: Starting price
            volatility: Price volatility (0.01 = 1%)
            drift: Per-candle drift (0.001 = +0.1%)
        """
        np.random.seed(42)  # Deterministic for tests

        prices = []
        current = base_price

        for _ in range(length):
            # Random walk with drift
            change = np.random.randn() * volatility * current + drift * current
            current = current + change
            prices.append(current)

        data = {
            'open': [],
            'high': [],
            'low': [],
            'close': [],
            'volume': []
        }

        for price in prices:
            o = price * (1 + np.random.uniform(-0.005, 0.005))
            c = price * (1 + np.random.uniform(-0.005, 0.005))
            h = max(o, c) * (1 + abs(np.random.uniform(0, 0.01)))
            l = min(o, c) * (1 - abs(np.random.uniform(0, 0.01)))
            v = np.random.uniform(1000, 10000)

            data['open'].append(o)
            data['high'].append(h)
            data['low'].append(l)
            data['close'].append(c)
            data['volume'].append(v)

        return pd.DataFrame(data)

    return _generate
