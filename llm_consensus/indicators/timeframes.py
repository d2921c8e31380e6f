"""
Multi-timeframe market context.

Reduces a candle DataFrame per timeframe to a short analysis (trend,
volatility, support/resistance, volume) and renders all timeframes as the
summary block embedded in provider prompts.

Trend:
    BULLISH if SMA(50) > SMA(200), BEARISH if below, NEUTRAL when there is
    not enough history for both averages.

Volatility:
    ATR(14) as the simple mean of the last 14 true ranges, where
    TR = max(high-low, |high-prev_close|, |low-prev_close|).

Support / resistance:
    Lowest and highest close over the last 50 candles.

Candle fetching is left to the caller. DataFrames (or the per-timeframe CSV
files read by analyze_candle_dir) must have open, high, low, close and volume
columns in chronological order.
"""

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence

import numpy as np
import pandas as pd

CANDLE_COLUMNS = ["t", "open", "high", "low", "close", "volume"]

ATR_PERIOD = 14
SMA_FAST = 50
SMA_SLOW = 200
LEVEL_WINDOW = 50

DEFAULT_TIMEFRAMES = ("1m", "5m", "15m", "1h", "4h", "1d")


@dataclass
class Candle:
    """One OHLCV bar; t is the open time in epoch ms."""

    t: int
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass
class TimeframeAnalysis:
    """Analysis of one timeframe."""

    timeframe: str
    trend: str = "NEUTRAL"
    volatility: float = 0.0
    last_close: Optional[float] = None
    support: Optional[float] = None
    resistance: Optional[float] = None
    volume_avg: Optional[float] = None
    volume_last: Optional[float] = None

    @property
    def available(self) -> bool:
        return self.last_close is not None

    def to_dict(self) -> dict:
        return asdict(self)


def candles_to_frame(candles: Sequence[Candle]) -> pd.DataFrame:
    """Build an OHLCV DataFrame from Candle objects."""
    return pd.DataFrame([asdict(c) for c in candles], columns=CANDLE_COLUMNS)


def calculate_true_range(high: pd.Series, low: pd.Series, close: pd.Series) -> pd.Series:
    """True range per bar; NaN for the first bar, which has no previous close."""
    prev_close = close.shift(1)

    tr1 = high - low
    tr2 = (high - prev_close).abs()
    tr3 = (low - prev_close).abs()

    true_range = pd.concat([tr1, tr2, tr3], axis=1).max(axis=1, skipna=False)
    return true_range


def calculate_atr(df: pd.DataFrame, period: int = ATR_PERIOD) -> float:
    """
    Simple-average ATR over the last `period` true ranges.

    Args:
        df: OHLCV DataFrame
        period: Number of true ranges to average (default: 14)

    Returns:
        ATR value, or 0.0 with fewer than period + 1 candles
    """
    if len(df) < period + 1:
        return 0.0

    true_range = calculate_true_range(df["high"], df["low"], df["close"]).dropna()
    return float(true_range.tail(period).mean())


def calculate_sma(close: pd.Series, length: int) -> Optional[float]:
    """Mean of the last `length` closes, or None with insufficient data."""
    if len(close) < length:
        return None
    return float(close.tail(length).mean())


def analyze_timeframe(df: Optional[pd.DataFrame], timeframe: str) -> TimeframeAnalysis:
    """
    Analyze candles for one timeframe.

    Args:
        df: OHLCV DataFrame (None or empty means no data)
        timeframe: Label such as "1h"

    Returns:
        TimeframeAnalysis; unavailable (last_close None) when there is no data
    """
    if df is None or df.empty:
        return TimeframeAnalysis(timeframe=timeframe)

    close = df["close"].astype(float)
    volume = df["volume"].astype(float)

    sma_fast = calculate_sma(close, SMA_FAST)
    sma_slow = calculate_sma(close, SMA_SLOW)
    trend = "NEUTRAL"
    if sma_fast is not None and sma_slow is not None:
        trend = "BULLISH" if sma_fast > sma_slow else "BEARISH"

    window = close.tail(LEVEL_WINDOW)

    return TimeframeAnalysis(
        timeframe=timeframe,
        trend=trend,
        volatility=calculate_atr(df),
        last_close=float(close.iloc[-1]),
        support=float(np.min(window)),
        resistance=float(np.max(window)),
        volume_avg=float(volume.tail(LEVEL_WINDOW).mean()),
        volume_last=float(volume.iloc[-1]),
    )


def _format_price(value: float) -> str:
    text = f"{value:.8f}".rstrip("0").rstrip(".")
    return text or "0"


def summarize_timeframes(analyses: Mapping[str, TimeframeAnalysis]) -> str:
    """
    Render one line per timeframe, in mapping order.

    Example:
        1h: BULLISH | last=64210.5 | ATR=182.37
        1d: Data unavailable
    """
    lines = []
    for timeframe, analysis in analyses.items():
        if analysis is None or not analysis.available:
            lines.append(f"{timeframe}: Data unavailable")
            continue
        lines.append(
            f"{timeframe}: {analysis.trend} | last={_format_price(analysis.last_close)} "
            f"| ATR={analysis.volatility:.2f}"
        )
    return "\n".join(lines)


def load_candle_csv(path: Path) -> Optional[pd.DataFrame]:
    """
    Read one timeframe's candles from CSV.

    The file needs open, high, low, close and volume columns; a "t" column
    (open time) is used to sort rows when present.

    Returns:
        DataFrame, or None when the file does not exist
    """
    if not path.exists():
        return None
    df = pd.read_csv(path)
    missing = [c for c in CANDLE_COLUMNS[1:] if c not in df.columns]
    if missing:
        raise ValueError(f"{path} is missing columns: {', '.join(missing)}")
    if "t" in df.columns:
        df = df.sort_values("t").reset_index(drop=True)
    return df


def analyze_candle_dir(
    directory: Path,
    timeframes: Sequence[str] = DEFAULT_TIMEFRAMES,
) -> dict[str, TimeframeAnalysis]:
    """Analyze <directory>/<timeframe>.csv for each timeframe; absent files are unavailable."""
    directory = Path(directory)
    return {
        tf: analyze_timeframe(load_candle_csv(directory / f"{tf}.csv"), tf)
        for tf in timeframes
    }


def higher_timeframe_trend(analyses: Mapping[str, TimeframeAnalysis]) -> Optional[str]:
    """Trend of the last available timeframe, e.g. "1d BEARISH"."""
    for timeframe, analysis in reversed(list(analyses.items())):
        if analysis is not None and analysis.available:
            return f"{timeframe} {analysis.trend}"
    return None
