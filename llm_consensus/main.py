"""
LLM Consensus - Command Line Entry Point

Runs one consensus cycle: every configured provider is asked for a signal,
the replies are aggregated and the decision is printed and stored in the
playbook.

Usage:
    python -m llm_consensus.main --symbol BTCUSDT --context-file ctx.txt
    python -m llm_consensus.main --symbol ETHUSDT --context "1h: BULLISH | last=3120 | ATR=14.20" --mode MAJORITY
    python -m llm_consensus.main --symbol BTCUSDT --candles-dir data/candles/BTCUSDT
    python -m llm_consensus.main --set-secret openai API_KEY sk-...

Market context:
    --candles-dir reads one OHLCV CSV per timeframe (1m.csv ... 1d.csv) and
    builds the multi-timeframe summary; missing files show as unavailable.

Configuration:
    Settings come from environment variables or .env (see config/settings.py).
    Providers are read from PROVIDERS_FILE (default: config/providers.json).

Exit codes:
    0  signal produced
    1  error
    2  usage error (argparse)
    3  no provider returned a usable signal
"""

import argparse
import asyncio
import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import httpx
import structlog

from config.logging_config import setup_logging
from config.settings import Settings, get_settings
from llm_consensus.daemon.signal_service import SignalConfig, SignalRun, SignalService
from llm_consensus.indicators.timeframes import (
    analyze_candle_dir,
    higher_timeframe_trend,
    summarize_timeframes,
)
from llm_consensus.safety.provider_health import ProviderHealthTracker
from llm_consensus.state.database import Database
from llm_consensus.state.playbook import Playbook
from llm_consensus.state.provider_registry import ProviderRegistry
from llm_consensus.state.store import DatabaseStore, SecretStore
from llm_consensus.strategy.aggregator import AggregationMode
from llm_consensus.version import __version__

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2
EXIT_NO_SIGNAL = 3


def create_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Generate a consensus trading signal from multiple LLM providers",
    )
    parser.add_argument("--symbol", help="Instrument symbol, e.g. BTCUSDT (required unless --set-secret)")

    context_group = parser.add_mutually_exclusive_group()
    context_group.add_argument(
        "--context-file", type=Path, help="File holding the multi-timeframe summary"
    )
    context_group.add_argument("--context", type=str, help="Multi-timeframe summary text")
    context_group.add_argument(
        "--candles-dir",
        type=Path,
        help="Directory of <timeframe>.csv OHLCV files to analyze",
    )

    parser.add_argument(
        "--mode",
        type=str.upper,
        choices=[m.value for m in AggregationMode],
        default=None,
        help="Aggregation mode (default: AGGREGATION_MODE setting)",
    )
    parser.add_argument("--extra", type=str, default=None, help="Extra context appended to the prompt")
    parser.add_argument(
        "--set-secret",
        nargs=3,
        metavar=("PROVIDER_ID", "NAME", "VALUE"),
        help="Store a provider secret and exit",
    )
    parser.add_argument("--json", action="store_true", help="Print the signal as JSON")
    return parser


@dataclass
class MarketContext:
    """Prompt summary plus what is stored alongside the signal."""

    summary: str
    indicators: Optional[dict] = None
    trend_context: Optional[str] = None


def read_market_context(args: argparse.Namespace) -> MarketContext:
    if args.candles_dir:
        analyses = analyze_candle_dir(args.candles_dir)
        return MarketContext(
            summary=summarize_timeframes(analyses),
            indicators={"mtf": {tf: a.to_dict() for tf, a in analyses.items()}},
            trend_context=higher_timeframe_trend(analyses),
        )
    if args.context_file:
        return MarketContext(args.context_file.read_text(encoding="utf-8").strip())
    return MarketContext(args.context or "No market data supplied")


def format_run(run: SignalRun) -> str:
    """Human-readable decision summary."""
    lines = []
    if run.final is None:
        lines.append("No consensus signal: no provider returned a usable response.")
    else:
        s = run.final
        rm = s.risk_metrics
        lines.append("=" * 50)
        lines.append(f"  {s.symbol}: {s.type}  (confidence {s.confidence})")
        lines.append("=" * 50)
        lines.append(f"  Entry:       {s.price}")
        lines.append(f"  Stop Loss:   {rm.stop_loss}")
        lines.append(f"  Take Profit: {rm.take_profit}")
        lines.append(f"  R/R:         {rm.risk_reward_ratio}")
        lines.append(f"  Size:        {rm.position_size_percent}%")
        lines.append(f"  Signal ID:   {s.id}")
        lines.append("")
        lines.append(s.reasoning)

    lines.append("")
    lines.append("Providers:")
    for r in run.responses:
        status = "ok" if r.usable else f"failed ({r.error})"
        lines.append(f"  - {r.provider_id}: {status}")
    return "\n".join(lines)


def build_service(settings: Settings, db: Database, client: httpx.AsyncClient) -> SignalService:
    store = DatabaseStore(db)
    registry = ProviderRegistry(
        settings.providers_file,
        spec_defaults={
            "timeout_ms": settings.default_timeout_ms,
            "max_retries": settings.default_max_retries,
        },
    )
    health = ProviderHealthTracker(
        store,
        failure_threshold=settings.failure_threshold,
        open_timeout_ms=settings.open_timeout_ms,
    )
    config = SignalConfig(
        aggregation_mode=settings.aggregation_mode,
        position_size_percent=settings.position_risk_percent,
        past_signal_limit=settings.past_signal_limit,
    )
    return SignalService(
        config,
        registry,
        health,
        SecretStore(store),
        playbook=Playbook(db, max_signals=settings.playbook_max_signals),
        client=client,
    )


async def run_once(settings: Settings, args: argparse.Namespace) -> SignalRun:
    context = read_market_context(args)
    db = Database(settings.database_path)
    async with httpx.AsyncClient() as client:
        service = build_service(settings, db, client)
        return await service.generate(
            args.symbol.upper(),
            context.summary,
            mode=AggregationMode(args.mode) if args.mode else None,
            extra_context=args.extra,
            indicators=context.indicators,
            trend_context=context.trend_context,
        )


async def store_secret(settings: Settings, provider_id: str, name: str, value: str) -> None:
    secrets = SecretStore(DatabaseStore(Database(settings.database_path)))
    await secrets.set_secret(provider_id, name, value)


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (see module docstring)
    """
    parser = create_parser()
    args = parser.parse_args(argv)
    if not args.symbol and not args.set_secret:
        parser.error("--symbol is required unless --set-secret is given")

    try:
        settings = get_settings()

        setup_logging(
            log_level=settings.log_level,
            log_file=settings.log_file,
            json_format=settings.log_json,
        )

        if args.set_secret:
            provider_id, name, value = args.set_secret
            asyncio.run(store_secret(settings, provider_id, name, value))
            print(f"Stored secret {name} for provider {provider_id}")
            return EXIT_OK

        logger.info(
            "starting_consensus_run",
            version=__version__,
            symbol=args.symbol,
            providers_file=str(settings.providers_file),
        )

        run = asyncio.run(run_once(settings, args))

        if args.json:
            print(json.dumps({
                "final": run.final.to_dict() if run.final else None,
                "responses": [
                    {"provider_id": r.provider_id, "ok": r.ok, "error": r.error}
                    for r in run.responses
                ],
            }, indent=2))
        else:
            print(format_run(run))

        return EXIT_OK if run.succeeded else EXIT_NO_SIGNAL

    except KeyboardInterrupt:
        print("\nInterrupted.")
        return EXIT_ERROR

    except Exception as e:
        print(f"\nFatal error: {e}", file=sys.stderr)
        logger.critical("fatal_error", error=str(e), error_type=type(e).__name__)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
