"""
Tests for the command line entry point.
"""

import json

import pytest
from unittest.mock import Mock, patch

from llm_consensus.ai.provider_adapter import ParsedResponse
from llm_consensus.daemon.signal_service import SignalRun
from llm_consensus.main import (
    EXIT_NO_SIGNAL,
    EXIT_OK,
    EXIT_USAGE,
    create_parser,
    format_run,
    main,
    read_market_context,
)
from llm_consensus.strategy.signal_assembler import FinalSignal, RiskMetrics


@pytest.fixture
def mock_settings(tmp_path):
    settings = Mock()
    settings.log_level = "INFO"
    settings.log_file = None
    settings.log_json = False
    settings.database_path = tmp_path / "consensus.db"
    settings.providers_file = tmp_path / "providers.json"
    return settings


@pytest.fixture
def final_signal():
    return FinalSignal(
        id="sig-1",
        symbol="BTCUSDT",
        type="BUY",
        confidence=70,
        price=101.0,
        timestamp=0,
        risk_metrics=RiskMetrics(95.0, 110.0, 1.5, 2.0),
        reasoning="Trend up",
    )


def test_symbol_required_without_set_secret(mock_settings):
    with patch("llm_consensus.main.get_settings", return_value=mock_settings), \
            pytest.raises(SystemExit) as exc_info:
        main([])

    assert exc_info.value.code == EXIT_USAGE


def test_parser_normalizes_mode():
    args = create_parser().parse_args(["--symbol", "BTCUSDT", "--mode", "majority"])
    assert args.mode == "MAJORITY"


def test_format_run_with_signal(final_signal):
    run = SignalRun(
        final=final_signal,
        responses=[
            ParsedResponse("a", raw={}, ok=True, parsed=Mock()),
            ParsedResponse("b", raw=None, ok=False, error="HTTP 500 from https://b"),
        ],
    )
    text = format_run(run)

    assert "BTCUSDT: BUY  (confidence 70)" in text
    assert "R/R:         1.5" in text
    assert "- a: ok" in text
    assert "- b: failed (HTTP 500 from https://b)" in text


def test_format_run_without_signal():
    run = SignalRun(final=None, responses=[ParsedResponse("a", raw=None, ok=False, error="down")])
    assert format_run(run).startswith("No consensus signal")


def test_main_success(mock_settings, final_signal, capsys):
    run = SignalRun(final=final_signal, responses=[])

    async def fake_run_once(settings, args):
        return run

    with patch("llm_consensus.main.get_settings", return_value=mock_settings), \
            patch("llm_consensus.main.setup_logging"), \
            patch("llm_consensus.main.run_once", side_effect=fake_run_once):
        result = main(["--symbol", "BTCUSDT", "--context", "ctx", "--json"])

    assert result == EXIT_OK
    output = json.loads(capsys.readouterr().out)
    assert output["final"]["id"] == "sig-1"


def test_main_no_signal(mock_settings):
    async def fake_run_once(settings, args):
        return SignalRun(final=None, responses=[])

    with patch("llm_consensus.main.get_settings", return_value=mock_settings), \
            patch("llm_consensus.main.setup_logging"), \
            patch("llm_consensus.main.run_once", side_effect=fake_run_once):
        result = main(["--symbol", "BTCUSDT"])

    assert result == EXIT_NO_SIGNAL


def test_main_fatal_error(mock_settings):
    with patch("llm_consensus.main.get_settings", side_effect=RuntimeError("bad config")), \
            patch("llm_consensus.main.setup_logging"):
        result = main(["--symbol", "BTCUSDT"])

    assert result == 1


def test_main_set_secret(mock_settings, capsys):
    stored = {}

    async def fake_store_secret(settings, provider_id, name, value):
        stored[(provider_id, name)] = value

    with patch("llm_consensus.main.get_settings", return_value=mock_settings), \
            patch("llm_consensus.main.setup_logging"), \
            patch("llm_consensus.main.store_secret", side_effect=fake_store_secret):
        result = main(["--set-secret", "openai", "API_KEY", "sk-1"])

    assert result == EXIT_OK
    assert stored == {("openai", "API_KEY"): "sk-1"}
    assert "sk-1" not in capsys.readouterr().out


# ============================================================================
# Market Context
# ============================================================================

def test_context_from_candles_dir(tmp_path, sample_ohlcv_data):
    sample_ohlcv_data(length=250, volatility=0.002, drift=0.01).to_csv(tmp_path / "1h.csv", index=False)
    args = create_parser().parse_args(["--symbol", "BTCUSDT", "--candles-dir", str(tmp_path)])

    context = read_market_context(args)

    assert "1h: BULLISH | last=" in context.summary
    assert "1d: Data unavailable" in context.summary
    assert context.indicators["mtf"]["1h"]["trend"] == "BULLISH"
    assert context.indicators["mtf"]["4h"]["last_close"] is None
    assert context.trend_context == "1h BULLISH"


def test_context_text_options(tmp_path):
    ctx_file = tmp_path / "ctx.txt"
    ctx_file.write_text("4h: BEARISH | last=10 | ATR=0.50\n")
    parser = create_parser()

    from_file = read_market_context(parser.parse_args(["--symbol", "X", "--context-file", str(ctx_file)]))
    inline = read_market_context(parser.parse_args(["--symbol", "X", "--context", "hi"]))

    assert from_file.summary == "4h: BEARISH | last=10 | ATR=0.50"
    assert from_file.indicators is None
    assert inline.summary == "hi"


def test_candles_dir_passed_to_service(mock_settings, tmp_path, sample_ohlcv_data):
    sample_ohlcv_data(length=250, volatility=0.002, drift=-0.01).to_csv(tmp_path / "4h.csv", index=False)
    captured = {}

    class FakeService:
        async def generate(self, symbol, market_context, **kwargs):
            captured.update(kwargs, symbol=symbol, market_context=market_context)
            return SignalRun(final=None, responses=[])

    with patch("llm_consensus.main.get_settings", return_value=mock_settings), \
            patch("llm_consensus.main.setup_logging"), \
            patch("llm_consensus.main.build_service", return_value=FakeService()):
        result = main(["--symbol", "btcusdt", "--candles-dir", str(tmp_path)])

    assert result == EXIT_NO_SIGNAL
    assert captured["symbol"] == "BTCUSDT"
    assert "4h: BEARISH" in captured["market_context"]
    assert captured["trend_context"] == "4h BEARISH"
    assert "mtf" in captured["indicators"]
