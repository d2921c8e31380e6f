"""
Tests for the signal orchestration service.

Tests cover:
- End-to-end run with mocked HTTP providers
- All providers failing (reported, not raised)
- Playbook persistence and past-signal prompts
- Playbook failures not blocking delivery
"""

import json

import httpx
import pytest
import structlog
from unittest.mock import MagicMock
from sqlalchemy.exc import OperationalError

from llm_consensus.ai.provider_adapter import ParsedResponse
from llm_consensus.ai.signal_parser import ParsedSignal
from llm_consensus.daemon.signal_service import SignalConfig, SignalService
from llm_consensus.state.playbook import Playbook
from llm_consensus.state.provider_registry import ProviderRegistry
from llm_consensus.strategy.aggregator import AggregationMode


# ============================================================================
# Fixtures
# ============================================================================

PROVIDER_REPLIES = {
    "a.example.com": {"type": "BUY", "confidence": 80, "price": 100, "stopLoss": 95, "takeProfit": 110,
                      "reasoning": "Trend up"},
    "b.example.com": {"type": "BUY", "confidence": 60, "price": 102, "stopLoss": 95, "takeProfit": 110,
                      "reasoning": "Volume rising"},
    "c.example.com": {"type": "SELL", "confidence": 90, "price": 101, "reasoning": "Overbought"},
}


def provider_handler(request: httpx.Request) -> httpx.Response:
    reply = PROVIDER_REPLIES.get(request.url.host)
    if reply is None:
        return httpx.Response(502)
    return httpx.Response(200, json={"choices": [{"message": {"content": json.dumps(reply)}}]})


@pytest.fixture
def registry(tmp_path):
    registry = ProviderRegistry(tmp_path / "providers.json")
    for name in ("a", "b", "c"):
        registry.save_spec({"id": name, "endpoint": f"https://{name}.example.com/v1", "maxRetries": 0})
    return registry


@pytest.fixture
def playbook(db):
    return Playbook(db)


class StubAdapter:
    def __init__(self, response):
        self.response = response
        self.provider_id = response.provider_id
        self.prompts = []

    async def call(self, prompt, extra=None):
        self.prompts.append(prompt)
        return self.response


# ============================================================================
# Orchestration
# ============================================================================

@pytest.mark.asyncio
async def test_end_to_end_weighted(registry, health, secrets, playbook):
    async with httpx.AsyncClient(transport=httpx.MockTransport(provider_handler)) as client:
        service = SignalService(SignalConfig(), registry, health, secrets, playbook=playbook, client=client)
        run = await service.generate("BTCUSDT", "1h: BULLISH | last=101 | ATR=1.20")

    assert run.succeeded
    assert [r.provider_id for r in run.responses] == ["a", "b", "c"]
    assert run.final.type == "BUY"
    assert run.final.price == 101.0
    assert run.final.confidence == 70
    assert run.final.risk_metrics.risk_reward_ratio == 1.5
    assert run.final.reasoning == "Trend up\n---\nVolume rising"
    assert "Symbol: BTCUSDT" in run.prompt

    stored = playbook.load()
    assert [h.id for h in stored] == [run.final.id]
    assert stored[0].outcome == "PENDING"


@pytest.mark.asyncio
async def test_mode_override(registry, health, secrets):
    async with httpx.AsyncClient(transport=httpx.MockTransport(provider_handler)) as client:
        service = SignalService(SignalConfig(), registry, health, secrets, client=client)
        run = await service.generate("BTCUSDT", "ctx", mode=AggregationMode.FIRST)

    assert run.final.type == "BUY"
    assert run.final.confidence == 70


@pytest.mark.asyncio
async def test_all_providers_fail(tmp_path, health, secrets, playbook):
    registry = ProviderRegistry(tmp_path / "providers.json")
    registry.save_spec({"id": "x", "endpoint": "https://x.example.com", "maxRetries": 0})
    registry.save_spec({"id": "y", "endpoint": "https://y.example.com", "maxRetries": 0})

    async with httpx.AsyncClient(transport=httpx.MockTransport(provider_handler)) as client:
        service = SignalService(SignalConfig(), registry, health, secrets, playbook=playbook, client=client)
        run = await service.generate("BTCUSDT", "ctx")

    assert run.final is None
    assert not run.succeeded
    assert [r.provider_id for r in run.responses] == ["x", "y"]
    assert all("HTTP 502" in r.error for r in run.responses)
    assert playbook.load() == []


@pytest.mark.asyncio
async def test_no_providers_configured(tmp_path, health, secrets):
    service = SignalService(SignalConfig(), ProviderRegistry(tmp_path / "none.json"), health, secrets)
    run = await service.generate("BTCUSDT", "ctx")

    assert run.final is None
    assert run.responses == []


@pytest.mark.asyncio
async def test_past_signals_included_in_prompt(registry, health, secrets, playbook):
    adapter = StubAdapter(ParsedResponse("s", raw={}, ok=True, parsed=ParsedSignal(type="HOLD", price=5.0)))
    service = SignalService(SignalConfig(), registry, health, secrets, playbook=playbook)

    await service.generate("BTCUSDT", "ctx", adapters=[adapter], trend_context="range")
    await service.generate("BTCUSDT", "ctx", adapters=[adapter])

    assert "Similar past signals" not in adapter.prompts[0]
    assert "HOLD @ 5.0 (range) -> PENDING" in adapter.prompts[1]


@pytest.mark.asyncio
async def test_position_size_from_config(registry, health, secrets):
    adapter = StubAdapter(ParsedResponse("s", raw={}, ok=True, parsed=ParsedSignal(type="BUY", price=5.0)))
    service = SignalService(SignalConfig(position_size_percent=4.0), registry, health, secrets)

    run = await service.generate("BTCUSDT", "ctx", adapters=[adapter])
    assert run.final.risk_metrics.position_size_percent == 4.0


@pytest.mark.asyncio
async def test_playbook_failure_does_not_block_signal(registry, health, secrets):
    playbook = MagicMock()
    playbook.find_similar.return_value = []
    playbook.add_to_history.side_effect = OperationalError("INSERT", {}, Exception("disk full"))
    adapter = StubAdapter(ParsedResponse("s", raw={}, ok=True, parsed=ParsedSignal(type="SELL")))
    service = SignalService(SignalConfig(), registry, health, secrets, playbook=playbook)

    run = await service.generate("BTCUSDT", "ctx", adapters=[adapter])

    assert run.final.type == "SELL"
    assert service.consecutive_playbook_failures == 1


@pytest.mark.asyncio
async def test_run_context_bound_for_provider_calls(registry, health, secrets):
    seen = []

    class ContextAdapter(StubAdapter):
        async def call(self, prompt, extra=None):
            seen.append(structlog.contextvars.get_contextvars())
            return await super().call(prompt, extra)

    adapters = [
        ContextAdapter(ParsedResponse(name, raw={}, ok=True, parsed=ParsedSignal(type="BUY")))
        for name in ("a", "b")
    ]
    service = SignalService(SignalConfig(), registry, health, secrets)

    await service.generate("ETHUSDT", "ctx", adapters=adapters)

    assert [ctx["symbol"] for ctx in seen] == ["ETHUSDT", "ETHUSDT"]
    assert seen[0]["run_id"] == seen[1]["run_id"]
    assert "symbol" not in structlog.contextvars.get_contextvars()
