"""
Signal orchestration service.

One generate() call is one orchestration run:
prompt -> parallel provider calls -> aggregation -> final signal -> playbook.

Handles:
- Building adapters from the provider registry
- Including similar past signals from the playbook in the prompt
- Reporting (not raising) the case where no provider is usable
- Tracking playbook storage failures without blocking signal delivery
- Binding run_id and symbol to every log event of a run
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

import httpx
import structlog
from sqlalchemy.exc import SQLAlchemyError

from llm_consensus.ai.dispatcher import Adapter, dispatch_all
from llm_consensus.ai.prompts import build_prompt
from llm_consensus.ai.provider_adapter import ParsedResponse, build_adapters
from llm_consensus.safety.provider_health import ProviderHealthTracker
from llm_consensus.state.playbook import Playbook, SignalHistory
from llm_consensus.state.provider_registry import ProviderRegistry
from llm_consensus.state.store import SecretStore
from llm_consensus.strategy.aggregator import AggregationMode, aggregate
from llm_consensus.strategy.signal_assembler import (
    DEFAULT_POSITION_SIZE_PERCENT,
    FinalSignal,
    assemble_signal,
)

logger = structlog.get_logger(__name__)


@dataclass
class SignalConfig:
    """Configuration for the signal service."""

    aggregation_mode: AggregationMode = AggregationMode.WEIGHTED
    position_size_percent: float = DEFAULT_POSITION_SIZE_PERCENT

    # Past signals shown to the models; 0 disables the section
    past_signal_limit: int = 5


@dataclass
class SignalRun:
    """Result of one orchestration run."""

    final: Optional[FinalSignal]
    responses: list[ParsedResponse] = field(default_factory=list)
    prompt: str = ""

    @property
    def succeeded(self) -> bool:
        return self.final is not None


class SignalService:
    """
    Produces consensus signals from the configured providers.

    Responsibilities:
    - Build the prompt and fan it out to every provider
    - Aggregate usable replies into one FinalSignal
    - Persist the signal in the playbook
    """

    def __init__(
        self,
        config: SignalConfig,
        registry: ProviderRegistry,
        health: ProviderHealthTracker,
        secrets: SecretStore,
        playbook: Optional[Playbook] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize signal service.

        Args:
            config: Service configuration
            registry: Source of provider specs
            health: Per-provider circuit breaker
            secrets: Provider secrets for template rendering
            playbook: Signal history; persistence is skipped when None
            client: Shared HTTP client; adapters open their own when None
        """
        self.config = config
        self.registry = registry
        self.health = health
        self.secrets = secrets
        self.playbook = playbook
        self.client = client

        self._playbook_failures: int = 0

    def build_adapters(self) -> list[Adapter]:
        specs = self.registry.list_specs()
        return build_adapters(specs, self.health, self.secrets, client=self.client)

    async def _load_past_signals(self, symbol: str) -> list[SignalHistory]:
        if self.playbook is None or self.config.past_signal_limit <= 0:
            return []
        try:
            return await asyncio.to_thread(
                self.playbook.find_similar, symbol, None, self.config.past_signal_limit
            )
        except SQLAlchemyError as e:
            logger.warning("playbook_lookup_failed", error=str(e))
            return []

    async def _store(self, signal: FinalSignal, trend_context: Optional[str]) -> None:
        if self.playbook is None:
            return
        try:
            await asyncio.to_thread(self.playbook.add_to_history, signal, trend_context)
            self._playbook_failures = 0
        except SQLAlchemyError as e:
            # History is non-critical; the signal is still returned
            self._playbook_failures += 1
            logger.warning(
                "playbook_store_failed",
                signal_id=signal.id,
                error=str(e),
                error_type=type(e).__name__,
                consecutive_failures=self._playbook_failures,
            )

    async def generate(
        self,
        symbol: str,
        market_context: str,
        mode: Optional[AggregationMode] = None,
        extra_context: Optional[str] = None,
        position_size_percent: Optional[float] = None,
        indicators: Optional[dict[str, Any]] = None,
        trend_context: Optional[str] = None,
        extra_vars: Optional[Mapping[str, Any]] = None,
        adapters: Optional[Sequence[Adapter]] = None,
    ) -> SignalRun:
        """
        Run one orchestration cycle for a symbol.

        Args:
            symbol: Instrument symbol, e.g. "BTCUSDT"
            market_context: Multi-timeframe summary for the prompt
            mode: Aggregation mode (default from config)
            extra_context: Free-form text appended to the prompt
            position_size_percent: Suggested size (default from config)
            indicators: Indicator snapshot attached to the signal
            trend_context: Short description stored with the playbook entry
            extra_vars: Extra template variables for provider requests
            adapters: Use these instead of building from the registry

        Returns:
            SignalRun; final is None when no provider returned a usable signal
        """
        run_id = uuid.uuid4().hex[:8]
        with structlog.contextvars.bound_contextvars(run_id=run_id, symbol=symbol):
            mode = mode or self.config.aggregation_mode
            if position_size_percent is None:
                position_size_percent = self.config.position_size_percent
            if adapters is None:
                adapters = self.build_adapters()

            if not adapters:
                logger.warning("no_providers_configured")
                return SignalRun(final=None, responses=[])

            past_signals = await self._load_past_signals(symbol)
            prompt = build_prompt(symbol, market_context, past_signals, extra_context)

            logger.info(
                "signal_generation_starting",
                providers=len(adapters),
                mode=AggregationMode(mode).value,
                past_signals=len(past_signals),
            )

            responses = await dispatch_all(adapters, prompt, extra_vars)

            result = aggregate(responses, mode)
            if result is None:
                logger.warning(
                    "no_signal_produced",
                    failures={r.provider_id: r.error for r in responses},
                )
                return SignalRun(final=None, responses=responses, prompt=prompt)

            signal = assemble_signal(
                symbol,
                result,
                position_size_percent=position_size_percent,
                indicators=indicators,
            )
            await self._store(signal, trend_context)

            logger.info(
                "signal_generated",
                signal_id=signal.id,
                type=signal.type,
                confidence=signal.confidence,
                price=signal.price,
                risk_reward=signal.risk_metrics.risk_reward_ratio,
                providers=signal.providers,
            )
            return SignalRun(final=signal, responses=responses, prompt=prompt)

    @property
    def consecutive_playbook_failures(self) -> int:
        return self._playbook_failures
