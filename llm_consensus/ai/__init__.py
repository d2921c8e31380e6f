"""
Provider-facing side of the consensus engine.

Provides:
- ProviderSpec: Validated endpoint configuration
- ProviderAdapter: Template-driven HTTP adapter with retries and circuit breaking
- dispatch_all: Parallel fan-out preserving provider order
- parse_signal: JSON-then-regex signal extraction
"""

from llm_consensus.ai.dispatcher import dispatch_all
from llm_consensus.ai.provider_adapter import ParsedResponse, ProviderAdapter
from llm_consensus.ai.provider_spec import ProviderSpec
from llm_consensus.ai.signal_parser import ParsedSignal, SignalType, parse_signal

__all__ = [
    "ParsedResponse",
    "ParsedSignal",
    "ProviderAdapter",
    "ProviderSpec",
    "SignalType",
    "dispatch_all",
    "parse_signal",
]
