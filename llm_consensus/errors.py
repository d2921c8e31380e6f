"""
Exception hierarchy for the consensus engine.

Only ConfigurationError escapes to callers (raised when a provider spec is
saved). The remaining kinds are raised inside a provider adapter and turned
into a failed ParsedResponse there, so one bad provider never aborts a run.
"""

from typing import Optional


class ConsensusError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(ConsensusError):
    """Provider spec is malformed (bad URL, non-JSON request template, ...)."""


class CircuitOpenError(ConsensusError):
    """Provider is short-circuited; no network call was made."""

    def __init__(self, provider_id: str):
        self.provider_id = provider_id
        super().__init__(f"Circuit breaker is open for provider {provider_id}")


class TransportError(ConsensusError):
    """Network, timeout or HTTP status failure. Eligible for retry."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class SchemaValidationError(ConsensusError):
    """A JSON object was found in the reply but failed validation."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Invalid response schema: {detail}")


class NoSignalFoundError(ConsensusError):
    """Neither a JSON signal nor any regex fallback field was found."""
