"""
Per-provider circuit breaker.

Tracks consecutive failures for each LLM provider and stops the adapter
from calling a provider that keeps failing:

- CLOSED: calls allowed; failures accumulate
- OPEN: calls refused without network I/O
- HALF_OPEN: one probe call allowed after the open timeout

Records live in an injected KeyValueStore under "provider_health:<id>".
Reads never write: an expired OPEN record is reported as HALF_OPEN but stays
OPEN in storage until the probe's outcome is recorded. Two concurrent probes
can both see HALF_OPEN; at most a few extra calls result, which is accepted.
"""

import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Callable, Optional

import structlog

from llm_consensus.state.store import KeyValueStore

logger = structlog.get_logger(__name__)

HEALTH_KEY_PREFIX = "provider_health:"
DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_OPEN_TIMEOUT_MS = 60_000


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class ProviderHealth:
    """Health record for one provider."""

    provider_id: str
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    last_attempt: int = 0  # epoch milliseconds

    def to_dict(self) -> dict:
        data = asdict(self)
        data["state"] = self.state.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ProviderHealth":
        return cls(
            provider_id=data["provider_id"],
            state=CircuitState(data.get("state", CircuitState.CLOSED.value)),
            failure_count=int(data.get("failure_count", 0)),
            last_attempt=int(data.get("last_attempt", 0)),
        )


def _now_ms() -> int:
    return int(time.time() * 1000)


class ProviderHealthTracker:
    """
    Circuit breaker state machine for LLM providers.

    Each provider has an independent record, so adapters for different
    providers never contend over the same key.
    """

    def __init__(
        self,
        store: KeyValueStore,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        open_timeout_ms: int = DEFAULT_OPEN_TIMEOUT_MS,
        clock: Optional[Callable[[], int]] = None,
    ):
        """
        Initialize tracker.

        Args:
            store: Storage for health records
            failure_threshold: Consecutive failures that open the circuit
            open_timeout_ms: Time an open circuit waits before allowing a probe
            clock: Millisecond clock (defaults to wall time)
        """
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if open_timeout_ms < 0:
            raise ValueError("open_timeout_ms must not be negative")

        self._store = store
        self.failure_threshold = failure_threshold
        self.open_timeout_ms = open_timeout_ms
        self._clock = clock or _now_ms

    @staticmethod
    def _key(provider_id: str) -> str:
        return f"{HEALTH_KEY_PREFIX}{provider_id}"

    async def _load(self, provider_id: str) -> Optional[ProviderHealth]:
        raw = await self._store.get(self._key(provider_id))
        if raw is None:
            return None
        return ProviderHealth.from_dict(raw)

    async def _save(self, health: ProviderHealth) -> None:
        await self._store.set(self._key(health.provider_id), health.to_dict())

    async def get_health(self, provider_id: str) -> ProviderHealth:
        """
        Get the effective health of a provider.

        Unknown providers report CLOSED with zero failures. An OPEN record
        whose timeout has elapsed is reported as HALF_OPEN; storage is
        left untouched.
        """
        health = await self._load(provider_id)
        if health is None:
            return ProviderHealth(provider_id=provider_id, last_attempt=self._clock())

        if (
            health.state == CircuitState.OPEN
            and self._clock() - health.last_attempt > self.open_timeout_ms
        ):
            return ProviderHealth(
                provider_id=health.provider_id,
                state=CircuitState.HALF_OPEN,
                failure_count=health.failure_count,
                last_attempt=health.last_attempt,
            )
        return health

    async def can_call(self, provider_id: str) -> bool:
        """Check whether a call to the provider may be attempted."""
        health = await self.get_health(provider_id)
        return health.state != CircuitState.OPEN

    async def record_success(self, provider_id: str) -> None:
        """Record a usable response, closing the circuit."""
        previous = await self._load(provider_id)
        await self._save(ProviderHealth(
            provider_id=provider_id,
            state=CircuitState.CLOSED,
            failure_count=0,
            last_attempt=self._clock(),
        ))

        if previous is not None and previous.state != CircuitState.CLOSED:
            logger.info(
                "circuit_breaker_closed",
                provider_id=provider_id,
                previous_failures=previous.failure_count,
            )

    async def record_failure(self, provider_id: str) -> ProviderHealth:
        """
        Record a failed call.

        A failure during HALF_OPEN re-opens the circuit immediately;
        otherwise the circuit opens once failure_threshold is reached.

        Returns:
            The stored health record
        """
        current = await self.get_health(provider_id)
        failure_count = current.failure_count + 1

        if current.state == CircuitState.HALF_OPEN:
            state = CircuitState.OPEN
        elif failure_count >= self.failure_threshold:
            state = CircuitState.OPEN
        else:
            state = current.state

        health = ProviderHealth(
            provider_id=provider_id,
            state=state,
            failure_count=failure_count,
            last_attempt=self._clock(),
        )
        await self._save(health)

        if state == CircuitState.OPEN and current.state != CircuitState.OPEN:
            logger.warning(
                "circuit_breaker_opened",
                provider_id=provider_id,
                failure_count=failure_count,
                from_state=current.state.value,
                open_timeout_ms=self.open_timeout_ms,
            )
        else:
            logger.debug(
                "provider_failure_recorded",
                provider_id=provider_id,
                failure_count=failure_count,
                state=state.value,
            )

        return health

    async def reset(self, provider_id: str) -> bool:
        """Forget a provider's health record (used when its spec is removed)."""
        return await self._store.delete(self._key(provider_id))
