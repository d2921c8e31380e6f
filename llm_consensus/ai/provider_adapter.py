"""
Generic HTTP adapter for LLM providers.

Turns a ProviderSpec into a uniform async call(prompt, extra) that always
returns a ParsedResponse. Network failures are retried with exponential
backoff; unusable replies are not retried but still count against the
provider's circuit breaker, since a provider that never returns usable
structure is as useless as one that is down.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from llm_consensus.ai.extraction import extract_text
from llm_consensus.ai.provider_spec import ProviderSpec
from llm_consensus.ai.signal_parser import ParsedSignal, parse_signal
from llm_consensus.ai.templating import placeholders, render
from llm_consensus.errors import (
    CircuitOpenError,
    NoSignalFoundError,
    SchemaValidationError,
    TransportError,
)
from llm_consensus.safety.provider_health import CircuitState, ProviderHealthTracker
from llm_consensus.state.store import SecretStore

logger = structlog.get_logger(__name__)

# Backoff before retry n (0-based) is BACKOFF_BASE_SECONDS * 2**n
BACKOFF_BASE_SECONDS = 0.2

INVALID_SCHEMA_ERROR = "Invalid response schema"
NO_TEXT_ERROR = "No text found in response"


@dataclass(frozen=True)
class ParsedResponse:
    """Outcome of one provider call."""

    provider_id: str
    raw: Any
    ok: bool
    parsed: Optional[ParsedSignal] = None
    error: Optional[str] = None

    @property
    def usable(self) -> bool:
        return self.ok and self.parsed is not None


def _json_escape(value: Any) -> str:
    """Escape a value for use inside a JSON string literal."""
    return json.dumps("" if value is None else str(value))[1:-1]


class ProviderAdapter:
    """
    Callable wrapper around one configured provider.

    The optional httpx client is shared across adapters when supplied;
    otherwise a client is opened per call.
    """

    def __init__(
        self,
        spec: ProviderSpec,
        health: ProviderHealthTracker,
        secrets: SecretStore,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.spec = spec
        self.health = health
        self.secrets = secrets
        self._client = client
        self._sleep = sleep

    @property
    def provider_id(self) -> str:
        return self.spec.id

    def _render_headers(self, variables: Mapping[str, Any]) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        for name, template in self.spec.headers.items():
            missing = [key for key in placeholders(template) if key not in variables]
            if missing:
                logger.warning(
                    "provider_header_placeholder_missing",
                    provider_id=self.provider_id,
                    header=name,
                    missing=missing,
                )
            headers[name] = render(template, variables)
        return headers

    def _render_body(self, variables: Mapping[str, Any]) -> str:
        """
        Render the request body.

        Values are JSON-escaped so prompts with quotes or newlines keep the
        body decodable. If the result still does not decode it is sent as is.
        """
        escaped = {key: _json_escape(value) for key, value in variables.items()}
        body_text = render(self.spec.body_template, escaped)
        try:
            return json.dumps(json.loads(body_text))
        except json.JSONDecodeError:
            logger.debug("provider_body_not_json", provider_id=self.provider_id)
            return body_text

    async def _post(self, client: httpx.AsyncClient, headers: dict[str, str], content: str) -> Any:
        try:
            response = await client.post(
                self.spec.endpoint,
                headers=headers,
                content=content.encode("utf-8"),
                timeout=self.spec.timeout_ms / 1000,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"HTTP {e.response.status_code} from {self.spec.endpoint}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"Response body is not valid JSON: {e}") from e

    def _log_retry(self, retry_state) -> None:
        logger.warning(
            "provider_call_retrying",
            provider_id=self.provider_id,
            attempt=retry_state.attempt_number,
            max_retries=self.spec.max_retries,
            backoff_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
            error=str(retry_state.outcome.exception()),
        )

    async def _send(self, client: httpx.AsyncClient, headers: dict[str, str], content: str) -> Any:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.spec.max_retries + 1),
            wait=wait_exponential(multiplier=BACKOFF_BASE_SECONDS, exp_base=2, min=0),
            retry=retry_if_exception_type(TransportError),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._post(client, headers, content)

    async def _fail(self, raw: Any, error: str) -> ParsedResponse:
        await self.health.record_failure(self.provider_id)
        return ParsedResponse(provider_id=self.provider_id, raw=raw, ok=False, error=error)

    async def call(self, prompt: str, extra: Optional[Mapping[str, Any]] = None) -> ParsedResponse:
        """
        Query the provider and parse its signal.

        Args:
            prompt: Prompt text substituted for {{prompt}}
            extra: Additional template variables

        Returns:
            ParsedResponse; never raises for provider-side failures
        """
        extra = dict(extra or {})

        health = await self.health.get_health(self.provider_id)
        if health.state == CircuitState.OPEN:
            error = CircuitOpenError(self.provider_id)
            logger.info(
                "provider_call_skipped",
                provider_id=self.provider_id,
                reason="circuit_open",
                failure_count=health.failure_count,
            )
            return ParsedResponse(provider_id=self.provider_id, raw=None, ok=False, error=str(error))

        secrets = await self.secrets.get_secrets(self.provider_id) or {}
        header_vars = {**extra, **secrets}
        body_vars = {"prompt": prompt, "model": self.spec.model or "", **extra, **secrets}

        headers = self._render_headers(header_vars)
        content = self._render_body(body_vars)

        logger.debug(
            "provider_call_starting",
            provider_id=self.provider_id,
            endpoint=self.spec.endpoint,
            half_open=health.state == CircuitState.HALF_OPEN,
        )

        try:
            if self._client is not None:
                raw = await self._send(self._client, headers, content)
            else:
                async with httpx.AsyncClient() as client:
                    raw = await self._send(client, headers, content)
        except TransportError as e:
            logger.error(
                "provider_call_failed",
                provider_id=self.provider_id,
                attempts=self.spec.max_retries + 1,
                error=str(e),
            )
            return await self._fail(None, str(e))

        text = extract_text(raw)
        if text is None:
            logger.warning("provider_response_no_text", provider_id=self.provider_id)
            return await self._fail(raw, NO_TEXT_ERROR)

        try:
            parsed = parse_signal(text)
        except SchemaValidationError as e:
            logger.warning(
                "provider_response_invalid_schema",
                provider_id=self.provider_id,
                detail=e.detail,
            )
            return await self._fail(raw, INVALID_SCHEMA_ERROR)
        except NoSignalFoundError as e:
            logger.warning("provider_response_no_signal", provider_id=self.provider_id, reason=str(e))
            return await self._fail(raw, f"No valid signal found in response: {e}")

        await self.health.record_success(self.provider_id)
        logger.info(
            "provider_call_succeeded",
            provider_id=self.provider_id,
            signal_type=parsed.type.value if parsed.type else None,
            confidence=parsed.confidence,
        )
        return ParsedResponse(provider_id=self.provider_id, raw=raw, ok=True, parsed=parsed)


def build_adapters(
    specs: list[ProviderSpec],
    health: ProviderHealthTracker,
    secrets: SecretStore,
    client: Optional[httpx.AsyncClient] = None,
) -> list[ProviderAdapter]:
    """Create one adapter per spec, preserving order."""
    return [ProviderAdapter(spec, health, secrets, client=client) for spec in specs]
