"""
Parallel fan-out over provider adapters.
"""

import asyncio
from typing import Any, Mapping, Optional, Protocol, Sequence

import structlog

from llm_consensus.ai.provider_adapter import ParsedResponse

logger = structlog.get_logger(__name__)


class Adapter(Protocol):
    """Anything with a provider id and an async call()."""

    @property
    def provider_id(self) -> str:
        ...

    async def call(self, prompt: str, extra: Optional[Mapping[str, Any]] = None) -> ParsedResponse:
        ...


async def dispatch_all(
    adapters: Sequence[Adapter],
    prompt: str,
    extra: Optional[Mapping[str, Any]] = None,
) -> list[ParsedResponse]:
    """
    Call every adapter concurrently and wait for all of them.

    A slow provider never cancels the others. Output order matches adapter
    order regardless of completion order. An adapter that raises is
    reported as a failed response rather than propagated.

    Args:
        adapters: Provider adapters
        prompt: Prompt sent to every provider
        extra: Additional template variables

    Returns:
        One ParsedResponse per adapter
    """
    if not adapters:
        return []

    logger.info("dispatch_starting", providers=[a.provider_id for a in adapters])

    results = await asyncio.gather(
        *[adapter.call(prompt, extra) for adapter in adapters],
        return_exceptions=True,
    )

    responses: list[ParsedResponse] = []
    for adapter, result in zip(adapters, results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                # CancelledError / KeyboardInterrupt must propagate
                raise result
            logger.error(
                "provider_adapter_crashed",
                provider_id=adapter.provider_id,
                error=str(result),
                error_type=type(result).__name__,
            )
            responses.append(ParsedResponse(
                provider_id=adapter.provider_id,
                raw=None,
                ok=False,
                error=f"Adapter error: {result}",
            ))
        else:
            responses.append(result)

    logger.info(
        "dispatch_completed",
        total=len(responses),
        usable=sum(1 for r in responses if r.usable),
        failed=[r.provider_id for r in responses if not r.ok],
    )
    return responses
