"""
Text extraction from heterogeneous LLM response bodies.

Providers wrap their completion text in different JSON shapes. Each shape is
an ExtractionStrategy that probes the decoded body and returns the text or
None; strategies are tried in a fixed priority order and the first hit wins.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


def _index(value: Any, position: int) -> Any:
    if isinstance(value, list) and len(value) > position:
        return value[position]
    return None


def _field(value: Any, name: str) -> Any:
    if isinstance(value, dict):
        return value.get(name)
    return None


def _as_text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


@dataclass(frozen=True)
class ExtractionStrategy:
    """A named probe for one response shape."""

    name: str
    probe: Callable[[Any], Optional[str]]

    def extract(self, raw: Any) -> Optional[str]:
        return self.probe(raw)


def _flat_field(name: str) -> ExtractionStrategy:
    return ExtractionStrategy(name, lambda raw: _as_text(_field(raw, name)))


STRATEGIES: tuple[ExtractionStrategy, ...] = (
    # Body was already plain text
    ExtractionStrategy("plain_text", _as_text),
    # OpenAI-style chat completion
    ExtractionStrategy(
        "chat_message",
        lambda raw: _as_text(_field(_field(_index(_field(raw, "choices"), 0), "message"), "content")),
    ),
    # Legacy completion endpoints
    ExtractionStrategy(
        "choice_text",
        lambda raw: _as_text(_field(_index(_field(raw, "choices"), 0), "text")),
    ),
    # Gemini generateContent
    ExtractionStrategy(
        "gemini_parts",
        lambda raw: _as_text(
            _field(_index(_field(_field(_index(_field(raw, "candidates"), 0), "content"), "parts"), 0), "text")
        ),
    ),
    # Anthropic messages API: content is a list of blocks
    ExtractionStrategy(
        "content_blocks",
        lambda raw: _as_text(_field(_index(_field(raw, "content"), 0), "text")),
    ),
    _flat_field("completion"),
    _flat_field("text"),
    _flat_field("content"),
    _flat_field("response"),
    _flat_field("output"),
)


def extract_text(raw: Any) -> Optional[str]:
    """
    Pull the completion text out of a decoded response body.

    Args:
        raw: Decoded JSON body (dict, list, str) or None

    Returns:
        The first text found by the strategies, or None
    """
    if not raw:
        return None

    for strategy in STRATEGIES:
        text = strategy.extract(raw)
        if text is not None:
            logger.debug("response_text_extracted", strategy=strategy.name, length=len(text))
            return text

    return None
