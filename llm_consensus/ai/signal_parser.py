"""
Structured signal extraction from free-form LLM text.

Two tiers:
1. JSON: the greedy {...} span is decoded and validated against ParsedSignal.
2. Regex: when no decodable JSON is present, labelled values
   ("Confidence: 72", "Entry: $1,234.50", ...) are scraped from the prose.

LLM output is not guaranteed to be strict JSON, so the regex tier is a
best-effort degradation rather than a primary path.
"""

import json
import re
from enum import Enum
from typing import Any, Optional

import structlog
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from llm_consensus.errors import NoSignalFoundError, SchemaValidationError

logger = structlog.get_logger(__name__)

JSON_SPAN_PATTERN = re.compile(r"\{[\s\S]*\}")

TYPE_PATTERN = re.compile(r"\b(BUY|SELL|HOLD)\b", re.IGNORECASE)
CONFIDENCE_PATTERN = re.compile(r"Confidence[:\s]*([0-9]{1,3})", re.IGNORECASE)
ENTRY_PATTERN = re.compile(r"Entry[:\s]*\$?([0-9,.]+)", re.IGNORECASE)
STOP_LOSS_PATTERN = re.compile(r"Stop\s*Loss[:\s]*\$?([0-9,.]+)", re.IGNORECASE)
TAKE_PROFIT_PATTERN = re.compile(r"Take\s*Profit[:\s]*\$?([0-9,.]+)", re.IGNORECASE)


class SignalType(str, Enum):
    """Trading direction."""

    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class ParsedSignal(BaseModel):
    """
    Partial signal proposed by one provider.

    Every field is optional. Numbers must be real JSON numbers; quoted
    numbers are rejected as a schema error.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    type: Optional[SignalType] = None
    confidence: Optional[float] = Field(default=None, ge=0, le=100, strict=True)
    price: Optional[float] = Field(
        default=None, gt=0, strict=True, validation_alias=AliasChoices("price", "entry")
    )
    stop_loss: Optional[float] = Field(
        default=None, gt=0, strict=True, validation_alias=AliasChoices("stopLoss", "stop_loss")
    )
    take_profit: Optional[float] = Field(
        default=None, gt=0, strict=True, validation_alias=AliasChoices("takeProfit", "take_profit")
    )
    reasoning: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v: Any) -> Any:
        """Accept "buy"/"Buy" as well as "BUY"."""
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @property
    def is_empty(self) -> bool:
        return all(
            getattr(self, name) is None
            for name in ("type", "confidence", "price", "stop_loss", "take_profit", "reasoning")
        )


def _to_number(text: str) -> Optional[float]:
    """Parse a captured number; thousands separators and a sentence-ending period are dropped."""
    try:
        return float(text.replace(",", "").removesuffix("."))
    except ValueError:
        return None


def _find_json_candidate(text: str) -> Optional[dict]:
    """Decode the greedy {...} span, or None if absent or undecodable."""
    match = JSON_SPAN_PATTERN.search(text)
    if not match:
        return None

    try:
        candidate = json.loads(match.group(0))
    except json.JSONDecodeError:
        logger.debug("signal_json_undecodable", preview=match.group(0)[:120])
        return None

    return candidate if isinstance(candidate, dict) else None


def _parse_json_signal(candidate: dict) -> ParsedSignal:
    try:
        signal = ParsedSignal.model_validate(candidate)
    except ValidationError as e:
        detail = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise SchemaValidationError(detail) from e

    if signal.is_empty:
        raise NoSignalFoundError("JSON object contains no signal fields")
    return signal


def _parse_prose_signal(text: str) -> Optional[ParsedSignal]:
    """Scrape labelled values from prose. Fields that fail validation are dropped."""
    fields: dict[str, Any] = {}

    type_match = TYPE_PATTERN.search(text)
    if type_match:
        fields["type"] = type_match.group(1).upper()

    confidence_match = CONFIDENCE_PATTERN.search(text)
    if confidence_match:
        fields["confidence"] = float(confidence_match.group(1))

    for name, pattern in (
        ("price", ENTRY_PATTERN),
        ("stop_loss", STOP_LOSS_PATTERN),
        ("take_profit", TAKE_PROFIT_PATTERN),
    ):
        match = pattern.search(text)
        if match:
            value = _to_number(match.group(1))
            if value is not None:
                fields[name] = value

    valid: dict[str, Any] = {}
    for name, value in fields.items():
        try:
            ParsedSignal.model_validate({name: value})
        except ValidationError:
            logger.debug("signal_fallback_field_rejected", field=name, value=value)
            continue
        valid[name] = value

    if not valid:
        return None
    return ParsedSignal.model_validate(valid)


def parse_signal(text: Optional[str]) -> ParsedSignal:
    """
    Extract a validated partial signal from provider text.

    Args:
        text: Completion text

    Returns:
        ParsedSignal with at least one field set

    Raises:
        SchemaValidationError: A JSON object was found but is invalid
        NoSignalFoundError: Nothing recognisable in the text
    """
    if not text or not text.strip():
        raise NoSignalFoundError("Empty response text")

    candidate = _find_json_candidate(text)
    if candidate is not None:
        return _parse_json_signal(candidate)

    signal = _parse_prose_signal(text)
    if signal is None:
        raise NoSignalFoundError("No valid JSON or recognisable fields found in response")
    return signal
