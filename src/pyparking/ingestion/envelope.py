"""Bridge envelope codec.

The bridge wraps every backbone message in a small JSON text frame::

    {"topic": "...", "message": "<payload as text>", "timestamp": <epoch ms>}

``message`` usually holds embedded JSON text, but it may also be plain
text, or (from other bridge implementations) an already-structured
value.  :func:`parse_payload` turns it into a tagged result so callers
branch on the variant instead of catching decode errors.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pyparking.exceptions import EnvelopeFormatError


class Envelope(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    topic: str = Field(..., min_length=1)
    message: Any = None
    timestamp: int = 0


@dataclass(frozen=True)
class StructuredPayload:
    """Payload that parsed as JSON."""

    value: Any


@dataclass(frozen=True)
class TextPayload:
    """Payload kept as the literal string."""

    text: str


Payload = StructuredPayload | TextPayload


def build_envelope(topic: str, payload: bytes, timestamp_ms: int) -> str:
    """Render the text envelope the bridge sends downstream."""
    return json.dumps(
        {
            "topic": topic,
            "message": payload.decode("utf-8", errors="replace"),
            "timestamp": timestamp_ms,
        },
        separators=(",", ":"),
        ensure_ascii=False,
    )


def parse_envelope(text: str | bytes) -> Envelope:
    """Parse one envelope frame.

    Raises
    ------
    EnvelopeFormatError
        If *text* is not a JSON object with a non-empty ``topic``.
    """
    raw = text.decode("utf-8", errors="replace") if isinstance(text, bytes) else text
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise EnvelopeFormatError(f"Envelope is not JSON: {raw[:64]}", raw=raw) from exc
    if not isinstance(decoded, dict):
        raise EnvelopeFormatError("Envelope is not a JSON object", raw=raw)
    try:
        return Envelope.model_validate(decoded)
    except ValidationError as exc:
        raise EnvelopeFormatError(f"Envelope has invalid fields: {exc.error_count()} error(s)", raw=raw) from exc


def parse_payload(message: Any) -> Payload:
    """Classify an envelope ``message`` as structured data or plain text."""
    if not isinstance(message, str):
        return StructuredPayload(value=message)
    try:
        return StructuredPayload(value=json.loads(message))
    except json.JSONDecodeError:
        return TextPayload(text=message)
