"""Base model for pyparking wire records.

Every record published on the backbone inherits from
:class:`ParkingBaseModel` which provides:

* ``alias_generator=to_camel`` so snake_case fields serialize to the
  camelCase keys the dashboard expects (fields whose wire name is not
  camelCase declare an explicit ``alias``).
* ``populate_by_name=True`` so records can be built with field names
  in Python and validated from wire dicts on the consumer side.
* ``extra="ignore"`` so consumers tolerate keys added by newer publishers.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict
from pydantic.alias_generators import to_camel

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_wire_timestamp(value: Any) -> datetime | None:
    """Coerce a wire timestamp to a UTC datetime.

    Accepts datetimes, ISO-8601 strings, and epoch numbers in seconds
    **or** milliseconds.  Returns ``None`` for ``None``.

    Every unusable value raises :class:`ValueError`, which pydantic
    reports as a ``ValidationError`` on the owning model.
    """
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    try:
        ts = float(value)
        if ts >= _MS_THRESHOLD:
            ts = ts / 1000.0
        return datetime.fromtimestamp(ts, tz=UTC)
    except (TypeError, OverflowError, OSError) as exc:
        raise ValueError(f"unusable timestamp {value!r}") from exc


WireTimestamp = Annotated[datetime | None, BeforeValidator(parse_wire_timestamp)]
"""Annotated type that coerces ISO strings and epoch numbers to UTC datetimes."""


class ParkingBaseModel(BaseModel):
    """Base for records carried on the backbone."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_wire(self, *, exclude: set[str] | None = None) -> dict[str, Any]:
        """Dump the JSON-compatible wire representation."""
        return self.model_dump(mode="json", by_alias=True, exclude=exclude)
