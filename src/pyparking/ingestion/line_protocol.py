"""Sensor line-protocol decoder.

The sensor board emits two fixed grammars::

    OCC:<spaceId>:<state>[:<spaceId>:<state>...];
    BAR:<barrierId>:<state>[:<barrierId>:<state>...];

Decoding never raises.  Anything that does not match either grammar is
returned as :class:`UnrecognizedFrame` so callers can log and drop it.
Within a frame, pairs are read left to right in stride 2; a trailing odd
token is ignored and ids out of range are silently dropped.  No
deduplication happens here: when an id appears twice, applying the
assignments in order leaves the last one in effect.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from pydantic import BaseModel, ConfigDict, Field

from pyparking._constants import (
    BARRIER_PREFIX,
    FIELD_SEPARATOR,
    FRAME_TERMINATOR,
    INVALID_TOKEN,
    OCCUPANCY_PREFIX,
)
from pyparking.models.gate import BARRIER_IDS, GateKind


class SpaceAssignment(BaseModel):
    model_config = ConfigDict(frozen=True)

    space_id: int
    occupied: bool


class GateAssignment(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: GateKind
    is_open: bool


class OccupancyFrame(BaseModel):
    """Decoded ``OCC:`` frame."""

    model_config = ConfigDict(frozen=True)

    raw: str
    assignments: tuple[SpaceAssignment, ...] = Field(default_factory=tuple)


class BarrierFrame(BaseModel):
    """Decoded ``BAR:`` frame."""

    model_config = ConfigDict(frozen=True)

    raw: str
    assignments: tuple[GateAssignment, ...] = Field(default_factory=tuple)


class UnrecognizedFrame(BaseModel):
    """Input that matched neither grammar."""

    model_config = ConfigDict(frozen=True)

    raw: str


DecodedFrame = OccupancyFrame | BarrierFrame | UnrecognizedFrame


def _parse_token(token: str) -> int:
    text = token.strip()
    if not (text.isascii() and text.isdigit()):
        return INVALID_TOKEN
    return int(text)


def _pairs(data_section: str) -> Iterator[tuple[int, int]]:
    if not data_section:
        return
    tokens = data_section.split(FIELD_SEPARATOR)
    for index in range(0, len(tokens) - 1, 2):
        yield _parse_token(tokens[index]), _parse_token(tokens[index + 1])


def _data_section(raw: str, prefix: str) -> str | None:
    if not raw.startswith(prefix) or not raw.endswith(FRAME_TERMINATOR):
        return None
    return raw[len(prefix) : -len(FRAME_TERMINATOR)]


def decode_occupancy(raw: str, *, total_spaces: int) -> OccupancyFrame | None:
    """Decode an ``OCC:`` frame, or return ``None`` if *raw* is not one."""
    section = _data_section(raw, OCCUPANCY_PREFIX)
    if section is None:
        return None
    assignments = tuple(
        SpaceAssignment(space_id=space_id, occupied=state == 1)
        for space_id, state in _pairs(section)
        if 1 <= space_id <= total_spaces
    )
    return OccupancyFrame(raw=raw, assignments=assignments)


def decode_barrier(raw: str) -> BarrierFrame | None:
    """Decode a ``BAR:`` frame, or return ``None`` if *raw* is not one."""
    section = _data_section(raw, BARRIER_PREFIX)
    if section is None:
        return None
    assignments = tuple(
        GateAssignment(kind=BARRIER_IDS[barrier_id], is_open=state == 1)
        for barrier_id, state in _pairs(section)
        if barrier_id in BARRIER_IDS
    )
    return BarrierFrame(raw=raw, assignments=assignments)


def decode_frame(raw: str | bytes, *, total_spaces: int) -> DecodedFrame:
    """Decode one line-protocol frame.

    Parameters
    ----------
    raw
        Frame text (or bytes, decoded as ASCII with replacement).
    total_spaces
        Highest valid space id; ids outside ``1..total_spaces`` are dropped.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("ascii", errors="replace")
    text = raw.strip()

    occupancy = decode_occupancy(text, total_spaces=total_spaces)
    if occupancy is not None:
        return occupancy
    barrier = decode_barrier(text)
    if barrier is not None:
        return barrier
    return UnrecognizedFrame(raw=text)


def encode_occupancy_frame(assignments: Iterable[SpaceAssignment]) -> str:
    """Render space assignments back to the ``OCC:`` grammar."""
    body = FIELD_SEPARATOR.join(f"{a.space_id}{FIELD_SEPARATOR}{int(a.occupied)}" for a in assignments)
    return f"{OCCUPANCY_PREFIX}{body}{FRAME_TERMINATOR}"


def encode_barrier_frame(assignments: Iterable[GateAssignment]) -> str:
    """Render gate assignments back to the ``BAR:`` grammar."""
    ids = {kind: barrier_id for barrier_id, kind in BARRIER_IDS.items()}
    body = FIELD_SEPARATOR.join(f"{ids[a.kind]}{FIELD_SEPARATOR}{int(a.is_open)}" for a in assignments)
    return f"{BARRIER_PREFIX}{body}{FRAME_TERMINATOR}"
