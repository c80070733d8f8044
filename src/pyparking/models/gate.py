"""Barrier gate model."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import Field, model_validator

from pyparking.models._base import ParkingBaseModel, WireTimestamp, utcnow


class GateKind(StrEnum):
    ENTRY = "entry"
    EXIT = "exit"


class GatePhase(StrEnum):
    CLOSED = "closed"
    OPENING = "opening"
    OPEN = "open"
    CLOSING = "closing"


#: Servo position for each phase, in degrees.
SERVO_ANGLES: dict[GatePhase, int] = {
    GatePhase.CLOSED: 0,
    GatePhase.OPENING: 45,
    GatePhase.OPEN: 90,
    GatePhase.CLOSING: 45,
}

#: Barrier ids used by the ``BAR:`` line protocol.
BARRIER_IDS: dict[int, GateKind] = {
    1: GateKind.ENTRY,
    2: GateKind.EXIT,
}


class GateState(ParkingBaseModel):
    """Current state of one barrier gate.

    ``servo_angle_degrees`` always follows ``phase``: it is filled in from
    :data:`SERVO_ANGLES` when not supplied, and a supplied angle that
    disagrees with the phase fails validation.
    """

    kind: GateKind
    phase: GatePhase = Field(default=GatePhase.CLOSED, alias="status")
    servo_angle_degrees: int = Field(default=0, alias="servo_angle")
    last_change_time: WireTimestamp = Field(default_factory=utcnow, alias="timestamp")
    action: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _derive_angle(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        phase = data.get("status", data.get("phase", GatePhase.CLOSED))
        try:
            expected = SERVO_ANGLES[GatePhase(phase)]
        except (TypeError, ValueError):
            # Left for field validation to report.
            return data
        angle = data.get("servo_angle", data.get("servo_angle_degrees"))
        if angle is None:
            return {**data, "servo_angle": expected}
        if angle != expected:
            raise ValueError(f"servo angle {angle!r} does not match phase {phase!s}")
        return data

    @property
    def is_open(self) -> bool:
        return self.phase == GatePhase.OPEN

    def to_payload(self) -> dict[str, object]:
        return self.to_wire(exclude={"kind"})
