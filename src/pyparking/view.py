"""Client-side projection of the parking topics.

:class:`ParkingView` is the consumer's local, mutable copy of the
published state.  Each topic has one merge rule and every rule replaces
the whole record for its key; payloads are full snapshots, never
patches.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import TypeAdapter, ValidationError

from pyparking._constants import HOURLY_TOPIC, HOURS_PER_DAY, STATS_TOPIC
from pyparking.ingestion.envelope import Payload, StructuredPayload
from pyparking.models._base import utcnow
from pyparking.models.gate import GateKind, GateState
from pyparking.models.space import OccupancySpace
from pyparking.models.statistics import HourlyBucket, SystemStatistics, empty_buckets

_BUCKETS = TypeAdapter(list[HourlyBucket])


def _space_id(topic: str) -> int | None:
    parts = topic.split("/")
    if len(parts) != 4 or parts[0] != "parking" or parts[1] != "spaces" or parts[3] != "status":
        return None
    return int(parts[2]) if parts[2].isascii() and parts[2].isdigit() else None


def _gate_kind(topic: str) -> GateKind | None:
    parts = topic.split("/")
    if len(parts) != 4 or parts[0] != "parking" or parts[1] != "gates" or parts[3] != "status":
        return None
    try:
        return GateKind(parts[2])
    except ValueError:
        return None


@dataclass
class ParkingView:
    """Merged dashboard state."""

    spaces: dict[int, OccupancySpace] = field(default_factory=dict)
    gates: dict[GateKind, GateState] = field(default_factory=dict)
    stats: SystemStatistics | None = None
    hourly: list[HourlyBucket] = field(default_factory=list)
    last_update: datetime | None = None

    @classmethod
    def initial(cls, total_spaces: int) -> ParkingView:
        """Placeholder view shown before the first message arrives."""
        return cls(
            spaces={space_id: OccupancySpace.placeholder(space_id) for space_id in range(1, total_spaces + 1)},
            gates={kind: GateState(kind=kind) for kind in GateKind},
            stats=SystemStatistics(total_spaces=total_spaces),
            hourly=empty_buckets(total_spaces),
        )

    def apply(self, topic: str, payload: Payload, *, received_at: datetime | None = None) -> bool:
        """Merge one message; returns ``False`` when it was ignored.

        Unknown topics, plain-text payloads and payloads that do not have
        the shape the topic calls for are ignored.
        """
        if not isinstance(payload, StructuredPayload):
            return False
        value = payload.value

        applied = False
        space_id = _space_id(topic)
        gate_kind = _gate_kind(topic)
        if space_id is not None:
            applied = self._apply_space(space_id, value)
        elif gate_kind is not None:
            applied = self._apply_gate(gate_kind, value)
        elif topic == STATS_TOPIC:
            applied = self._apply_stats(value)
        elif topic == HOURLY_TOPIC:
            applied = self._apply_hourly(value)

        if applied:
            self.last_update = received_at or utcnow()
        return applied

    def _apply_space(self, space_id: int, value: Any) -> bool:
        previous = self.spaces.get(space_id)
        if previous is None or not isinstance(value, dict):
            return False
        try:
            record = OccupancySpace.model_validate({**value, "id": space_id})
        except ValidationError:
            return False
        self.spaces[space_id] = record.model_copy(update={"previous_state": previous.occupied})
        return True

    def _apply_gate(self, kind: GateKind, value: Any) -> bool:
        if not isinstance(value, dict):
            return False
        try:
            self.gates[kind] = GateState.model_validate({**value, "kind": kind})
        except ValidationError:
            return False
        return True

    def _apply_stats(self, value: Any) -> bool:
        if not isinstance(value, dict):
            return False
        try:
            self.stats = SystemStatistics.model_validate(value)
        except ValidationError:
            return False
        return True

    def _apply_hourly(self, value: Any) -> bool:
        if not isinstance(value, list) or len(value) != HOURS_PER_DAY:
            return False
        try:
            self.hourly = _BUCKETS.validate_python(value)
        except ValidationError:
            return False
        return True
