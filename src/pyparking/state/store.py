"""Authoritative in-memory parking state.

This is the only component allowed to mutate space and gate records.
"""

from __future__ import annotations

import random
from collections.abc import Callable, Iterable
from datetime import datetime

from pyparking._constants import FREE_DISTANCE_CM, OCCUPIED_DISTANCE_CM
from pyparking.ingestion.line_protocol import GateAssignment, SpaceAssignment
from pyparking.models._base import utcnow
from pyparking.models.gate import SERVO_ANGLES, GateKind, GatePhase, GateState
from pyparking.models.space import OccupancySpace
from pyparking.state.events import GateChange, SpaceChange


class ParkingStore:
    """Space and gate records for one site.

    Records are created once with placeholder values and replaced through
    the ``apply_*`` methods for the lifetime of the process.  The store is
    meant to be driven from a single event loop; it does no locking.
    """

    def __init__(
        self,
        total_spaces: int,
        *,
        clock: Callable[[], datetime] = utcnow,
        rng: random.Random | None = None,
    ) -> None:
        if total_spaces < 1:
            raise ValueError(f"total_spaces must be at least 1, got {total_spaces}")
        self._clock = clock
        self._rng = rng or random.Random()
        self._total_spaces = total_spaces
        now = clock()
        self._spaces: dict[int, OccupancySpace] = {
            space_id: OccupancySpace.placeholder(space_id).model_copy(update={"last_change_time": now})
            for space_id in range(1, total_spaces + 1)
        }
        self._gates: dict[GateKind, GateState] = {
            kind: GateState(kind=kind, phase=GatePhase.CLOSED, last_change_time=now) for kind in GateKind
        }

    @property
    def total_spaces(self) -> int:
        return self._total_spaces

    def spaces(self) -> list[OccupancySpace]:
        return [self._spaces[space_id] for space_id in sorted(self._spaces)]

    def space(self, space_id: int) -> OccupancySpace:
        return self._spaces[space_id]

    def gates(self) -> list[GateState]:
        return [self._gates[kind] for kind in GateKind]

    def gate(self, kind: GateKind) -> GateState:
        return self._gates[kind]

    def occupied_count(self) -> int:
        return sum(1 for space in self._spaces.values() if space.occupied)

    def _synthesize_distance(self, occupied: bool) -> int:
        low, high = OCCUPIED_DISTANCE_CM if occupied else FREE_DISTANCE_CM
        return self._rng.randrange(low, high)

    def apply_occupancy_events(self, assignments: Iterable[SpaceAssignment]) -> list[SpaceChange]:
        """Apply decoded space assignments in order.

        Returns one :class:`SpaceChange` per assignment that flipped a
        space.  Ids the store does not know are ignored.
        """
        now = self._clock()
        changes: list[SpaceChange] = []
        for assignment in assignments:
            current = self._spaces.get(assignment.space_id)
            if current is None or current.occupied == assignment.occupied:
                continue
            self._spaces[assignment.space_id] = current.model_copy(
                update={
                    "occupied": assignment.occupied,
                    "distance": self._synthesize_distance(assignment.occupied),
                    "last_change_time": now,
                    "change_detected": True,
                    "previous_state": current.occupied,
                }
            )
            changes.append(
                SpaceChange(
                    space_id=assignment.space_id,
                    previous=current.occupied,
                    current=assignment.occupied,
                    changed_at=now,
                )
            )
        return changes

    def apply_barrier_events(self, assignments: Iterable[GateAssignment]) -> list[GateChange]:
        """Apply decoded barrier assignments.

        Decoded barrier state is authoritative: the gate snaps straight to
        ``open`` or ``closed`` without the intermediate phases.
        """
        changes: list[GateChange] = []
        for assignment in assignments:
            phase = GatePhase.OPEN if assignment.is_open else GatePhase.CLOSED
            action = "opening" if assignment.is_open else "closing"
            change = self.set_gate_phase(assignment.kind, phase, action=action)
            if change is not None:
                changes.append(change)
        return changes

    def set_gate_phase(self, kind: GateKind, phase: GatePhase, *, action: str | None = None) -> GateChange | None:
        """Move *kind* to *phase*; returns ``None`` when it already is there."""
        current = self._gates[kind]
        if current.phase == phase:
            return None
        now = self._clock()
        self._gates[kind] = GateState(
            kind=kind,
            phase=phase,
            servo_angle_degrees=SERVO_ANGLES[phase],
            last_change_time=now,
            action=action,
        )
        return GateChange(kind=kind, previous=current.phase, current=phase, changed_at=now)
