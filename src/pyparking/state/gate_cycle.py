"""Timed four-phase barrier cycle.

``closed -> opening -> open -> closing -> closed``.  The transition rule
is the pure function :func:`next_gate_phase`; :class:`GateSequencer`
only sleeps between transitions, so tests can drive a full cycle with a
fake ``sleep`` and no real time passing.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from pydantic import BaseModel, ConfigDict

from pyparking.config import GateTimings
from pyparking.models.gate import GateKind, GatePhase

_logger = logging.getLogger(__name__)


class GateTransition(BaseModel):
    """Next phase of the cycle and how long to wait before entering it."""

    model_config = ConfigDict(frozen=True)

    phase: GatePhase
    delay: float
    action: str


def next_gate_phase(phase: GatePhase, timings: GateTimings) -> GateTransition:
    if phase == GatePhase.CLOSED:
        return GateTransition(phase=GatePhase.OPENING, delay=0.0, action="opening")
    if phase == GatePhase.OPENING:
        return GateTransition(phase=GatePhase.OPEN, delay=timings.opening_seconds, action="opened")
    if phase == GatePhase.OPEN:
        return GateTransition(phase=GatePhase.CLOSING, delay=timings.hold_seconds, action="closing")
    return GateTransition(phase=GatePhase.CLOSED, delay=timings.closing_seconds, action="closed")


class GateSequencer:
    """Run one full open/close cycle for a gate.

    ``on_transition(kind, transition)`` is called once per phase change,
    after the corresponding delay.
    """

    def __init__(
        self,
        timings: GateTimings,
        on_transition: Callable[[GateKind, GateTransition], None],
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._timings = timings
        self._on_transition = on_transition
        self._sleep = sleep

    async def run(self, kind: GateKind, start: GatePhase = GatePhase.CLOSED) -> GatePhase:
        """Cycle *kind* from *start* back to ``closed``; returns the final phase."""
        phase = start
        while True:
            transition = next_gate_phase(phase, self._timings)
            if transition.delay > 0:
                await self._sleep(transition.delay)
            _logger.debug("Gate %s %s -> %s", kind, phase, transition.phase)
            self._on_transition(kind, transition)
            phase = transition.phase
            if phase == GatePhase.CLOSED:
                return phase
