from __future__ import annotations

import pytest

from pyparking.config import GateTimings
from pyparking.models.gate import GateKind, GatePhase
from pyparking.state.gate_cycle import GateSequencer, GateTransition, next_gate_phase


def test_next_phase_follows_cycle() -> None:
    timings = GateTimings()

    assert next_gate_phase(GatePhase.CLOSED, timings) == GateTransition(
        phase=GatePhase.OPENING, delay=0.0, action="opening"
    )
    assert next_gate_phase(GatePhase.OPENING, timings) == GateTransition(
        phase=GatePhase.OPEN, delay=2.0, action="opened"
    )
    assert next_gate_phase(GatePhase.OPEN, timings) == GateTransition(
        phase=GatePhase.CLOSING, delay=4.0, action="closing"
    )
    assert next_gate_phase(GatePhase.CLOSING, timings) == GateTransition(
        phase=GatePhase.CLOSED, delay=2.0, action="closed"
    )


@pytest.mark.asyncio
async def test_sequencer_runs_full_cycle_with_virtual_time() -> None:
    slept: list[float] = []
    seen: list[tuple[GateKind, GatePhase, str]] = []

    async def fake_sleep(delay: float) -> None:
        slept.append(delay)

    sequencer = GateSequencer(
        GateTimings(opening_seconds=1.5, hold_seconds=3.0, closing_seconds=0.5),
        lambda kind, transition: seen.append((kind, transition.phase, transition.action)),
        sleep=fake_sleep,
    )

    final = await sequencer.run(GateKind.ENTRY)

    assert final == GatePhase.CLOSED
    assert slept == [1.5, 3.0, 0.5]
    assert seen == [
        (GateKind.ENTRY, GatePhase.OPENING, "opening"),
        (GateKind.ENTRY, GatePhase.OPEN, "opened"),
        (GateKind.ENTRY, GatePhase.CLOSING, "closing"),
        (GateKind.ENTRY, GatePhase.CLOSED, "closed"),
    ]


@pytest.mark.asyncio
async def test_sequencer_resumes_from_open() -> None:
    seen: list[GatePhase] = []

    async def fake_sleep(_delay: float) -> None:
        return None

    sequencer = GateSequencer(GateTimings(), lambda _kind, t: seen.append(t.phase), sleep=fake_sleep)

    await sequencer.run(GateKind.EXIT, GatePhase.OPEN)

    assert seen == [GatePhase.CLOSING, GatePhase.CLOSED]
