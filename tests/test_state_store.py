from __future__ import annotations

import random
from datetime import UTC, datetime, timedelta

from pyparking.ingestion.line_protocol import decode_frame
from pyparking.models.gate import GateKind, GatePhase
from pyparking.models.statistics import HourlyResetPolicy
from pyparking.state.aggregator import StatisticsAggregator
from pyparking.state.store import ParkingStore


class _Clock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


def _dt(hour: int = 9, day: int = 1) -> datetime:
    return datetime(2026, 1, day, hour, 0, tzinfo=UTC)


def _apply(store: ParkingStore, raw: str):  # type: ignore[no-untyped-def]
    frame = decode_frame(raw, total_spaces=store.total_spaces)
    return store.apply_occupancy_events(frame.assignments)  # type: ignore[union-attr]


def test_initial_records_are_placeholders() -> None:
    store = ParkingStore(3, clock=_Clock(_dt()))

    assert [space.id for space in store.spaces()] == [1, 2, 3]
    assert all(not space.occupied and space.distance == 32 for space in store.spaces())
    assert store.space(2).sensor_name == "ESP32-SENSOR-2"
    assert [gate.phase for gate in store.gates()] == [GatePhase.CLOSED, GatePhase.CLOSED]


def test_occupancy_frame_yields_one_change_and_statistics() -> None:
    clock = _Clock(_dt())
    store = ParkingStore(3, clock=clock, rng=random.Random(7))
    aggregator = StatisticsAggregator(store, clock=clock)

    clock.advance(seconds=12)
    changes = _apply(store, "OCC:1:1:2:0:3:0;")
    aggregator.record_changes(changes)
    stats = aggregator.snapshot()

    assert [(c.space_id, c.previous, c.current) for c in changes] == [(1, False, True)]
    assert stats.occupied_spaces == 1
    assert stats.available_spaces == 2
    assert stats.occupancy_rate_percent == 33
    assert stats.daily_entries == 1
    assert stats.peak_occupancy == 1
    assert stats.last_entry_time == clock.now
    assert stats.last_exit_time is None
    assert stats.uptime_seconds == 12

    space = store.space(1)
    assert space.occupied is True
    assert 5 <= space.distance < 15
    assert space.last_change_time == clock.now
    assert space.previous_state is False


def test_reapplying_frame_is_idempotent() -> None:
    clock = _Clock(_dt())
    store = ParkingStore(3, clock=clock)
    aggregator = StatisticsAggregator(store, clock=clock)

    aggregator.record_changes(_apply(store, "OCC:1:1:2:1;"))
    before = aggregator.snapshot()
    second = _apply(store, "OCC:1:1:2:1;")
    aggregator.record_changes(second)
    after = aggregator.snapshot()

    assert second == []
    assert after.daily_entries == before.daily_entries == 2
    assert after.total_changes_today == before.total_changes_today == 1


def test_exit_updates_last_exit_and_keeps_entries() -> None:
    clock = _Clock(_dt())
    store = ParkingStore(3, clock=clock)
    aggregator = StatisticsAggregator(store, clock=clock)

    aggregator.record_changes(_apply(store, "OCC:1:1;"))
    clock.advance(minutes=5)
    aggregator.record_changes(_apply(store, "OCC:1:0;"))
    stats = aggregator.snapshot()

    assert stats.daily_entries == 1
    assert stats.occupied_spaces == 0
    assert stats.peak_occupancy == 1
    assert stats.last_exit_time == clock.now
    assert 25 <= store.space(1).distance < 40


def test_invariants_hold_over_random_frames() -> None:
    clock = _Clock(_dt())
    rng = random.Random(1234)
    store = ParkingStore(5, clock=clock, rng=rng)
    aggregator = StatisticsAggregator(store, clock=clock)

    entries = 0
    peak = 0
    for _ in range(200):
        pairs = ":".join(f"{rng.randint(0, 6)}:{rng.randint(0, 1)}" for _ in range(rng.randint(0, 4)))
        aggregator.record_changes(_apply(store, f"OCC:{pairs};"))
        stats = aggregator.snapshot()

        assert stats.occupied_spaces + stats.available_spaces == stats.total_spaces
        assert stats.daily_entries >= entries
        assert stats.peak_occupancy >= peak
        assert stats.peak_occupancy >= stats.occupied_spaces
        entries = stats.daily_entries
        peak = stats.peak_occupancy


def test_out_of_range_frame_changes_nothing() -> None:
    store = ParkingStore(3, clock=_Clock(_dt()))
    before = store.spaces()

    assert _apply(store, "OCC:0:1:4:1:99:1;") == []
    assert store.spaces() == before


def test_duplicate_ids_last_write_wins() -> None:
    store = ParkingStore(3, clock=_Clock(_dt()))

    changes = _apply(store, "OCC:1:1:1:0;")

    assert store.space(1).occupied is False
    assert [(c.previous, c.current) for c in changes] == [(False, True), (True, False)]


def test_barrier_frame_sets_phase_and_angle() -> None:
    store = ParkingStore(3, clock=_Clock(_dt()))
    frame = decode_frame("BAR:1:1:2:0;", total_spaces=3)

    changes = store.apply_barrier_events(frame.assignments)  # type: ignore[union-attr]

    entry = store.gate(GateKind.ENTRY)
    exit_gate = store.gate(GateKind.EXIT)
    assert entry.phase == GatePhase.OPEN
    assert entry.servo_angle_degrees == 90
    assert entry.action == "opening"
    assert exit_gate.phase == GatePhase.CLOSED
    assert exit_gate.servo_angle_degrees == 0
    assert [c.kind for c in changes] == [GateKind.ENTRY]

    assert store.apply_barrier_events(frame.assignments) == []  # type: ignore[union-attr]


def test_sample_occupancy_running_average() -> None:
    store = ParkingStore(4, clock=_Clock(_dt()))
    aggregator = StatisticsAggregator(store)

    assert aggregator.sample_occupancy() == 0
    _apply(store, "OCC:1:1:2:1;")
    assert aggregator.sample_occupancy() == 25
    _apply(store, "OCC:3:1:4:1;")
    # (0 + 2 + 4) / 3 samples / 4 spaces
    assert aggregator.sample_occupancy() == 50
    assert aggregator.snapshot().average_occupancy_percent == 50


def test_hourly_update_touches_only_current_hour() -> None:
    clock = _Clock(_dt(hour=14))
    store = ParkingStore(3, clock=clock)
    aggregator = StatisticsAggregator(store, clock=clock)
    before = aggregator.hourly_buckets()

    _apply(store, "OCC:1:1:2:1;")
    buckets = aggregator.update_hourly()

    assert len(buckets) == 24
    assert buckets[14].hour == "14:00"
    assert (buckets[14].occupied, buckets[14].available) == (2, 1)
    for hour in range(24):
        if hour != 14:
            assert buckets[hour] == before[hour]

    assert aggregator.update_hourly() == buckets


def test_hourly_buckets_survive_day_change_by_default() -> None:
    clock = _Clock(_dt(hour=10))
    store = ParkingStore(3, clock=clock)
    aggregator = StatisticsAggregator(store, clock=clock)
    _apply(store, "OCC:1:1;")
    aggregator.update_hourly()

    clock.now = _dt(hour=11, day=2)
    buckets = aggregator.update_hourly()

    assert buckets[10].occupied == 1
    assert buckets[11].occupied == 1


def test_daily_reset_policy_clears_buckets_on_new_day() -> None:
    clock = _Clock(_dt(hour=10))
    store = ParkingStore(3, clock=clock)
    aggregator = StatisticsAggregator(store, clock=clock, hourly_reset=HourlyResetPolicy.DAILY)
    _apply(store, "OCC:1:1;")
    aggregator.update_hourly()

    clock.now = _dt(hour=11, day=2)
    buckets = aggregator.update_hourly()

    assert buckets[10].occupied == 0
    assert buckets[10].available == 3
    assert buckets[11].occupied == 1
