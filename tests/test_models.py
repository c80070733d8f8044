from __future__ import annotations

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from pyparking._constants import hour_label
from pyparking.models import GateKind, GatePhase, GateState, HourlyBucket, SystemStatistics, empty_buckets
from pyparking.models._base import parse_wire_timestamp


@pytest.mark.parametrize(
    ("phase", "angle"),
    [
        (GatePhase.CLOSED, 0),
        (GatePhase.OPENING, 45),
        (GatePhase.OPEN, 90),
        (GatePhase.CLOSING, 45),
    ],
)
def test_servo_angle_follows_phase(phase: GatePhase, angle: int) -> None:
    gate = GateState(kind=GateKind.ENTRY, phase=phase)

    assert gate.servo_angle_degrees == angle
    assert gate.to_payload()["servo_angle"] == angle
    assert gate.to_payload()["status"] == phase.value
    assert "kind" not in gate.to_payload()


def test_statistics_computed_fields_on_wire() -> None:
    stats = SystemStatistics(total_spaces=3, occupied_spaces=2)

    wire = stats.to_wire()
    assert wire["availableSpaces"] == 1
    assert wire["occupancyRate"] == 67
    assert wire["lastEntry"] is None
    assert "averageOccupancyToday" in wire
    assert "systemUptime" in wire


def test_statistics_rate_with_zero_spaces() -> None:
    assert SystemStatistics(total_spaces=0).occupancy_rate_percent == 0


def test_empty_buckets_cover_the_day() -> None:
    buckets = empty_buckets(5)

    assert [bucket.hour for bucket in buckets][:3] == ["00:00", "01:00", "02:00"]
    assert buckets[-1].hour == "23:00"
    assert all(bucket.available == 5 and bucket.occupied == 0 for bucket in buckets)


def test_bucket_rejects_bad_hour_label() -> None:
    with pytest.raises(ValidationError):
        HourlyBucket(hour="7:00")
    with pytest.raises(ValueError):
        hour_label(24)


@pytest.mark.parametrize(
    "value",
    [
        "2026-01-01T00:00:00Z",
        "2026-01-01T00:00:00",
        1767225600,
        1767225600000,
        datetime(2026, 1, 1, tzinfo=UTC),
    ],
)
def test_wire_timestamps_normalize_to_utc(value: object) -> None:
    assert parse_wire_timestamp(value) == datetime(2026, 1, 1, tzinfo=UTC)


def test_wire_timestamp_none_passes_through() -> None:
    assert parse_wire_timestamp(None) is None


@pytest.mark.parametrize("value", [{}, [1], 1e300, float("nan")])
def test_unusable_wire_timestamps_raise_value_error(value: object) -> None:
    with pytest.raises(ValueError):
        parse_wire_timestamp(value)


def test_gate_rejects_angle_out_of_step_with_phase() -> None:
    with pytest.raises(ValidationError):
        GateState.model_validate({"kind": "entry", "status": "open", "servo_angle": 45})
    with pytest.raises(ValidationError):
        GateState(kind=GateKind.EXIT, phase=GatePhase.CLOSED, servo_angle_degrees=90)

    gate = GateState.model_validate({"kind": "entry", "status": "closing", "servo_angle": 45})
    assert gate.servo_angle_degrees == 45
    assert GateState.model_validate({"kind": "entry", "status": "opening"}).servo_angle_degrees == 45
