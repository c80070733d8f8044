"""Parking space occupancy model."""

from __future__ import annotations

from pydantic import Field

from pyparking._constants import INITIAL_DISTANCE_CM
from pyparking.models._base import ParkingBaseModel, WireTimestamp, utcnow


class OccupancySpace(ParkingBaseModel):
    """Current state of one monitored space.

    The ``id`` is carried in the topic (``parking/spaces/{id}/status``),
    so it is excluded from the published payload.

    Parameters
    ----------
    id : int
        Stable space number in ``1..N``.
    occupied : bool
        Whether a vehicle is present.
    distance : float
        Ultrasonic sensor reading in cm.
    sensor_name : str
        Sensor identifier (wire key ``sensor``).
    last_change_time : datetime
        Time of the last occupancy change (wire key ``timestamp``).
    battery_percent : float or None
        Sensor battery level, when the sensor reports one.
    change_detected : bool or None
        Set when the snapshot was published because of a change.
    previous_state : bool or None
        Occupancy before the change that produced this snapshot.
    """

    id: int = Field(..., ge=1)
    occupied: bool = False
    distance: float = INITIAL_DISTANCE_CM
    sensor_name: str = Field(default="", alias="sensor")
    last_change_time: WireTimestamp = Field(default_factory=utcnow, alias="timestamp")
    battery_percent: float | None = Field(default=None, alias="battery")
    change_detected: bool | None = Field(default=None, alias="change_detected")
    previous_state: bool | None = Field(default=None, alias="previous_state")

    @classmethod
    def placeholder(cls, space_id: int) -> OccupancySpace:
        """Initial record created at process start."""
        return cls(id=space_id, sensor_name=f"ESP32-SENSOR-{space_id}")

    def to_payload(self) -> dict[str, object]:
        return self.to_wire(exclude={"id"})
