"""Derived statistics models."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import Field, computed_field

from pyparking._constants import HOURS_PER_DAY, hour_label
from pyparking.models._base import ParkingBaseModel, WireTimestamp, utcnow


class HourlyResetPolicy(StrEnum):
    """What happens to hourly buckets when the calendar day changes."""

    NEVER = "never"
    DAILY = "daily"


class SystemStatistics(ParkingBaseModel):
    """Snapshot of the aggregate counters.

    ``available_spaces`` and ``occupancy_rate_percent`` are computed from
    ``occupied_spaces``/``total_spaces`` on every access and are never
    stored.
    """

    total_spaces: int = Field(..., ge=0)
    occupied_spaces: int = Field(default=0, ge=0)
    daily_entries: int = Field(default=0, ge=0)
    peak_occupancy: int = Field(default=0, ge=0)
    average_occupancy_percent: int = Field(default=0, alias="averageOccupancyToday")
    total_changes_today: int = 0
    last_entry_time: WireTimestamp = Field(default=None, alias="lastEntry")
    last_exit_time: WireTimestamp = Field(default=None, alias="lastExit")
    uptime_seconds: int = Field(default=0, alias="systemUptime")
    updated_at: WireTimestamp = Field(default_factory=utcnow, alias="timestamp")

    @computed_field(alias="availableSpaces")  # type: ignore[prop-decorator]
    @property
    def available_spaces(self) -> int:
        return self.total_spaces - self.occupied_spaces

    @computed_field(alias="occupancyRate")  # type: ignore[prop-decorator]
    @property
    def occupancy_rate_percent(self) -> int:
        if self.total_spaces == 0:
            return 0
        return round(self.occupied_spaces / self.total_spaces * 100)


class HourlyBucket(ParkingBaseModel):
    """Occupancy snapshot for one hour of the day."""

    hour: str = Field(..., pattern=r"^([01]\d|2[0-3]):00$")
    occupied: int = Field(default=0, ge=0)
    available: int = Field(default=0, ge=0)
    timestamp: WireTimestamp = None

    @classmethod
    def empty(cls, hour: int, total_spaces: int, at: datetime | None = None) -> HourlyBucket:
        return cls(hour=hour_label(hour), occupied=0, available=total_spaces, timestamp=at)


def empty_buckets(total_spaces: int, at: datetime | None = None) -> list[HourlyBucket]:
    """A fresh 24-entry bucket array."""
    return [HourlyBucket.empty(hour, total_spaces, at) for hour in range(HOURS_PER_DAY)]
