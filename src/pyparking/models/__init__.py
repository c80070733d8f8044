"""Data models for parking telemetry."""

from pyparking.models._base import ParkingBaseModel, WireTimestamp, parse_wire_timestamp
from pyparking.models.gate import BARRIER_IDS, SERVO_ANGLES, GateKind, GatePhase, GateState
from pyparking.models.message import TopicMessage
from pyparking.models.space import OccupancySpace
from pyparking.models.statistics import HourlyBucket, HourlyResetPolicy, SystemStatistics, empty_buckets

__all__ = [
    "BARRIER_IDS",
    "GateKind",
    "GatePhase",
    "GateState",
    "HourlyBucket",
    "HourlyResetPolicy",
    "OccupancySpace",
    "ParkingBaseModel",
    "SERVO_ANGLES",
    "SystemStatistics",
    "TopicMessage",
    "WireTimestamp",
    "empty_buckets",
    "parse_wire_timestamp",
]
