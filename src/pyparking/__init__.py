"""pyparking - Async parking telemetry pipeline over MQTT and WebSocket."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyparking")
except PackageNotFoundError:
    __version__ = "0+local"
from pyparking.bridge import ConnectionRegistry, TransparentBridge
from pyparking.config import GateTimings, ParkingConfig, ReconnectPolicy
from pyparking.consumer import ConnectionStatus, ResilientConsumer
from pyparking.exceptions import (
    EnvelopeFormatError,
    ParkingConfigError,
    ParkingError,
    ParkingTransportError,
)
from pyparking.ingestion.envelope import StructuredPayload, TextPayload, build_envelope, parse_envelope, parse_payload
from pyparking.ingestion.line_protocol import decode_frame
from pyparking.models import (
    GateKind,
    GatePhase,
    GateState,
    HourlyBucket,
    HourlyResetPolicy,
    OccupancySpace,
    SystemStatistics,
    TopicMessage,
)
from pyparking.processor import TelemetryProcessor
from pyparking.publisher import EventPublisher
from pyparking.state.aggregator import StatisticsAggregator
from pyparking.state.store import ParkingStore
from pyparking.view import ParkingView

__all__ = [
    "__version__",
    "ConnectionRegistry",
    "ConnectionStatus",
    "EnvelopeFormatError",
    "EventPublisher",
    "GateKind",
    "GatePhase",
    "GateState",
    "GateTimings",
    "HourlyBucket",
    "HourlyResetPolicy",
    "OccupancySpace",
    "ParkingConfig",
    "ParkingConfigError",
    "ParkingError",
    "ParkingStore",
    "ParkingTransportError",
    "ParkingView",
    "ReconnectPolicy",
    "ResilientConsumer",
    "StatisticsAggregator",
    "StructuredPayload",
    "SystemStatistics",
    "TelemetryProcessor",
    "TextPayload",
    "TopicMessage",
    "TransparentBridge",
    "build_envelope",
    "decode_frame",
    "parse_envelope",
    "parse_payload",
]
