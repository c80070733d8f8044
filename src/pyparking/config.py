"""Runtime configuration for pyparking."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from typing import Any

from pyparking._constants import BRIDGE_TOPIC_PATTERNS, SENSOR_TOPICS
from pyparking.exceptions import ParkingConfigError
from pyparking.models.statistics import HourlyResetPolicy


def _env_int(env: Mapping[str, str], key: str) -> int | None:
    value = env.get(key)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise ParkingConfigError(f"{key} must be an integer, got {value!r}") from exc


def _env_float(env: Mapping[str, str], key: str) -> float | None:
    value = env.get(key)
    if value is None:
        return None
    try:
        return float(value)
    except ValueError as exc:
        raise ParkingConfigError(f"{key} must be a number, got {value!r}") from exc


def _env_topics(value: str | None) -> tuple[str, ...] | None:
    if value is None:
        return None
    topics = tuple(part.strip() for part in value.split(",") if part.strip())
    return topics or None


@dataclasses.dataclass(frozen=True)
class GateTimings:
    """Delays of the simulated four-phase barrier cycle, in seconds."""

    opening_seconds: float = 2.0
    hold_seconds: float = 4.0
    closing_seconds: float = 2.0


@dataclasses.dataclass(frozen=True)
class ReconnectPolicy:
    """Bounded exponential backoff used by the resilient consumer.

    Parameters
    ----------
    base_delay : float
        Delay before the first automatic retry, in seconds.
    max_delay : float
        Upper bound for any single retry delay, in seconds.
    max_attempts : int
        Automatic retries allowed before the consumer gives up.
    settle_delay : float
        Pause between tearing down and reopening on a manual reconnect.
    """

    base_delay: float = 1.0
    max_delay: float = 30.0
    max_attempts: int = 10
    settle_delay: float = 1.0

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number *attempt* (zero-based)."""
        return min(self.base_delay * (2**attempt), self.max_delay)

    def delays(self) -> list[float]:
        """The full schedule of automatic retry delays."""
        return [self.delay_for(attempt) for attempt in range(self.max_attempts)]


@dataclasses.dataclass(frozen=True)
class ParkingConfig:
    """Library configuration.

    Parameters
    ----------
    broker_host : str
        MQTT backbone hostname.
    broker_port : int
        MQTT backbone port.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    total_spaces : int
        Number of monitored spaces; ids are ``1..total_spaces``.
    sensor_topics : tuple of str
        Topics carrying raw line-protocol frames from the sensor board.
    bridge_host : str
        Interface the WebSocket bridge listens on.
    bridge_port : int
        Port the WebSocket bridge listens on.
    bridge_topics : tuple of str
        Topic patterns the bridge subscribes to at startup.
    bridge_send_timeout : float
        Upper bound for a single downstream send before the connection
        is evicted.
    bridge_sweep_interval : float
        Seconds between liveness sweeps of the connection registry.
    bridge_outbox_size : int
        Messages a downstream connection may have queued before it is
        treated as stalled and evicted.
    stats_interval : float
        Statistics publish tick.
    hourly_interval : float
        Hourly bucket refresh tick.
    sample_interval : float
        Occupancy sampling tick used for the running average.
    hourly_reset : HourlyResetPolicy
        Whether hourly buckets are cleared when the calendar day changes.
    websocket_url : str
        Bridge address used by the resilient consumer.
    gate_timings : GateTimings
        Delays of the simulated barrier cycle.
    reconnect : ReconnectPolicy
        Consumer backoff policy.
    """

    broker_host: str = "localhost"
    broker_port: int = 1883
    mqtt_keepalive: int = 60
    total_spaces: int = 3
    sensor_topics: tuple[str, ...] = SENSOR_TOPICS
    bridge_host: str = "0.0.0.0"
    bridge_port: int = 8080
    bridge_topics: tuple[str, ...] = BRIDGE_TOPIC_PATTERNS
    bridge_send_timeout: float = 5.0
    bridge_sweep_interval: float = 30.0
    bridge_outbox_size: int = 256
    stats_interval: float = 5.0
    hourly_interval: float = 30.0
    sample_interval: float = 60.0
    hourly_reset: HourlyResetPolicy = HourlyResetPolicy.NEVER
    websocket_url: str = "ws://localhost:8080"
    gate_timings: GateTimings = dataclasses.field(default_factory=GateTimings)
    reconnect: ReconnectPolicy = dataclasses.field(default_factory=ReconnectPolicy)

    def __post_init__(self) -> None:
        if self.total_spaces < 1:
            raise ParkingConfigError(f"total_spaces must be at least 1, got {self.total_spaces}")
        if self.reconnect.max_attempts < 0:
            raise ParkingConfigError("reconnect.max_attempts must not be negative")
        if self.bridge_outbox_size < 1:
            raise ParkingConfigError(f"bridge_outbox_size must be at least 1, got {self.bridge_outbox_size}")

    @classmethod
    def from_env(cls, **overrides: Any) -> ParkingConfig:
        """Create configuration from ``PARKING_*`` environment variables.

        Explicit keyword arguments override environment values.

        Raises
        ------
        ParkingConfigError
            If a numeric variable cannot be parsed or an enum value is unknown.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        host = env.get("PARKING_BROKER_HOST")
        if host is not None:
            config_kwargs["broker_host"] = host
        bridge_host = env.get("PARKING_BRIDGE_HOST")
        if bridge_host is not None:
            config_kwargs["bridge_host"] = bridge_host
        url = env.get("PARKING_WEBSOCKET_URL")
        if url is not None:
            config_kwargs["websocket_url"] = url

        _ENV_INT_MAP = {
            "PARKING_BROKER_PORT": "broker_port",
            "PARKING_MQTT_KEEPALIVE": "mqtt_keepalive",
            "PARKING_TOTAL_SPACES": "total_spaces",
            "PARKING_BRIDGE_PORT": "bridge_port",
            "PARKING_BRIDGE_OUTBOX_SIZE": "bridge_outbox_size",
        }
        for env_key, field_name in _ENV_INT_MAP.items():
            int_value = _env_int(env, env_key)
            if int_value is not None:
                config_kwargs[field_name] = int_value

        _ENV_FLOAT_MAP = {
            "PARKING_BRIDGE_SEND_TIMEOUT": "bridge_send_timeout",
            "PARKING_BRIDGE_SWEEP_INTERVAL": "bridge_sweep_interval",
            "PARKING_STATS_INTERVAL": "stats_interval",
            "PARKING_HOURLY_INTERVAL": "hourly_interval",
            "PARKING_SAMPLE_INTERVAL": "sample_interval",
        }
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            float_value = _env_float(env, env_key)
            if float_value is not None:
                config_kwargs[field_name] = float_value

        sensor_topics = _env_topics(env.get("PARKING_SENSOR_TOPICS"))
        if sensor_topics is not None:
            config_kwargs["sensor_topics"] = sensor_topics
        bridge_topics = _env_topics(env.get("PARKING_BRIDGE_TOPICS"))
        if bridge_topics is not None:
            config_kwargs["bridge_topics"] = bridge_topics

        reset_env = env.get("PARKING_HOURLY_RESET")
        if reset_env is not None:
            try:
                config_kwargs["hourly_reset"] = HourlyResetPolicy(reset_env.strip().lower())
            except ValueError as exc:
                raise ParkingConfigError(f"PARKING_HOURLY_RESET has unknown value {reset_env!r}") from exc

        # Nested policies accept either an instance or a dict of overrides.
        reconnect_kwargs: dict[str, Any] = {}
        for env_key, field_name in {
            "PARKING_RECONNECT_BASE_DELAY": "base_delay",
            "PARKING_RECONNECT_MAX_DELAY": "max_delay",
            "PARKING_RECONNECT_SETTLE_DELAY": "settle_delay",
        }.items():
            float_value = _env_float(env, env_key)
            if float_value is not None:
                reconnect_kwargs[field_name] = float_value
        attempts = _env_int(env, "PARKING_RECONNECT_MAX_ATTEMPTS")
        if attempts is not None:
            reconnect_kwargs["max_attempts"] = attempts

        reconnect_overrides = overrides.pop("reconnect", None)
        if isinstance(reconnect_overrides, dict):
            reconnect_kwargs.update(reconnect_overrides)
        elif isinstance(reconnect_overrides, ReconnectPolicy):
            reconnect_kwargs = dataclasses.asdict(reconnect_overrides)
        if reconnect_kwargs:
            config_kwargs["reconnect"] = ReconnectPolicy(**reconnect_kwargs)

        timing_kwargs: dict[str, Any] = {}
        for env_key, field_name in {
            "PARKING_GATE_OPENING_SECONDS": "opening_seconds",
            "PARKING_GATE_HOLD_SECONDS": "hold_seconds",
            "PARKING_GATE_CLOSING_SECONDS": "closing_seconds",
        }.items():
            float_value = _env_float(env, env_key)
            if float_value is not None:
                timing_kwargs[field_name] = float_value

        timing_overrides = overrides.pop("gate_timings", None)
        if isinstance(timing_overrides, dict):
            timing_kwargs.update(timing_overrides)
        elif isinstance(timing_overrides, GateTimings):
            timing_kwargs = dataclasses.asdict(timing_overrides)
        if timing_kwargs:
            config_kwargs["gate_timings"] = GateTimings(**timing_kwargs)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
