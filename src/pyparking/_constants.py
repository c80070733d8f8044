"""Internal constants shared across the library."""

from __future__ import annotations

# ------------------------------------------------------------------
# Backbone topics
# ------------------------------------------------------------------

SPACE_TOPIC_TEMPLATE = "parking/spaces/{space_id}/status"
GATE_TOPIC_TEMPLATE = "parking/gates/{kind}/status"
STATS_TOPIC = "parking/stats/summary"
HOURLY_TOPIC = "parking/analytics/hourly"

#: Topics the sensor firmware publishes raw line-protocol frames on.
SENSOR_TOPICS: tuple[str, ...] = (
    "esp32/data",
    "esp32/parking/occupancy",
    "parking/esp32/data",
)

#: Fixed subscription set of the transparent bridge.
BRIDGE_TOPIC_PATTERNS: tuple[str, ...] = (
    "esp32/data",
    "parking/spaces/+/status",
    "parking/gates/+/status",
    STATS_TOPIC,
    HOURLY_TOPIC,
)

# ------------------------------------------------------------------
# Line protocol
# ------------------------------------------------------------------

OCCUPANCY_PREFIX = "OCC:"
BARRIER_PREFIX = "BAR:"
FRAME_TERMINATOR = ";"
FIELD_SEPARATOR = ":"

#: Parsed value for tokens that are not integers; always out of range.
INVALID_TOKEN = -1

# ------------------------------------------------------------------
# Sensor physics  (ultrasonic distance, cm)
# ------------------------------------------------------------------

OCCUPIED_DISTANCE_CM: tuple[int, int] = (5, 15)
FREE_DISTANCE_CM: tuple[int, int] = (25, 40)
INITIAL_DISTANCE_CM = 32

HOURS_PER_DAY = 24


def space_topic(space_id: int) -> str:
    return SPACE_TOPIC_TEMPLATE.format(space_id=space_id)


def gate_topic(kind: str) -> str:
    return GATE_TOPIC_TEMPLATE.format(kind=kind)


def hour_label(hour: int) -> str:
    """Render an hour-of-day as the ``"HH:00"`` bucket label.

    Raises :class:`ValueError` if *hour* is outside ``0..23``.
    """
    if not 0 <= hour < HOURS_PER_DAY:
        raise ValueError(f"hour must be between 0 and {HOURS_PER_DAY - 1}, got {hour}")
    return f"{hour:02d}:00"
