"""Serialize state snapshots into topic-addressed backbone messages."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any, Protocol

from pyparking._constants import HOURLY_TOPIC, STATS_TOPIC, gate_topic, space_topic
from pyparking.models._base import utcnow
from pyparking.models.gate import GateState
from pyparking.models.message import TopicMessage
from pyparking.models.space import OccupancySpace
from pyparking.models.statistics import HourlyBucket, SystemStatistics

_logger = logging.getLogger(__name__)


class Backbone(Protocol):
    """Structural publish interface of the pub/sub backbone.

    Production code uses :class:`pyparking._mqtt.MqttBackbone`; tests pass
    a recorder.
    """

    def publish(self, message: TopicMessage) -> None: ...


def _encode(payload: Any) -> bytes:
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


class EventPublisher:
    """Build one :class:`TopicMessage` per entity and hand it to the backbone.

    Payloads are always full snapshots of the entity, never deltas.
    Publishing is fire-and-forget: no acknowledgement is awaited.
    """

    def __init__(self, backbone: Backbone, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._backbone = backbone
        self._clock = clock

    def _send(self, topic: str, payload: Any) -> TopicMessage:
        message = TopicMessage(topic=topic, payload=_encode(payload), timestamp=self._clock())
        self._backbone.publish(message)
        _logger.debug("Published topic=%s bytes=%d", topic, len(message.payload))
        return message

    def publish_space(self, space: OccupancySpace) -> TopicMessage:
        return self._send(space_topic(space.id), space.to_payload())

    def publish_gate(self, gate: GateState) -> TopicMessage:
        return self._send(gate_topic(gate.kind.value), gate.to_payload())

    def publish_stats(self, stats: SystemStatistics) -> TopicMessage:
        return self._send(STATS_TOPIC, stats.to_wire())

    def publish_hourly(self, buckets: Iterable[HourlyBucket]) -> TopicMessage:
        return self._send(HOURLY_TOPIC, [bucket.to_wire() for bucket in buckets])

    def publish_snapshot(
        self,
        *,
        spaces: Iterable[OccupancySpace],
        gates: Iterable[GateState],
        stats: SystemStatistics,
        buckets: Iterable[HourlyBucket],
    ) -> list[TopicMessage]:
        """Publish the current value of every entity, e.g. at startup."""
        messages = [self.publish_space(space) for space in spaces]
        messages.extend(self.publish_gate(gate) for gate in gates)
        messages.append(self.publish_stats(stats))
        messages.append(self.publish_hourly(buckets))
        return messages
