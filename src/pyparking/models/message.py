"""Backbone wire unit."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from pyparking.models._base import utcnow


class TopicMessage(BaseModel):
    """One message on the backbone.

    Created per publish by :class:`pyparking.publisher.EventPublisher`,
    forwarded untouched by the bridge, and discarded after delivery.
    """

    model_config = ConfigDict(frozen=True)

    topic: str = Field(..., min_length=1)
    payload: bytes = b""
    timestamp: datetime = Field(default_factory=utcnow)

    @property
    def timestamp_ms(self) -> int:
        return int(self.timestamp.timestamp() * 1000)
