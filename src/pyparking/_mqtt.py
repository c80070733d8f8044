"""Internal MQTT backbone runtime."""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import Callable, Iterable
from typing import Any, cast

import paho.mqtt.client as mqtt

from pyparking.exceptions import ParkingTransportError
from pyparking.models.message import TopicMessage


def build_client_id(prefix: str) -> str:
    return f"{prefix}_{secrets.token_hex(4)}"


class MqttBackbone:
    """Threaded paho-mqtt runtime that emits messages onto an asyncio loop.

    Subscriptions are fixed at :meth:`start` and re-issued on every
    (re)connect.  :meth:`publish` is safe to call from the loop thread;
    paho queues the packet for its network thread.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        on_message: Callable[[TopicMessage], None] | None = None,
        client_id: str | None = None,
        keepalive: int = 60,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._on_message = on_message
        self._client_id = client_id or build_client_id("pyparking")
        self._keepalive = keepalive
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._connected = False
        self._subscriptions: tuple[str, ...] = ()

    @property
    def is_running(self) -> bool:
        """Whether the network loop is running."""
        return self._running

    @property
    def is_connected(self) -> bool:
        """Whether the broker has acknowledged the current connection."""
        return self._connected

    def start(self, host: str, port: int, subscriptions: Iterable[str] = ()) -> None:
        """Connect, subscribe to *subscriptions*, and start the network loop.

        Raises
        ------
        ParkingTransportError
            If the initial TCP connection to the broker fails.
        """
        self.stop()
        self._subscriptions = tuple(subscriptions)
        self._logger.debug(
            "MQTT backbone start requested host=%s port=%s topics=%s client_id=%s",
            host,
            port,
            self._subscriptions,
            self._client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=self._client_id,
            protocol=mqtt.MQTTv311,
        )
        client.enable_logger(self._logger)

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._connected = True
            self._logger.debug("MQTT connected reason=%s", reason_code)
            for topic in self._subscriptions:
                self._logger.debug("MQTT subscribing topic=%s", topic)
                c.subscribe(topic, qos=0)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            callback = self._on_message
            if callback is None:
                return
            try:
                message = TopicMessage(topic=msg.topic, payload=bytes(msg.payload))
                self._loop.call_soon_threadsafe(callback, message)
            except Exception:
                self._logger.debug("MQTT message dispatch failure topic=%s", msg.topic, exc_info=True)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            self._connected = False
            if self._running:
                self._logger.warning("MQTT disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        try:
            client.connect(host, port, keepalive=self._keepalive)
        except OSError as exc:
            raise ParkingTransportError(f"MQTT connect to {host}:{port} failed: {exc}", host=host, port=port) from exc
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def publish(self, message: TopicMessage) -> None:
        """Queue *message* for delivery at QoS 0; dropped when not running."""
        client = self._client
        if client is None:
            self._logger.debug("MQTT publish dropped, runtime stopped topic=%s", message.topic)
            return
        info = client.publish(message.topic, message.payload, qos=0)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            self._logger.debug("MQTT publish not queued topic=%s rc=%s", message.topic, info.rc)

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        self._connected = False

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")
