"""Transparent MQTT -> WebSocket bridge.

Every backbone message on a subscribed pattern is wrapped in a text
envelope (see :mod:`pyparking.ingestion.envelope`) and fanned out to every
live downstream WebSocket.  The bridge never interprets payloads, never
reorders or deduplicates, and never pushes back on the backbone.

Each connection owns a bounded outbox drained by its own writer task, so
messages reach every connection in arrival order while a slow connection
only ever delays itself.  A connection whose send fails, times out, or
whose outbox overflows is evicted; the remaining connections are
unaffected.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

from aiohttp import WSMsgType, web

from pyparking._mqtt import MqttBackbone, build_client_id
from pyparking.config import ParkingConfig
from pyparking.ingestion.envelope import build_envelope
from pyparking.models.message import TopicMessage

_logger = logging.getLogger(__name__)


class DownstreamSocket(Protocol):
    """The part of :class:`aiohttp.web.WebSocketResponse` the bridge uses."""

    @property
    def closed(self) -> bool: ...

    async def send_str(self, data: str, compress: int | None = None) -> None: ...

    async def close(self, *, code: int = ..., message: bytes = ...) -> bool: ...


@dataclass(frozen=True)
class _Outgoing:
    text: str
    delivered: asyncio.Future[bool]


@dataclass(eq=False)
class BridgeConnection:
    """Registry entry for one downstream WebSocket."""

    id: str
    socket: DownstreamSocket
    remote: str | None = None
    live: bool = True
    connected_at: float = field(default_factory=time.monotonic)
    last_activity: float = field(default_factory=time.monotonic)
    outbox: asyncio.Queue[_Outgoing] | None = field(default=None, repr=False)
    writer: asyncio.Task[None] | None = field(default=None, repr=False)

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    @property
    def is_open(self) -> bool:
        return self.live and not self.socket.closed

    def release(self) -> None:
        """Stop the writer and fail everything still queued."""
        writer = self.writer
        if writer is not None and not writer.done() and writer is not asyncio.current_task():
            writer.cancel()
        outbox = self.outbox
        while outbox is not None and not outbox.empty():
            item = outbox.get_nowait()
            if not item.delivered.done():
                item.delivered.set_result(False)


class ConnectionRegistry:
    """Set of downstream connections.

    Fan-out iterates over :meth:`snapshot`, a tuple copied at call time,
    so connects and disconnects landing mid-fan-out never disturb it.
    """

    def __init__(self) -> None:
        self._connections: dict[str, BridgeConnection] = {}
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._connections)

    def add(self, socket: DownstreamSocket, *, remote: str | None = None) -> BridgeConnection:
        connection = BridgeConnection(id=f"browser_{next(self._ids)}", socket=socket, remote=remote)
        self._connections[connection.id] = connection
        return connection

    def discard(self, connection: BridgeConnection) -> None:
        connection.live = False
        self._connections.pop(connection.id, None)
        connection.release()

    def snapshot(self) -> tuple[BridgeConnection, ...]:
        return tuple(self._connections.values())

    def live(self) -> list[BridgeConnection]:
        return [connection for connection in self.snapshot() if connection.is_open]

    def sweep(self) -> list[BridgeConnection]:
        """Drop entries that are no longer open; returns what was removed."""
        stale = [connection for connection in self.snapshot() if not connection.is_open]
        for connection in stale:
            self.discard(connection)
        return stale


class TransparentBridge:
    """Republish backbone topics to WebSocket clients.

    Usage::

        async with TransparentBridge(config):
            await asyncio.Event().wait()
    """

    def __init__(
        self,
        config: ParkingConfig,
        *,
        registry: ConnectionRegistry | None = None,
        backbone: MqttBackbone | None = None,
    ) -> None:
        self._config = config
        self.registry = registry or ConnectionRegistry()
        self._backbone = backbone
        self._runner: web.AppRunner | None = None
        self._tasks: list[asyncio.Task[None]] = []

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def _send(self, connection: BridgeConnection, text: str) -> bool:
        try:
            await asyncio.wait_for(connection.socket.send_str(text), self._config.bridge_send_timeout)
        except Exception as exc:
            _logger.debug("Evicting %s after send failure: %r", connection.id, exc)
            self.registry.discard(connection)
            return False
        return True

    async def _write(self, connection: BridgeConnection, outbox: asyncio.Queue[_Outgoing]) -> None:
        try:
            while connection.is_open:
                item = await outbox.get()
                ok = False
                try:
                    ok = await self._send(connection, item.text)
                finally:
                    if not item.delivered.done():
                        item.delivered.set_result(ok)
                if not ok:
                    return
        finally:
            self.registry.discard(connection)

    def _dispatch(self, message: TopicMessage) -> list[asyncio.Future[bool]]:
        """Queue *message* on every live connection without waiting for delivery."""
        text = build_envelope(message.topic, message.payload, message.timestamp_ms)
        loop = asyncio.get_running_loop()
        pending: list[asyncio.Future[bool]] = []
        for connection in self.registry.snapshot():
            if not connection.is_open:
                self.registry.discard(connection)
                continue
            if connection.outbox is None:
                connection.outbox = asyncio.Queue(maxsize=self._config.bridge_outbox_size)
                connection.writer = asyncio.create_task(self._write(connection, connection.outbox))
            delivered: asyncio.Future[bool] = loop.create_future()
            try:
                connection.outbox.put_nowait(_Outgoing(text=text, delivered=delivered))
            except asyncio.QueueFull:
                _logger.debug("Evicting %s, outbox full", connection.id)
                self.registry.discard(connection)
                continue
            pending.append(delivered)
        return pending

    async def forward(self, message: TopicMessage) -> int:
        """Send *message* to every live connection; returns how many accepted it.

        Waits for this message only.  Never raises because of a downstream
        failure.
        """
        pending = self._dispatch(message)
        if not pending:
            return 0
        results = await asyncio.gather(*pending)
        sent = sum(1 for ok in results if ok)
        _logger.debug('"%s" -> %d browser(s)', message.topic, sent)
        return sent

    def enqueue(self, message: TopicMessage) -> None:
        """Backbone callback; runs on the event loop thread in arrival order."""
        try:
            self._dispatch(message)
        except Exception:
            _logger.warning("Dispatch of %s failed", message.topic, exc_info=True)

    async def _sweep_periodically(self) -> None:
        while True:
            await asyncio.sleep(self._config.bridge_sweep_interval)
            removed = self.registry.sweep()
            backbone = self._backbone
            _logger.debug(
                "%d browser(s) | swept %d | MQTT %s",
                len(self.registry),
                len(removed),
                "up" if backbone is not None and backbone.is_connected else "down",
            )

    # ------------------------------------------------------------------
    # WebSocket endpoint
    # ------------------------------------------------------------------

    async def websocket_handler(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        connection = self.registry.add(ws, remote=request.remote)
        _logger.info("Connection %s from %s (%d total)", connection.id, request.remote, len(self.registry))
        try:
            async for msg in ws:
                # Inbound traffic is opaque; it only proves the client is alive.
                connection.touch()
                if msg.type == WSMsgType.ERROR:
                    _logger.debug("Connection %s error: %r", connection.id, ws.exception())
                    break
        finally:
            self.registry.discard(connection)
            _logger.info("Connection %s closed (%d remaining)", connection.id, len(self.registry))
        return ws

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/", self.websocket_handler)
        return app

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> TransparentBridge:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    async def start(self) -> None:
        """Listen for WebSocket clients and subscribe to the backbone.

        Everything started so far is torn down again if a later step
        fails, e.g. when the broker is unreachable.
        """
        loop = asyncio.get_running_loop()
        try:
            runner = web.AppRunner(self.make_app())
            self._runner = runner
            await runner.setup()
            site = web.TCPSite(runner, self._config.bridge_host, self._config.bridge_port)
            await site.start()
            _logger.info("Bridge listening on %s:%d", self._config.bridge_host, self._config.bridge_port)

            if self._backbone is None:
                self._backbone = MqttBackbone(
                    loop=loop,
                    on_message=self.enqueue,
                    client_id=build_client_id("bridge"),
                    keepalive=self._config.mqtt_keepalive,
                )
            await loop.run_in_executor(
                None,
                self._backbone.start,
                self._config.broker_host,
                self._config.broker_port,
                self._config.bridge_topics,
            )
            self._tasks = [asyncio.create_task(self._sweep_periodically())]
        except BaseException:
            await self.stop()
            raise

    async def stop(self) -> None:
        tasks = self._tasks
        self._tasks = []
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

        backbone = self._backbone
        if backbone is not None:
            await asyncio.get_running_loop().run_in_executor(None, backbone.stop)

        for connection in self.registry.snapshot():
            try:
                await connection.socket.close(code=1000, message=b"Server shutdown")
            except Exception:
                _logger.debug("Close of %s failed", connection.id, exc_info=True)
            self.registry.discard(connection)

        runner = self._runner
        self._runner = None
        if runner is not None:
            await runner.cleanup()
