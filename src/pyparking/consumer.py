"""Resilient WebSocket consumer.

Connects to the bridge, folds every envelope into a :class:`ParkingView`,
and reconnects with bounded exponential backoff when the connection is
lost.  After ``max_attempts`` failed retries the consumer stops in
:attr:`ConnectionStatus.GAVE_UP` until :meth:`ResilientConsumer.reconnect`
is called.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import StrEnum
from typing import Any, Protocol

import aiohttp

from pyparking.config import ParkingConfig
from pyparking.exceptions import EnvelopeFormatError
from pyparking.ingestion.envelope import parse_envelope, parse_payload
from pyparking.view import ParkingView

_logger = logging.getLogger(__name__)


class ConnectionStatus(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    GAVE_UP = "gave_up"


class UpstreamSocket(Protocol):
    """The part of :class:`aiohttp.ClientWebSocketResponse` the consumer uses."""

    @property
    def closed(self) -> bool: ...

    def __aiter__(self) -> AsyncIterator[aiohttp.WSMessage]: ...

    async def close(self, *, code: int = ..., message: bytes = ...) -> bool: ...


Connector = Callable[[str], Awaitable[UpstreamSocket]]

_CONNECT_ERRORS = (aiohttp.ClientError, OSError, TimeoutError)


class ResilientConsumer:
    """Keep a :class:`ParkingView` in sync with the bridge.

    Usage::

        async with ResilientConsumer(config) as consumer:
            await consumer.wait_for_status(ConnectionStatus.CONNECTED)
            print(consumer.view.stats)

    Parameters
    ----------
    config : ParkingConfig
        Supplies ``websocket_url``, ``total_spaces`` and ``reconnect``.
    session : aiohttp.ClientSession or None
        Session used for ``ws_connect``; created and owned when omitted.
    connector : callable or None
        ``async (url) -> socket`` replacing ``session.ws_connect``.
    sleep : callable
        Awaitable sleep used for backoff and settle delays.
    on_update : callable or None
        Called with ``(topic, view)`` after a message was merged.
    on_status : callable or None
        Called with the new :class:`ConnectionStatus` on every transition.
    """

    def __init__(
        self,
        config: ParkingConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        connector: Connector | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_update: Callable[[str, ParkingView], None] | None = None,
        on_status: Callable[[ConnectionStatus], None] | None = None,
    ) -> None:
        self._config = config
        self._policy = config.reconnect
        self._session = session
        self._owns_session = session is None and connector is None
        self._connector = connector
        self._sleep = sleep
        self._on_update = on_update
        self._on_status = on_status
        self.view = ParkingView.initial(config.total_spaces)
        self._status = ConnectionStatus.DISCONNECTED
        self._attempts = 0
        self._socket: UpstreamSocket | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._retry_task: asyncio.Task[None] | None = None
        self._closing = False
        self._status_waiters: dict[ConnectionStatus, list[asyncio.Event]] = {}

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def attempts(self) -> int:
        """Automatic retries made since the last successful connect."""
        return self._attempts

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def _set_status(self, status: ConnectionStatus) -> None:
        if status == self._status:
            return
        _logger.debug("Consumer status %s -> %s", self._status, status)
        self._status = status
        for waiter in self._status_waiters.pop(status, []):
            waiter.set()
        if self._on_status is not None:
            try:
                self._on_status(status)
            except Exception:
                _logger.debug("Status callback failed", exc_info=True)

    async def wait_for_status(self, status: ConnectionStatus, timeout: float | None = None) -> None:
        """Block until the consumer enters *status*.

        Raises
        ------
        TimeoutError
            If *timeout* elapses first.
        """
        if self._status == status:
            return
        waiter = asyncio.Event()
        self._status_waiters.setdefault(status, []).append(waiter)
        try:
            await asyncio.wait_for(waiter.wait(), timeout)
        finally:
            pending = self._status_waiters.get(status)
            if pending is not None:
                self._status_waiters[status] = [cand for cand in pending if cand is not waiter]
                if not self._status_waiters[status]:
                    self._status_waiters.pop(status, None)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def handle_text(self, text: str | bytes) -> bool:
        """Merge one envelope frame into the view; returns whether it applied."""
        try:
            envelope = parse_envelope(text)
        except EnvelopeFormatError as exc:
            _logger.warning("Dropping malformed envelope: %s", exc)
            return False
        applied = self.view.apply(envelope.topic, parse_payload(envelope.message))
        if not applied:
            _logger.debug("Ignored message on topic=%s", envelope.topic)
            return False
        if self._on_update is not None:
            try:
                self._on_update(envelope.topic, self.view)
            except Exception:
                _logger.debug("Update callback failed topic=%s", envelope.topic, exc_info=True)
        return True

    async def _read(self, socket: UpstreamSocket) -> None:
        try:
            async for msg in socket:
                if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    try:
                        self.handle_text(msg.data)
                    except Exception:
                        # One bad frame never ends the read loop.
                        _logger.warning("Dropping frame that failed to merge", exc_info=True)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    _logger.warning("WebSocket error: %r", msg.data)
                    break
        except _CONNECT_ERRORS as exc:
            _logger.warning("WebSocket read failed: %r", exc)
        if self._socket is not socket:
            return
        self._socket = None
        _logger.info("WebSocket to %s closed", self._config.websocket_url)
        self._set_status(ConnectionStatus.DISCONNECTED)
        self._schedule_reconnect()

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    async def _open(self, url: str) -> UpstreamSocket:
        if self._connector is not None:
            return await self._connector(url)
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return await self._session.ws_connect(url)

    async def _connect(self) -> None:
        if self._closing:
            return
        url = self._config.websocket_url
        self._set_status(ConnectionStatus.CONNECTING)
        try:
            socket = await self._open(url)
        except _CONNECT_ERRORS as exc:
            _logger.warning("WebSocket connect to %s failed: %r", url, exc)
            self._set_status(ConnectionStatus.DISCONNECTED)
            self._schedule_reconnect()
            return

        if self._closing:
            await socket.close()
            return
        self._socket = socket
        self._attempts = 0
        _logger.info("WebSocket connected to %s", url)
        self._set_status(ConnectionStatus.CONNECTED)
        self._reader_task = asyncio.create_task(self._read(socket))

    def _schedule_reconnect(self) -> None:
        if self._closing:
            return
        if self._attempts >= self._policy.max_attempts:
            _logger.warning("Giving up on %s after %d attempts", self._config.websocket_url, self._attempts)
            self._set_status(ConnectionStatus.GAVE_UP)
            return
        delay = self._policy.delay_for(self._attempts)
        self._attempts += 1
        _logger.info("Reconnecting in %.1fs (attempt %d/%d)", delay, self._attempts, self._policy.max_attempts)
        self._retry_task = asyncio.create_task(self._retry(delay))

    async def _retry(self, delay: float) -> None:
        await self._sleep(delay)
        await self._connect()

    async def _cancel_retry(self) -> None:
        task = self._retry_task
        self._retry_task = None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _drop_socket(self) -> None:
        socket = self._socket
        self._socket = None
        reader = self._reader_task
        self._reader_task = None
        if socket is not None and not socket.closed:
            await socket.close()
        if reader is not None and not reader.done():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader

    async def start(self) -> None:
        """Open the first connection; failures fall into the backoff schedule."""
        self._closing = False
        await self._connect()

    async def reconnect(self) -> None:
        """Manual reconnect: reset the attempt budget and connect again.

        Also the only way out of :attr:`ConnectionStatus.GAVE_UP`.
        """
        self._closing = False
        self._attempts = 0
        await self._cancel_retry()
        await self._drop_socket()
        self._set_status(ConnectionStatus.DISCONNECTED)
        await self._sleep(self._policy.settle_delay)
        await self._connect()

    async def close(self) -> None:
        self._closing = True
        await self._cancel_retry()
        await self._drop_socket()
        self._set_status(ConnectionStatus.DISCONNECTED)
        session = self._session
        if self._owns_session and session is not None:
            self._session = None
            await session.close()

    async def __aenter__(self) -> ResilientConsumer:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()
