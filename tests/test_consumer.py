from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from types import SimpleNamespace

import aiohttp
import pytest

from pyparking.config import ParkingConfig
from pyparking.consumer import ConnectionStatus, ResilientConsumer
from pyparking.models.gate import GateKind


class _FakeSocket:
    def __init__(self) -> None:
        self.closed = False
        self._inbox: asyncio.Queue[object] = asyncio.Queue()

    def push_text(self, text: str) -> None:
        self._inbox.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=text))

    def drop(self) -> None:
        self._inbox.put_nowait(None)

    async def close(self, *, code: int = 1000, message: bytes = b"") -> bool:
        self.closed = True
        self._inbox.put_nowait(None)
        return True

    def __aiter__(self) -> AsyncIterator[object]:
        return self._messages()

    async def _messages(self) -> AsyncIterator[object]:
        while True:
            msg = await self._inbox.get()
            if msg is None:
                self.closed = True
                return
            yield msg


class _Connector:
    def __init__(self, *, failures: int) -> None:
        self.failures = failures
        self.calls = 0
        self.sockets: list[_FakeSocket] = []

    async def __call__(self, url: str) -> _FakeSocket:
        self.calls += 1
        if self.calls <= self.failures:
            raise aiohttp.ClientConnectionError(f"refused {url}")
        socket = _FakeSocket()
        self.sockets.append(socket)
        return socket


class _Sleeper:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


def _envelope(topic: str, payload: object) -> str:
    return json.dumps({"topic": topic, "message": json.dumps(payload), "timestamp": 0})


@pytest.mark.asyncio
async def test_backoff_schedule_then_gives_up() -> None:
    connector = _Connector(failures=100)
    sleeper = _Sleeper()
    statuses: list[ConnectionStatus] = []
    consumer = ResilientConsumer(ParkingConfig(), connector=connector, sleep=sleeper, on_status=statuses.append)

    await consumer.start()
    await consumer.wait_for_status(ConnectionStatus.GAVE_UP, timeout=2.0)
    await asyncio.sleep(0)

    assert sleeper.delays == [1, 2, 4, 8, 16, 30, 30, 30, 30, 30]
    assert connector.calls == 11
    assert consumer.status == ConnectionStatus.GAVE_UP
    assert statuses[-1] == ConnectionStatus.GAVE_UP
    await consumer.close()


@pytest.mark.asyncio
async def test_manual_reconnect_leaves_gave_up_and_resets_attempts() -> None:
    connector = _Connector(failures=3)
    sleeper = _Sleeper()
    config = ParkingConfig.from_env(reconnect={"max_attempts": 2})
    consumer = ResilientConsumer(config, connector=connector, sleep=sleeper)

    await consumer.start()
    await consumer.wait_for_status(ConnectionStatus.GAVE_UP, timeout=2.0)
    assert sleeper.delays == [1, 2]

    await consumer.reconnect()

    assert sleeper.delays == [1, 2, 1.0]
    assert consumer.status == ConnectionStatus.CONNECTED
    assert consumer.attempts == 0
    assert connector.calls == 4
    await consumer.close()


@pytest.mark.asyncio
async def test_messages_are_merged_into_view() -> None:
    connector = _Connector(failures=0)
    updates: list[str] = []
    consumer = ResilientConsumer(
        ParkingConfig(),
        connector=connector,
        sleep=_Sleeper(),
        on_update=lambda topic, _view: updates.append(topic),
    )

    async with consumer:
        socket = connector.sockets[0]
        socket.push_text(_envelope("parking/spaces/1/status", {"occupied": True, "distance": 8}))
        socket.push_text("garbage that is not an envelope")
        socket.push_text(_envelope("parking/unknown", {"x": 1}))
        socket.push_text(_envelope("parking/gates/entry/status", {"status": "open", "servo_angle": 90}))
        for _ in range(20):
            if len(updates) == 2:
                break
            await asyncio.sleep(0)

        assert updates == ["parking/spaces/1/status", "parking/gates/entry/status"]
        assert consumer.view.spaces[1].occupied is True
        assert consumer.view.spaces[1].previous_state is False
        assert consumer.view.gates[GateKind.ENTRY].servo_angle_degrees == 90

    assert consumer.status == ConnectionStatus.DISCONNECTED


@pytest.mark.asyncio
async def test_lost_connection_reconnects_after_backoff() -> None:
    connector = _Connector(failures=0)
    sleeper = _Sleeper()
    consumer = ResilientConsumer(ParkingConfig(), connector=connector, sleep=sleeper)

    await consumer.start()
    connector.sockets[0].drop()
    for _ in range(20):
        if connector.calls == 2 and consumer.status == ConnectionStatus.CONNECTED:
            break
        await asyncio.sleep(0)

    assert sleeper.delays == [1]
    assert consumer.status == ConnectionStatus.CONNECTED
    assert consumer.attempts == 0
    await consumer.close()


def test_handle_text_reports_whether_applied() -> None:
    consumer = ResilientConsumer(ParkingConfig(), connector=_Connector(failures=0))

    assert consumer.handle_text(_envelope("parking/stats/summary", {"totalSpaces": 3, "occupiedSpaces": 3}))
    assert not consumer.handle_text("{")
    assert not consumer.handle_text(json.dumps({"topic": "esp32/data", "message": "OCC:1:1;"}))
    assert consumer.view.stats is not None
    assert consumer.view.stats.occupancy_rate_percent == 100


@pytest.mark.asyncio
async def test_bad_timestamp_frame_keeps_reader_alive() -> None:
    connector = _Connector(failures=0)
    sleeper = _Sleeper()
    updates: list[str] = []
    consumer = ResilientConsumer(
        ParkingConfig(),
        connector=connector,
        sleep=sleeper,
        on_update=lambda topic, _view: updates.append(topic),
    )

    await consumer.start()
    socket = connector.sockets[0]
    socket.push_text(_envelope("parking/spaces/1/status", {"occupied": True, "timestamp": {}}))
    socket.push_text(_envelope("parking/spaces/2/status", {"occupied": True, "timestamp": 1e300}))
    socket.push_text(_envelope("parking/spaces/3/status", {"occupied": True, "distance": 6}))
    for _ in range(20):
        if updates:
            break
        await asyncio.sleep(0)

    assert updates == ["parking/spaces/3/status"]
    assert consumer.view.spaces[1].occupied is False
    assert consumer.status == ConnectionStatus.CONNECTED

    socket.drop()
    for _ in range(20):
        if connector.calls == 2 and consumer.status == ConnectionStatus.CONNECTED:
            break
        await asyncio.sleep(0)

    assert sleeper.delays == [1]
    assert connector.calls == 2
    await consumer.close()


@pytest.mark.asyncio
async def test_frame_that_raises_is_dropped(monkeypatch: pytest.MonkeyPatch) -> None:
    connector = _Connector(failures=0)
    consumer = ResilientConsumer(ParkingConfig(), connector=connector, sleep=_Sleeper())
    real_apply = consumer.view.apply
    calls: list[str] = []

    def flaky_apply(topic: str, payload: object, **kwargs: object) -> bool:
        calls.append(topic)
        if len(calls) == 1:
            raise OverflowError("date value out of range")
        return real_apply(topic, payload, **kwargs)  # type: ignore[arg-type]

    monkeypatch.setattr(consumer.view, "apply", flaky_apply)

    await consumer.start()
    socket = connector.sockets[0]
    socket.push_text(_envelope("parking/spaces/1/status", {"occupied": True}))
    socket.push_text(_envelope("parking/spaces/2/status", {"occupied": True}))
    for _ in range(20):
        if len(calls) == 2:
            break
        await asyncio.sleep(0)

    assert consumer.view.spaces[2].occupied is True
    assert consumer.status == ConnectionStatus.CONNECTED
    assert connector.calls == 1
    await consumer.close()
