"""Sensor-side telemetry pipeline.

Wires decoder -> store -> aggregator -> publisher for incoming frames and
runs the periodic statistics, sampling and hourly ticks.  Everything runs
on one event loop: a frame is decoded, applied and published before the
next one is looked at.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from pyparking._mqtt import MqttBackbone, build_client_id
from pyparking.config import ParkingConfig
from pyparking.ingestion.line_protocol import BarrierFrame, OccupancyFrame, decode_frame
from pyparking.models._base import utcnow
from pyparking.models.gate import GateKind
from pyparking.models.message import TopicMessage
from pyparking.publisher import Backbone, EventPublisher
from pyparking.state.aggregator import StatisticsAggregator
from pyparking.state.events import GateChange, SpaceChange
from pyparking.state.gate_cycle import GateSequencer, GateTransition
from pyparking.state.store import ParkingStore

_logger = logging.getLogger(__name__)


class TelemetryProcessor:
    """Turn sensor frames into published state and statistics.

    Usage::

        async with TelemetryProcessor(config) as processor:
            await asyncio.Event().wait()

    Tests construct it with a recording ``backbone`` and call
    :meth:`handle_frame` and the ``tick_*`` methods directly.
    """

    def __init__(
        self,
        config: ParkingConfig,
        *,
        backbone: Backbone | None = None,
        clock: Callable[[], datetime] = utcnow,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._external_backbone = backbone is not None
        self._backbone = backbone
        self._clock = clock
        self._sleep = sleep
        self.store = ParkingStore(config.total_spaces, clock=clock, rng=rng)
        self.aggregator = StatisticsAggregator(self.store, clock=clock, hourly_reset=config.hourly_reset)
        self._publisher: EventPublisher | None = (
            EventPublisher(backbone, clock=clock) if backbone is not None else None
        )
        self._sequencer = GateSequencer(config.gate_timings, self._on_gate_transition, sleep=sleep)
        self._gate_tasks: dict[GateKind, asyncio.Task[Any]] = {}
        self._tick_tasks: list[asyncio.Task[None]] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> TelemetryProcessor:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    async def start(self) -> None:
        """Connect the backbone (unless injected), publish initial state, start ticks."""
        loop = asyncio.get_running_loop()
        if self._backbone is None:
            runtime = MqttBackbone(
                loop=loop,
                on_message=self.handle_message,
                client_id=build_client_id("parking_processor"),
                keepalive=self._config.mqtt_keepalive,
            )
            await loop.run_in_executor(
                None,
                runtime.start,
                self._config.broker_host,
                self._config.broker_port,
                self._config.sensor_topics,
            )
            self._backbone = runtime
            self._publisher = EventPublisher(runtime, clock=self._clock)

        self.publish_snapshot()
        self._tick_tasks = [
            asyncio.create_task(self._every(self._config.stats_interval, self.tick_stats)),
            asyncio.create_task(self._every(self._config.hourly_interval, self.tick_hourly)),
            asyncio.create_task(self._every(self._config.sample_interval, self.tick_sample)),
        ]

    async def stop(self) -> None:
        tasks = [*self._tick_tasks, *self._gate_tasks.values()]
        self._tick_tasks = []
        self._gate_tasks = {}
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

        backbone = self._backbone
        if not self._external_backbone and isinstance(backbone, MqttBackbone):
            self._backbone = None
            self._publisher = None
            await asyncio.get_running_loop().run_in_executor(None, backbone.stop)

    async def _every(self, interval: float, tick: Callable[[], Any]) -> None:
        while True:
            await self._sleep(interval)
            try:
                tick()
            except Exception:
                _logger.warning("Periodic tick %s failed", getattr(tick, "__name__", tick), exc_info=True)

    def _require_publisher(self) -> EventPublisher:
        if self._publisher is None:
            raise RuntimeError("Processor not started. Use 'async with TelemetryProcessor(...)' or pass a backbone.")
        return self._publisher

    # ------------------------------------------------------------------
    # Frame handling
    # ------------------------------------------------------------------

    def handle_message(self, message: TopicMessage) -> None:
        """Backbone callback: process frames arriving on sensor topics."""
        if message.topic not in self._config.sensor_topics:
            return
        self.handle_frame(message.payload)

    def handle_frame(self, raw: str | bytes) -> list[SpaceChange] | list[GateChange]:
        """Decode and apply one line-protocol frame, publishing what changed."""
        frame = decode_frame(raw, total_spaces=self._config.total_spaces)
        if isinstance(frame, OccupancyFrame):
            return self._apply_occupancy(frame)
        if isinstance(frame, BarrierFrame):
            return self._apply_barrier(frame)
        _logger.warning("Unrecognized sensor frame dropped: %r", frame.raw[:80])
        return []

    def _apply_occupancy(self, frame: OccupancyFrame) -> list[SpaceChange]:
        changes = self.store.apply_occupancy_events(frame.assignments)
        if not changes:
            _logger.debug("Occupancy frame without changes: %s", frame.raw)
            return changes

        publisher = self._require_publisher()
        for change in changes:
            _logger.info(
                "Space %d %s",
                change.space_id,
                "occupied" if change.current else "free",
            )
            publisher.publish_space(self.store.space(change.space_id))
        self.aggregator.record_changes(changes)
        publisher.publish_stats(self.aggregator.snapshot())
        return changes

    def _apply_barrier(self, frame: BarrierFrame) -> list[GateChange]:
        changes = self.store.apply_barrier_events(frame.assignments)
        publisher = self._require_publisher()
        for change in changes:
            # Decoded state wins over a simulated cycle still in flight.
            task = self._gate_tasks.pop(change.kind, None)
            if task is not None:
                task.cancel()
            _logger.info("Gate %s %s", change.kind, change.current)
            publisher.publish_gate(self.store.gate(change.kind))
        return changes

    # ------------------------------------------------------------------
    # Timed gate cycle
    # ------------------------------------------------------------------

    def start_gate_sequence(self, kind: GateKind) -> asyncio.Task[Any]:
        """Run the timed open/close cycle for *kind*, publishing every phase."""
        previous = self._gate_tasks.pop(kind, None)
        if previous is not None:
            previous.cancel()
        task = asyncio.create_task(self._sequencer.run(kind, self.store.gate(kind).phase))
        self._gate_tasks[kind] = task
        task.add_done_callback(lambda done: self._forget_gate_task(kind, done))
        return task

    def _forget_gate_task(self, kind: GateKind, task: asyncio.Task[Any]) -> None:
        if self._gate_tasks.get(kind) is task:
            self._gate_tasks.pop(kind, None)

    def _on_gate_transition(self, kind: GateKind, transition: GateTransition) -> None:
        change = self.store.set_gate_phase(kind, transition.phase, action=transition.action)
        if change is not None:
            self._require_publisher().publish_gate(self.store.gate(kind))

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def publish_snapshot(self) -> list[TopicMessage]:
        return self._require_publisher().publish_snapshot(
            spaces=self.store.spaces(),
            gates=self.store.gates(),
            stats=self.aggregator.snapshot(),
            buckets=self.aggregator.hourly_buckets(),
        )

    def tick_stats(self) -> TopicMessage:
        return self._require_publisher().publish_stats(self.aggregator.snapshot())

    def tick_hourly(self) -> TopicMessage:
        buckets = self.aggregator.update_hourly()
        return self._require_publisher().publish_hourly(buckets)

    def tick_sample(self) -> int:
        average = self.aggregator.sample_occupancy()
        _logger.debug(
            "Occupancy sample average=%d%% peak=%d/%d",
            average,
            self.aggregator.peak_occupancy,
            self.store.total_spaces,
        )
        return average
