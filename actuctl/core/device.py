"""A connected device: raw channel, translator, command queue and feature map."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from enum import Enum
from typing import Any

from actuctl.core.errors import (
    DeviceNotAvailable,
    ProtocolError,
    TransportError,
    TransportTimeoutError,
    UnsupportedFeature,
)
from actuctl.core.events import DeviceDisconnected, DeviceReady, DeviceWarning
from actuctl.core.model import (
    CatalogEntry,
    Command,
    ControlEvent,
    DeviceIdentifier,
    DeviceInfo,
    FeatureKind,
    FeatureSchema,
    RotateCommand,
    ScalarCommand,
    SensorReadCommand,
    SensorReading,
    SensorValue,
)
from actuctl.protocols.base import ProtocolTranslator
from actuctl.transports.base import RawChannel

LOGGER = logging.getLogger(__name__)
_STOP_WRITE_TIMEOUT_S = 1.0


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    READY = "ready"
    DISCONNECTED = "disconnected"


class Device:
    def __init__(
        self,
        session_id: int,
        identifier: DeviceIdentifier,
        entry: CatalogEntry,
        channel: RawChannel,
        translator: ProtocolTranslator,
        events: asyncio.Queue,
        *,
        write_failure_limit: int = 1,
        sensor_read_timeout_s: float = 2.0,
    ) -> None:
        self.session_id = session_id
        self.identifier = identifier
        self.entry = entry
        self.state = ConnectionState.CONNECTING
        self._channel = channel
        self._translator = translator
        self._events = events
        self._write_failure_limit = write_failure_limit
        self._sensor_read_timeout_s = sensor_read_timeout_s

        # Newest pending command per feature index, in first-queued order.
        self._pending: dict[int, Command] = {}
        self._wakeup = asyncio.Event()
        self._last_sent: dict[int, Any] = {}
        self._last_write = float("-inf")
        self._write_failures = 0
        self._readings: dict[int, SensorReading] = {}
        self._sensor_waiters: dict[int, list[asyncio.Future]] = {}

        self._runner: asyncio.Task | None = None
        self._dispatcher: asyncio.Task | None = None
        self._reader: asyncio.Task | None = None
        self._stopping = False

    @property
    def features(self) -> FeatureSchema:
        return self.entry.features

    @property
    def connected(self) -> bool:
        return self.state is not ConnectionState.DISCONNECTED

    def info(self) -> DeviceInfo:
        return DeviceInfo(
            session_id=self.session_id,
            name=self.entry.name,
            family=self.entry.id,
            identifier=self.identifier,
            features=self.features,
        )

    def last_reading(self, feature_index: int) -> SensorReading | None:
        return self._readings.get(feature_index)

    def start(self) -> None:
        self._runner = asyncio.create_task(self._run(), name=f"device-{self.session_id}")

    async def _run(self) -> None:
        try:
            await self._translator.initialize(self._channel)
        except (TransportError, ProtocolError) as exc:
            LOGGER.warning("Initialization of device %s failed: %s", self.session_id, exc)
            self._mark_disconnected()
            return
        self.state = ConnectionState.READY
        LOGGER.info("Device %s (%s) ready", self.session_id, self.entry.id)
        self._events.put_nowait(DeviceReady(self.session_id))
        self._reader = asyncio.create_task(self._read_loop(), name=f"device-{self.session_id}-read")
        self._dispatcher = asyncio.create_task(self._dispatch_loop(), name=f"device-{self.session_id}-dispatch")

    def submit(self, command: Command) -> None:
        """Queue a command; a newer command for the same feature replaces it."""
        if not self.connected:
            raise DeviceNotAvailable(f"Device {self.session_id} is disconnected")
        self.features.require(command.feature_index, command.kind)
        self._pending[command.feature_index] = command
        self._wakeup.set()

    def halt(self) -> None:
        """Queue neutral values for every scalar and rotate actuator."""
        for command in self._neutral_commands():
            self.submit(command)

    async def read_sensor(self, feature_index: int) -> SensorReading:
        command = SensorReadCommand(feature_index)
        self.features.require(feature_index, FeatureKind.SENSOR)
        # Fail before queueing if the family cannot encode this sensor.
        self._translator.encode(command, self.features)
        waiter = asyncio.get_running_loop().create_future()
        self._sensor_waiters.setdefault(feature_index, []).append(waiter)
        try:
            self.submit(command)
            return await asyncio.wait_for(waiter, timeout=self._sensor_read_timeout_s)
        except asyncio.TimeoutError:
            raise TransportTimeoutError(
                f"Device {self.session_id} did not answer sensor {feature_index} within "
                f"{self._sensor_read_timeout_s}s"
            ) from None
        finally:
            waiters = self._sensor_waiters.get(feature_index, [])
            if waiter in waiters:
                waiters.remove(waiter)

    def _neutral_commands(self) -> list[Command]:
        commands: list[Command] = []
        for index in self.features.indices_of(FeatureKind.SCALAR):
            commands.append(ScalarCommand(index, 0.0))
        for index in self.features.indices_of(FeatureKind.ROTATE):
            _, clockwise = self._last_sent.get(index, (0, True))
            commands.append(RotateCommand(index, 0.0, clockwise=clockwise))
        return commands

    def _command_state(self, command: Command) -> Any:
        feature = self.features[command.feature_index]
        if isinstance(command, ScalarCommand):
            return feature.to_steps(command.value)
        if isinstance(command, RotateCommand):
            return (feature.to_steps(command.speed), command.clockwise)
        return None

    async def _dispatch_loop(self) -> None:
        loop = asyncio.get_running_loop()
        interval = self._translator.min_command_interval
        while True:
            while not self._pending:
                if not self.connected:
                    return
                self._wakeup.clear()
                await self._wakeup.wait()
            delay = self._last_write + interval - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
            # The read loop may have disconnected the device during the sleep.
            if not self.connected:
                return
            if not self._pending:
                continue
            index = next(iter(self._pending))
            command = self._pending.pop(index)

            state = self._command_state(command)
            if state is not None and self._last_sent.get(index) == state:
                LOGGER.debug("Device %s feature %s unchanged, skipping write", self.session_id, index)
                continue
            try:
                frames = self._translator.encode(command, self.features)
            except (ProtocolError, UnsupportedFeature) as exc:
                LOGGER.warning("Device %s could not encode %s: %s", self.session_id, command, exc)
                self._events.put_nowait(DeviceWarning(self.session_id, str(exc)))
                continue

            if not await self._write_frames(frames):
                if self._write_failures >= self._write_failure_limit:
                    self._mark_disconnected()
                    return
                continue
            self._last_write = loop.time()
            if state is not None:
                self._last_sent[index] = state

    async def _write_frames(self, frames: tuple[bytes, ...]) -> bool:
        for data in frames:
            try:
                await self._channel.write(data)
            except TransportError as exc:
                self._write_failures += 1
                LOGGER.warning(
                    "Write to device %s failed (%s/%s): %s",
                    self.session_id,
                    self._write_failures,
                    self._write_failure_limit,
                    exc,
                )
                return False
        self._write_failures = 0
        return True

    async def _read_loop(self) -> None:
        while True:
            try:
                data = await self._channel.read()
            except TransportError as exc:
                LOGGER.info("Device %s channel closed: %s", self.session_id, exc)
                self._mark_disconnected()
                return
            try:
                decoded = self._translator.decode(data)
            except ProtocolError as exc:
                if exc.fatal:
                    LOGGER.warning("Device %s sent a fatal frame: %s", self.session_id, exc)
                    self._mark_disconnected()
                    return
                LOGGER.warning("Dropping malformed frame from device %s: %s", self.session_id, exc)
                self._events.put_nowait(DeviceWarning(self.session_id, str(exc)))
                continue
            if isinstance(decoded, SensorValue):
                self._deliver_reading(decoded)
            elif isinstance(decoded, ControlEvent):
                LOGGER.debug("Device %s control event %s", self.session_id, decoded)

    def _deliver_reading(self, value: SensorValue) -> None:
        reading = SensorReading(
            session_id=self.session_id,
            feature_index=value.feature_index,
            value=value.value,
            timestamp=time.time(),
        )
        self._readings[value.feature_index] = reading
        waiters = self._sensor_waiters.pop(value.feature_index, [])
        pending = [w for w in waiters if not w.done()]
        if pending:
            for waiter in pending:
                waiter.set_result(reading)
            return
        self._events.put_nowait(reading)

    def _mark_disconnected(self) -> None:
        if self.state is ConnectionState.DISCONNECTED:
            return
        self.state = ConnectionState.DISCONNECTED
        self._pending.clear()
        self._wakeup.set()
        for waiters in self._sensor_waiters.values():
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_exception(DeviceNotAvailable(f"Device {self.session_id} disconnected"))
        self._sensor_waiters.clear()
        LOGGER.info("Device %s disconnected", self.session_id)
        self._events.put_nowait(DeviceDisconnected(self.session_id))

    async def stop(self) -> None:
        """Stop all actuators best-effort, then release the channel."""
        if self._stopping:
            return
        self._stopping = True
        was_ready = self.state is ConnectionState.READY
        await _cancel(self._dispatcher)
        if was_ready:
            await self._send_neutral()
        await _cancel(self._reader)
        await _cancel(self._runner)
        try:
            await self._channel.close()
        except TransportError as exc:
            LOGGER.debug("Ignoring close error on device %s: %s", self.session_id, exc)
        self._mark_disconnected()

    async def _send_neutral(self) -> None:
        for command in self._neutral_commands():
            try:
                frames = self._translator.encode(command, self.features)
                for data in frames:
                    await asyncio.wait_for(self._channel.write(data), timeout=_STOP_WRITE_TIMEOUT_S)
            except (TransportError, ProtocolError, UnsupportedFeature, asyncio.TimeoutError) as exc:
                LOGGER.debug("Stop command to device %s not delivered: %s", self.session_id, exc)
                return


async def _cancel(task: asyncio.Task | None) -> None:
    if task is None or task.done():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
