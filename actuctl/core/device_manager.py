"""Device manager: owns communication managers and the set of live devices.

The device set is only mutated by the manager's own task, which consumes an
inbox fed by communication managers, connection tasks and devices. Other
tasks read it through :meth:`DeviceManager.list_devices` and the command
methods, which never hand out the underlying mapping.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine, Iterable
from typing import Any

from actuctl.core.catalog import DeviceCatalog
from actuctl.core.config import Settings
from actuctl.core.device import Device
from actuctl.core.errors import DeviceNotAvailable, TransportError, UnsupportedFeature
from actuctl.core.events import (
    ConnectFailed,
    DeviceAdded,
    DeviceConnected,
    DeviceDisconnected,
    DeviceDiscovered,
    DeviceReady,
    DeviceRemoved,
    DeviceWarning,
    ManagerError,
    ManagerEvent,
)
from actuctl.core.model import CatalogEntry, Command, DeviceCandidate, DeviceInfo, SensorReading
from actuctl.protocols import translator_class
from actuctl.transports.base import CommunicationManager, RawChannel

LOGGER = logging.getLogger(__name__)


class _Shutdown:
    pass


class DeviceManager:
    def __init__(
        self,
        catalog: DeviceCatalog,
        managers: Iterable[CommunicationManager] = (),
        *,
        settings: Settings | None = None,
    ) -> None:
        self.catalog = catalog
        self.settings = settings or Settings()
        self._managers: list[CommunicationManager] = []
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._devices: dict[int, Device] = {}
        self._by_key: dict[str, int] = {}
        self._connecting: set[str] = set()
        # Identifier key -> (retired session id, deadline for handing it back).
        self._retiring: dict[str, tuple[int, float]] = {}
        self._announced: set[int] = set()
        self._next_session_id = 1
        self._subscribers: list[asyncio.Queue] = []
        self._connect_tasks: set[asyncio.Task] = set()
        self._task: asyncio.Task | None = None
        for manager in managers:
            self.add_manager(manager)

    async def __aenter__(self) -> DeviceManager:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    @property
    def managers(self) -> tuple[CommunicationManager, ...]:
        return tuple(self._managers)

    def add_manager(self, manager: CommunicationManager) -> None:
        manager.bind(self._inbox)
        self._managers.append(manager)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="device-manager")

    def subscribe(self) -> asyncio.Queue[ManagerEvent]:
        queue: asyncio.Queue[ManagerEvent] = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    async def start_scanning(self) -> None:
        await asyncio.gather(*(manager.start_scanning() for manager in self._managers))

    async def stop_scanning(self) -> None:
        await asyncio.gather(*(manager.stop_scanning() for manager in self._managers))

    def list_devices(self) -> list[DeviceInfo]:
        return [
            self._devices[session_id].info()
            for session_id in sorted(self._announced)
            if session_id in self._devices
        ]

    def _device(self, session_id: int) -> Device:
        device = self._devices.get(session_id)
        if device is None or not device.connected or session_id not in self._announced:
            raise DeviceNotAvailable(f"No device with session id {session_id}")
        return device

    async def send_command(self, session_id: int, command: Command) -> None:
        self._device(session_id).submit(command)

    async def read_sensor(self, session_id: int, feature_index: int) -> SensorReading:
        return await self._device(session_id).read_sensor(feature_index)

    async def stop_device(self, session_id: int) -> None:
        self._device(session_id).halt()

    async def stop_all(self) -> None:
        for device in list(self._devices.values()):
            if device.connected:
                device.halt()

    async def shutdown(self) -> None:
        # Managers holding device links only finish stopping once those links close.
        await self._cancel_connects()
        await asyncio.gather(*(device.stop() for device in list(self._devices.values())))
        await self.stop_scanning()
        await self._cancel_connects()
        if self._task is not None:
            self._inbox.put_nowait(_Shutdown())
            await self._task
            self._task = None

    async def _cancel_connects(self) -> None:
        for task in list(self._connect_tasks):
            task.cancel()
        await asyncio.gather(*self._connect_tasks, return_exceptions=True)

    async def _run(self) -> None:
        while True:
            event = await self._inbox.get()
            if isinstance(event, _Shutdown):
                return
            await self._handle(event)

    async def _handle(self, event: object) -> None:
        if isinstance(event, DeviceDiscovered):
            self._on_discovered(event)
        elif isinstance(event, DeviceConnected):
            self._on_connected(event)
        elif isinstance(event, ConnectFailed):
            LOGGER.warning("Could not connect to %s: %s", event.key, event.reason)
            self._connecting.discard(event.key)
        elif isinstance(event, DeviceReady):
            if event.session_id in self._devices:
                self._announced.add(event.session_id)
                self._broadcast(DeviceAdded(self._devices[event.session_id].info()))
        elif isinstance(event, DeviceDisconnected):
            await self._on_disconnected(event.session_id)
        elif isinstance(event, (SensorReading, DeviceWarning, ManagerError)):
            self._broadcast(event)
        else:
            LOGGER.debug("Ignoring unexpected event %r", event)

    def _broadcast(self, event: ManagerEvent) -> None:
        for queue in self._subscribers:
            queue.put_nowait(event)

    def _on_discovered(self, event: DeviceDiscovered) -> None:
        identifier = event.candidate.identifier
        key = identifier.key
        if key in self._by_key or key in self._connecting:
            LOGGER.debug("Ignoring repeat discovery of %s from %s", key, event.manager)
            self._drop(event.candidate)
            return
        entries = self.catalog.candidates(identifier)
        if not entries:
            LOGGER.debug("No device configuration matches %s (%s)", identifier.name, key)
            self._drop(event.candidate)
            return
        LOGGER.info("Discovered %s (%s) via %s", identifier.name, key, event.manager)
        self._connecting.add(key)
        self._track(self._connect(event.candidate, entries))

    def _track(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._connect_tasks.add(task)
        task.add_done_callback(self._connect_tasks.discard)

    def _drop(self, candidate: DeviceCandidate) -> None:
        if candidate.releaser is not None:
            self._track(candidate.release())

    async def _connect(self, candidate: DeviceCandidate, entries: list[CatalogEntry]) -> None:
        key = candidate.identifier.key
        try:
            channel = await candidate.connect(entries[0].transport)
        except TransportError as exc:
            self._inbox.put_nowait(ConnectFailed(key, str(exc)))
            return
        entry = entries[0] if len(entries) == 1 else await self._identify(channel, entries)
        if entry is None:
            await channel.close()
            self._inbox.put_nowait(ConnectFailed(key, "device did not identify as any matching configuration"))
            return
        try:
            translator = translator_class(entry.protocol)
        except UnsupportedFeature as exc:
            await channel.close()
            self._inbox.put_nowait(ConnectFailed(key, str(exc)))
            return
        self._inbox.put_nowait(
            DeviceConnected(candidate=candidate, entry=entry, channel=channel, translator=translator)
        )

    async def _identify(self, channel: RawChannel, entries: list[CatalogEntry]) -> CatalogEntry | None:
        probed: set[str] = set()
        for entry in entries:
            if entry.protocol in probed:
                continue
            probed.add(entry.protocol)
            try:
                translator = translator_class(entry.protocol)
            except UnsupportedFeature as exc:
                LOGGER.warning("Skipping configuration %s: %s", entry.id, exc)
                continue
            if translator.probe is None:
                continue
            try:
                await channel.write(translator.probe)
                reply = await asyncio.wait_for(channel.read(), timeout=self.settings.probe_timeout_s)
            except (TransportError, asyncio.TimeoutError) as exc:
                LOGGER.debug("Probe for protocol %s failed: %s", entry.protocol, exc)
                continue
            token = translator.identify(reply)
            for match in entries:
                if match.protocol == entry.protocol and match.match.identify == token:
                    LOGGER.info("Device identified as %s", match.id)
                    return match
        return None

    def _assign_session_id(self, key: str) -> int:
        loop_time = asyncio.get_running_loop().time()
        self._retiring = {k: v for k, v in self._retiring.items() if v[1] >= loop_time}
        retired = self._retiring.pop(key, None)
        if retired is not None:
            return retired[0]
        session_id = self._next_session_id
        self._next_session_id += 1
        return session_id

    def _on_connected(self, event: DeviceConnected) -> None:
        identifier = event.candidate.identifier
        self._connecting.discard(identifier.key)
        session_id = self._assign_session_id(identifier.key)
        translator = event.translator(event.entry.features)
        device = Device(
            session_id,
            identifier,
            event.entry,
            event.channel,
            translator,
            self._inbox,
            write_failure_limit=self.settings.write_failure_limit,
            sensor_read_timeout_s=self.settings.sensor_read_timeout_s,
        )
        self._devices[session_id] = device
        self._by_key[identifier.key] = session_id
        device.start()

    async def _on_disconnected(self, session_id: int) -> None:
        device = self._devices.pop(session_id, None)
        if device is None:
            return
        key = device.identifier.key
        self._by_key.pop(key, None)
        if self.settings.session_reuse_window_s > 0:
            deadline = asyncio.get_running_loop().time() + self.settings.session_reuse_window_s
            self._retiring[key] = (session_id, deadline)
        await device.stop()
        if session_id in self._announced:
            self._announced.discard(session_id)
            LOGGER.info("Device %s removed", session_id)
            self._broadcast(DeviceRemoved(session_id))
