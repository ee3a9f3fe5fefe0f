"""In-memory simulated hardware used by --simulate and the test suite."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from actuctl.core.errors import ChannelClosedError, TransportConnectError, TransportSendError
from actuctl.core.model import DeviceCandidate, DeviceIdentifier, TransportSpec
from actuctl.transports.base import CommunicationManager

Responder = Callable[[bytes], "bytes | None"]


class LoopbackChannel:
    def __init__(self, responder: Responder | None = None) -> None:
        self.responder = responder
        self.writes: list[bytes] = []
        self.write_times: list[float] = []
        self.fail_writes = False
        self.closed = False
        self._incoming: asyncio.Queue[bytes | None] = asyncio.Queue()

    async def read(self) -> bytes:
        if self.closed and self._incoming.empty():
            raise ChannelClosedError("Loopback channel closed")
        data = await self._incoming.get()
        if data is None:
            raise ChannelClosedError("Loopback channel closed")
        return data

    async def write(self, data: bytes) -> None:
        if self.closed:
            raise TransportSendError("Loopback channel closed")
        if self.fail_writes:
            raise TransportSendError("Simulated write failure")
        self.writes.append(data)
        self.write_times.append(time.monotonic())
        if self.responder is not None:
            reply = self.responder(data)
            if reply:
                self._incoming.put_nowait(reply)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._incoming.put_nowait(None)

    def inject(self, data: bytes) -> None:
        """Queue an unsolicited frame as if the device sent it."""
        self._incoming.put_nowait(data)

    def disconnect(self) -> None:
        """Simulate the device dropping off the transport."""
        self.closed = True
        self._incoming.put_nowait(None)


@dataclass(eq=False)
class LoopbackDevice:
    identifier: DeviceIdentifier
    responder: Responder | None = None
    refuse_connect: bool = False
    channels: list[LoopbackChannel] = field(default_factory=list)

    @property
    def channel(self) -> LoopbackChannel:
        return self.channels[-1]

    async def connect(self, spec: TransportSpec) -> LoopbackChannel:
        if self.refuse_connect:
            raise TransportConnectError(f"Simulated connect failure for {self.identifier.address}")
        channel = LoopbackChannel(self.responder)
        self.channels.append(channel)
        return channel


class LoopbackManager(CommunicationManager):
    name = "loopback"

    def __init__(
        self,
        devices: Iterable[LoopbackDevice] = (),
        *,
        name: str = "loopback",
        fail_with: str | None = None,
    ) -> None:
        super().__init__()
        self.name = name
        self.devices = list(devices)
        self.fail_with = fail_with

    async def _start(self) -> None:
        if self.fail_with is not None:
            self._fail(self.fail_with)
            return
        for device in self.devices:
            self._report(DeviceCandidate(identifier=device.identifier, connector=device.connect))

    async def _stop(self) -> None:
        return None

    def announce(self, device: LoopbackDevice) -> None:
        """Report a device while scanning, as a radio advertisement would."""
        if device not in self.devices:
            self.devices.append(device)
        if self.scanning:
            self._report(DeviceCandidate(identifier=device.identifier, connector=device.connect))
