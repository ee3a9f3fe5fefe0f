"""Network-attached hardware: devices dial in to a listening socket.

A device opens a TCP connection, sends one JSON line such as
``{"identifier": "demo-net", "address": "aa:bb"}`` and from then on exchanges
binary frames prefixed with a 2-byte big-endian length.
"""

from __future__ import annotations

import asyncio
import json
import logging
import struct

from actuctl.core.errors import ChannelClosedError, TransportConnectError, TransportSendError
from actuctl.core.model import DeviceCandidate, DeviceIdentifier, TransportSpec
from actuctl.transports.base import CommunicationManager

LOGGER = logging.getLogger(__name__)
_LENGTH = struct.Struct(">H")
_HELLO_TIMEOUT_S = 5.0


class TCPDeviceChannel:
    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._reader = reader
        self._writer = writer
        self._closed = False

    async def read(self) -> bytes:
        if self._closed:
            raise ChannelClosedError("Network device channel closed")
        try:
            header = await self._reader.readexactly(_LENGTH.size)
            (length,) = _LENGTH.unpack(header)
            return await self._reader.readexactly(length)
        except (asyncio.IncompleteReadError, ConnectionError) as exc:
            self._closed = True
            raise ChannelClosedError(f"Network device disconnected: {exc}") from exc

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise TransportSendError("Network device channel closed")
        if len(data) > 0xFFFF:
            raise TransportSendError(f"Frame of {len(data)} bytes exceeds the 65535 byte limit")
        try:
            self._writer.write(_LENGTH.pack(len(data)) + data)
            await self._writer.drain()
        except ConnectionError as exc:
            raise TransportSendError(f"Network device write failed: {exc}") from exc

    async def close(self) -> None:
        self._closed = True
        if self._writer.is_closing():
            return
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except ConnectionError as exc:
            LOGGER.debug("Ignoring close error: %s", exc)


class TCPDeviceManager(CommunicationManager):
    name = "tcp"

    def __init__(self, host: str = "127.0.0.1", port: int = 54817) -> None:
        super().__init__()
        self.host = host
        self.port = port
        self._server: asyncio.AbstractServer | None = None
        # Dialed-in links not yet claimed by a device.
        self._unclaimed: set[TCPDeviceChannel] = set()

    @property
    def bound_port(self) -> int | None:
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    async def _start(self) -> None:
        try:
            self._server = await asyncio.start_server(self._on_connection, self.host, self.port)
        except OSError as exc:
            self._fail(f"Could not listen on {self.host}:{self.port}: {exc}")
            return
        LOGGER.info("Listening for network devices on %s:%s", self.host, self.bound_port)

    async def _stop(self) -> None:
        if self._server is None:
            return
        server, self._server = self._server, None
        # Stops listening; connected devices keep their links until they are stopped.
        server.close()
        for channel in list(self._unclaimed):
            await self._release(channel)

    async def _on_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        try:
            line = await asyncio.wait_for(reader.readline(), timeout=_HELLO_TIMEOUT_S)
            hello = json.loads(line)
            name = str(hello["identifier"])
            address = str(hello.get("address") or f"{peer[0]}:{peer[1]}")
        except (asyncio.TimeoutError, ValueError, KeyError, TypeError) as exc:
            LOGGER.warning("Rejecting network device %s: bad hello (%s)", peer, exc)
            writer.close()
            return

        channel = TCPDeviceChannel(reader, writer)
        self._unclaimed.add(channel)

        async def _connect(spec: TransportSpec) -> TCPDeviceChannel:
            if channel not in self._unclaimed:
                raise TransportConnectError(f"Network device {address} is no longer connected")
            self._unclaimed.discard(channel)
            return channel

        async def _release() -> None:
            await self._release(channel)

        self._report(
            DeviceCandidate(
                identifier=DeviceIdentifier(address=address, name=name, transport="tcp"),
                connector=_connect,
                releaser=_release,
            )
        )

    async def _release(self, channel: TCPDeviceChannel) -> None:
        if channel not in self._unclaimed:
            return
        self._unclaimed.discard(channel)
        await channel.close()
