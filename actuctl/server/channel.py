"""Ordered bidirectional message channels carrying protocol messages."""

from __future__ import annotations

import asyncio
from typing import Protocol

from actuctl.core.errors import ChannelClosedError

_MAX_LINE_BYTES = 1 << 20


class MessageChannel(Protocol):
    async def send(self, data: bytes) -> None:
        """Send one message; raise ChannelClosedError if the peer is gone."""

    async def recv(self) -> bytes:
        """Wait for the next message; raise ChannelClosedError on closure."""

    async def close(self) -> None:
        """Close both directions. Safe to call more than once."""


class MemoryChannel:
    """One end of an in-process channel pair."""

    def __init__(self, incoming: asyncio.Queue, outgoing: asyncio.Queue) -> None:
        self._incoming = incoming
        self._outgoing = outgoing
        self.closed = False

    @classmethod
    def pair(cls) -> tuple[MemoryChannel, MemoryChannel]:
        a_to_b: asyncio.Queue[bytes | None] = asyncio.Queue()
        b_to_a: asyncio.Queue[bytes | None] = asyncio.Queue()
        return cls(b_to_a, a_to_b), cls(a_to_b, b_to_a)

    async def send(self, data: bytes) -> None:
        if self.closed:
            raise ChannelClosedError("Channel closed")
        self._outgoing.put_nowait(data)

    async def recv(self) -> bytes:
        if self.closed:
            raise ChannelClosedError("Channel closed")
        data = await self._incoming.get()
        if data is None:
            self.closed = True
            raise ChannelClosedError("Peer closed the channel")
        return data

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._outgoing.put_nowait(None)
        self._incoming.put_nowait(None)


class StreamChannel:
    """Newline-delimited messages over an asyncio stream pair."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._reader = reader
        self._writer = writer
        self.closed = False

    @classmethod
    async def open(cls, host: str, port: int) -> StreamChannel:
        reader, writer = await asyncio.open_connection(host, port, limit=_MAX_LINE_BYTES)
        return cls(reader, writer)

    async def send(self, data: bytes) -> None:
        if self.closed:
            raise ChannelClosedError("Channel closed")
        try:
            self._writer.write(data + b"\n")
            await self._writer.drain()
        except ConnectionError as exc:
            self.closed = True
            raise ChannelClosedError(f"Send failed: {exc}") from exc

    async def recv(self) -> bytes:
        while not self.closed:
            try:
                line = await self._reader.readline()
            except (ConnectionError, ValueError) as exc:
                self.closed = True
                raise ChannelClosedError(f"Receive failed: {exc}") from exc
            if not line:
                self.closed = True
                break
            line = line.strip()
            if line:
                return line
        raise ChannelClosedError("Peer closed the channel")

    async def close(self) -> None:
        if self.closed and self._writer.is_closing():
            return
        self.closed = True
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except ConnectionError:
            pass
