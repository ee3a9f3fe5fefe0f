"""Client side of the message protocol, used by the CLI and the test suite."""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import json
import logging
from typing import Any

from actuctl.core.errors import (
    ActuctlError,
    ChannelClosedError,
    MessageGrammarError,
    SessionClosed,
    error_from_code,
)
from actuctl.server import messages
from actuctl.server.channel import MessageChannel
from actuctl.server.messages import Message

LOGGER = logging.getLogger(__name__)


class ProtocolClient:
    """Correlates replies to requests by id; everything else lands in ``events``."""

    def __init__(
        self,
        channel: MessageChannel,
        *,
        name: str = "actuctl-client",
        version: int = messages.PROTOCOL_VERSION_MAX,
    ) -> None:
        self.name = name
        self.version = version
        self.server_name: str | None = None
        self.max_ping_time_ms = 0
        self.events: asyncio.Queue[Message] = asyncio.Queue()
        # Session-level errors (no id) the server sent before closing.
        self.errors: list[ActuctlError] = []
        self.closed = False
        self._channel = channel
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future] = {}
        self._reader: asyncio.Task | None = None

    async def __aenter__(self) -> ProtocolClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def connect(self) -> Message:
        if self._reader is None:
            self._reader = asyncio.create_task(self._read_loop())
        reply = await self.request("Handshake", version=self.version, client_name=self.name)
        self.server_name = reply.get("server_name")
        self.max_ping_time_ms = reply.get("max_ping_time", 0)
        return reply

    async def send_raw(self, message: Message) -> None:
        """Send ``message`` as-is, bypassing id allocation."""
        await self._channel.send(messages.encode(message))

    async def request(self, message_type: str, **fields: Any) -> Message:
        if self.closed:
            raise SessionClosed("Session is closed")
        message_id = next(self._ids)
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[message_id] = future
        try:
            await self._channel.send(messages.encode({"type": message_type, "id": message_id, **fields}))
        except ChannelClosedError as exc:
            self._pending.pop(message_id, None)
            raise SessionClosed(str(exc)) from exc
        return await future

    async def close(self) -> None:
        await self._channel.close()
        if self._reader is not None:
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader
            self._reader = None
        self._fail_pending(SessionClosed("Session is closed"))

    async def _read_loop(self) -> None:
        try:
            while True:
                data = await self._channel.recv()
                self._dispatch(data)
        except ChannelClosedError:
            LOGGER.debug("Server closed the session")
        finally:
            self._fail_pending(SessionClosed("Server closed the session"))

    def _dispatch(self, data: bytes) -> None:
        try:
            message = json.loads(data)
        except ValueError:
            LOGGER.warning("Dropping unparseable message from server")
            return
        message_id = message.get("id")
        future = self._pending.pop(message_id, None) if message_id is not None else None
        if future is None:
            if message.get("type") == "Error":
                self.errors.append(error_from_code(message.get("code", ""), message.get("message", "")))
            self.events.put_nowait(message)
            return
        if future.done():
            return
        if message.get("type") == "Error":
            future.set_exception(_reply_error(message))
        else:
            future.set_result(message)

    def _fail_pending(self, exc: ActuctlError) -> None:
        self.closed = True
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(exc)

    async def list_devices(self) -> list[dict[str, Any]]:
        reply = await self.request("RequestDeviceList")
        return reply["devices"]

    async def send_scalar(self, session: int, feature: int, value: float) -> None:
        await self.request("CommandScalar", session=session, feature=feature, value=value)

    async def send_rotate(self, session: int, feature: int, speed: float, clockwise: bool = True) -> None:
        await self.request("CommandRotate", session=session, feature=feature, speed=speed, clockwise=clockwise)

    async def send_linear(self, session: int, feature: int, position: float, duration_ms: int) -> None:
        await self.request(
            "CommandLinear", session=session, feature=feature, position=position, duration=duration_ms
        )

    async def read_sensor(self, session: int, feature: int) -> Message:
        return await self.request("SensorRead", session=session, feature=feature)

    async def stop_device(self, session: int) -> None:
        await self.request("StopDevice", session=session)

    async def stop_all(self) -> None:
        await self.request("StopAll")

    async def start_scanning(self) -> None:
        await self.request("StartScanning")

    async def stop_scanning(self) -> None:
        await self.request("StopScanning")

    async def ping(self) -> None:
        await self.request("Ping")

    async def disconnect(self) -> None:
        try:
            await self.request("Disconnect")
        finally:
            await self.close()


def _reply_error(message: Message) -> ActuctlError:
    code = message.get("code", "")
    text = message.get("message", "")
    if code == MessageGrammarError.code:
        return MessageGrammarError(text, message_id=message.get("id"))
    return error_from_code(code, text)
