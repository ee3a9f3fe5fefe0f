"""Message protocol server: one session per connected client."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from enum import Enum

from actuctl.core.config import Settings
from actuctl.core.device_manager import DeviceManager
from actuctl.core.errors import (
    ActuctlError,
    ChannelClosedError,
    HandshakeError,
    MessageGrammarError,
    PingTimeout,
)
from actuctl.core.events import DeviceAdded, DeviceRemoved
from actuctl.core.model import (
    LinearCommand,
    RotateCommand,
    ScalarCommand,
    SensorReading,
)
from actuctl.server import messages
from actuctl.server.channel import MessageChannel, StreamChannel
from actuctl.server.messages import Message

LOGGER = logging.getLogger(__name__)

Handler = Callable[[Message], Awaitable[Message]]

# Requests that wait on hardware run in their own task.
_CONCURRENT = frozenset({"SensorRead"})


class SessionState(str, Enum):
    AWAITING_HANDSHAKE = "awaiting_handshake"
    NEGOTIATED = "negotiated"
    ACTIVE = "active"
    CLOSED = "closed"


class Session:
    def __init__(self, server: ProtocolServer, channel: MessageChannel, session_number: int) -> None:
        self.server = server
        self.number = session_number
        self.state = SessionState.AWAITING_HANDSHAKE
        self.version: int | None = None
        self.client_name: str | None = None
        self._channel = channel
        self._devices = server.device_manager
        self._settings = server.settings
        self._send_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()
        self._events: asyncio.Queue | None = None
        self._last_ping = 0.0
        self._closed = False
        self._handlers: dict[str, Handler] = {
            "RequestDeviceList": self._device_list,
            "CommandScalar": self._command_scalar,
            "CommandRotate": self._command_rotate,
            "CommandLinear": self._command_linear,
            "SensorRead": self._sensor_read,
            "StopDevice": self._stop_device,
            "StopAll": self._stop_all,
            "StartScanning": self._start_scanning,
            "StopScanning": self._stop_scanning,
            "Ping": self._ping,
            "Disconnect": self._disconnect,
        }

    async def run(self) -> None:
        try:
            while self.state is not SessionState.CLOSED:
                try:
                    data = await self._channel.recv()
                except ChannelClosedError:
                    LOGGER.info("Session %s: client went away", self.number)
                    break
                await self._handle(data)
        finally:
            await self.close()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.state = SessionState.CLOSED
        current = asyncio.current_task()
        tasks = [task for task in self._tasks if task is not current]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()
        if self._events is not None:
            self._devices.unsubscribe(self._events)
            self._events = None
        await self._channel.close()

    async def _send(self, message: Message) -> None:
        async with self._send_lock:
            try:
                await self._channel.send(messages.encode(message))
            except ChannelClosedError:
                LOGGER.debug("Session %s: dropping %s, channel closed", self.number, message.get("type"))

    async def _fail_session(self, exc: ActuctlError, message_id: int | None = None) -> None:
        LOGGER.warning("Session %s closing: %s", self.number, exc)
        await self._send(messages.error(exc, message_id))
        self.state = SessionState.CLOSED

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _handle(self, data: bytes) -> None:
        try:
            message = messages.parse(data)
        except MessageGrammarError as exc:
            await self._fail_session(exc)
            return

        if self.state is SessionState.AWAITING_HANDSHAKE:
            await self._handshake(message)
            return

        if message.get("type") == "Handshake":
            await self._send(
                messages.error(HandshakeError("Session already negotiated"), message["id"])
            )
            return

        try:
            message_type = messages.validate(message, self.version or messages.PROTOCOL_VERSION_MIN)
        except MessageGrammarError as exc:
            LOGGER.debug("Session %s: rejecting message %s: %s", self.number, message["id"], exc)
            await self._send(messages.error(exc, exc.message_id))
            return

        self.state = SessionState.ACTIVE
        handler = self._handlers[message_type]
        if message_type in _CONCURRENT:
            self._spawn(self._respond(handler, message))
        else:
            await self._respond(handler, message)

    async def _respond(self, handler: Handler, message: Message) -> None:
        try:
            reply = await handler(message)
        except ActuctlError as exc:
            await self._send(messages.error(exc, message["id"]))
            return
        await self._send(reply)

    async def _handshake(self, message: Message) -> None:
        if message.get("type") != "Handshake":
            await self._fail_session(HandshakeError("First message must be a Handshake"), message["id"])
            return
        try:
            messages.validate(message, messages.PROTOCOL_VERSION_MAX)
        except MessageGrammarError as exc:
            await self._fail_session(HandshakeError(f"Malformed handshake: {exc}"), message["id"])
            return
        version = message["version"]
        if not messages.PROTOCOL_VERSION_MIN <= version <= messages.PROTOCOL_VERSION_MAX:
            await self._fail_session(
                HandshakeError(
                    f"Protocol version {version} not supported; server supports "
                    f"{messages.PROTOCOL_VERSION_MIN}-{messages.PROTOCOL_VERSION_MAX}"
                ),
                message["id"],
            )
            return

        self.version = version
        self.client_name = message.get("client_name")
        self._events = self._devices.subscribe()
        await self._send(
            messages.handshake_ack(
                message["id"], version, self._settings.server_name, self._settings.max_ping_time_s
            )
        )
        self.state = SessionState.NEGOTIATED
        LOGGER.info("Session %s negotiated v%s with %s", self.number, version, self.client_name)
        self._spawn(self._forward_events(self._events))
        if self._settings.max_ping_time_s > 0:
            self._last_ping = asyncio.get_running_loop().time()
            self._spawn(self._ping_watchdog())

    async def _forward_events(self, events: asyncio.Queue) -> None:
        while True:
            event = await events.get()
            if isinstance(event, DeviceAdded):
                await self._send(messages.device_added(event.device))
            elif isinstance(event, DeviceRemoved):
                await self._send(messages.device_removed(event.session_id))
            elif isinstance(event, SensorReading):
                await self._send(messages.sensor_notification(event))

    async def _ping_watchdog(self) -> None:
        loop = asyncio.get_running_loop()
        limit = self._settings.max_ping_time_s
        while True:
            remaining = self._last_ping + limit - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(remaining)
        await self._devices.stop_all()
        await self._fail_session(PingTimeout(f"No ping received within {limit}s"))
        await self._channel.close()

    async def _device_list(self, message: Message) -> Message:
        return messages.device_list(message["id"], self._devices.list_devices())

    async def _command_scalar(self, message: Message) -> Message:
        await self._devices.send_command(
            message["session"], ScalarCommand(message["feature"], float(message["value"]))
        )
        return messages.ok(message["id"])

    async def _command_rotate(self, message: Message) -> Message:
        await self._devices.send_command(
            message["session"],
            RotateCommand(message["feature"], float(message["speed"]), message["clockwise"]),
        )
        return messages.ok(message["id"])

    async def _command_linear(self, message: Message) -> Message:
        await self._devices.send_command(
            message["session"],
            LinearCommand(message["feature"], float(message["position"]), message["duration"]),
        )
        return messages.ok(message["id"])

    async def _sensor_read(self, message: Message) -> Message:
        reading = await self._devices.read_sensor(message["session"], message["feature"])
        return messages.sensor_reading(message["id"], reading)

    async def _stop_device(self, message: Message) -> Message:
        await self._devices.stop_device(message["session"])
        return messages.ok(message["id"])

    async def _stop_all(self, message: Message) -> Message:
        await self._devices.stop_all()
        return messages.ok(message["id"])

    async def _start_scanning(self, message: Message) -> Message:
        await self._devices.start_scanning()
        return messages.ok(message["id"])

    async def _stop_scanning(self, message: Message) -> Message:
        await self._devices.stop_scanning()
        return messages.ok(message["id"])

    async def _ping(self, message: Message) -> Message:
        self._last_ping = asyncio.get_running_loop().time()
        return messages.ok(message["id"])

    async def _disconnect(self, message: Message) -> Message:
        self.state = SessionState.CLOSED
        return messages.ok(message["id"])


class ProtocolServer:
    def __init__(self, device_manager: DeviceManager, settings: Settings | None = None) -> None:
        self.device_manager = device_manager
        self.settings = settings or device_manager.settings
        self.sessions: set[Session] = set()
        self._session_count = 0
        self._tasks: set[asyncio.Task] = set()

    async def serve(self, channel: MessageChannel) -> None:
        self._session_count += 1
        session = Session(self, channel, self._session_count)
        self.sessions.add(session)
        LOGGER.info("Session %s opened", session.number)
        try:
            await session.run()
        finally:
            self.sessions.discard(session)
            LOGGER.info("Session %s closed", session.number)
            if not self.sessions and self.settings.stop_devices_on_disconnect:
                await self.device_manager.stop_all()

    def attach(self, channel: MessageChannel) -> asyncio.Task:
        """Serve ``channel`` in the background and return the session task."""
        task = asyncio.create_task(self.serve(channel))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def serve_tcp(self, host: str, port: int) -> asyncio.AbstractServer:
        async def _on_client(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
            await self.serve(StreamChannel(reader, writer))

        server = await asyncio.start_server(_on_client, host, port, limit=1 << 20)
        LOGGER.info("Protocol server listening on %s:%s", host, port)
        return server

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
