"""Serial port communication manager using pyserial."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from actuctl.core.errors import ChannelClosedError, TransportConnectError, TransportSendError
from actuctl.core.model import DeviceCandidate, DeviceIdentifier, TransportSpec
from actuctl.transports.base import CommunicationManager

LOGGER = logging.getLogger(__name__)
_READ_CHUNK = 64
_READ_TIMEOUT_S = 0.1


class SerialChannel:
    def __init__(self, port: Any) -> None:
        self._port = port
        self._closed = False

    async def read(self) -> bytes:
        while not self._closed:
            try:
                data = await asyncio.to_thread(self._port.read, _READ_CHUNK)
            except Exception as exc:
                self._closed = True
                raise ChannelClosedError(f"Serial port {self._port.port} closed: {exc}") from exc
            if data:
                return bytes(data)
        raise ChannelClosedError(f"Serial port {self._port.port} closed")

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise TransportSendError("Serial port closed")
        try:
            await asyncio.to_thread(self._port.write, data)
        except Exception as exc:
            raise TransportSendError(f"Serial write failed: {exc}") from exc

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await asyncio.to_thread(self._port.close)


class SerialManager(CommunicationManager):
    """Polls the system's serial ports and reports newly attached ones."""

    name = "serial"

    def __init__(self, *, poll_interval_s: float = 2.0) -> None:
        super().__init__()
        self._poll_interval_s = poll_interval_s
        self._task: asyncio.Task | None = None
        self._known: set[str] = set()

    async def _start(self) -> None:
        try:
            from serial.tools import list_ports  # type: ignore
        except Exception as exc:  # pragma: no cover - import failure path
            self._fail(f"Serial transport requires 'pyserial'. Install dependency and retry. ({exc})")
            return
        self._task = asyncio.create_task(self._poll(list_ports))

    async def _stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self._known.clear()

    async def _poll(self, list_ports: Any) -> None:
        while True:
            try:
                ports = await asyncio.to_thread(list_ports.comports)
            except Exception as exc:
                self._fail(f"Could not enumerate serial ports: {exc}")
                return
            present = {port.device for port in ports}
            self._known &= present
            for port in ports:
                if port.device in self._known:
                    continue
                self._known.add(port.device)
                self._report(
                    DeviceCandidate(
                        identifier=DeviceIdentifier(
                            address=port.device,
                            name=port.product or port.description or port.device,
                            transport="serial",
                        ),
                        connector=self._connect_factory(port.device),
                    )
                )
            await asyncio.sleep(self._poll_interval_s)

    @staticmethod
    def _connect_factory(device: str) -> Any:
        async def _connect(spec: TransportSpec) -> SerialChannel:
            import serial  # type: ignore

            try:
                port = await asyncio.to_thread(
                    serial.Serial,
                    device,
                    baudrate=spec.baudrate or 115200,
                    timeout=_READ_TIMEOUT_S,
                    write_timeout=spec.timeout_s,
                )
            except (serial.SerialException, OSError) as exc:
                raise TransportConnectError(f"Could not open serial port {device}: {exc}") from exc
            return SerialChannel(port)

        return _connect
