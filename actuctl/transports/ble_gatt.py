"""BLE GATT communication manager and raw channel built on bleak."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from actuctl.core.errors import (
    ChannelClosedError,
    TransportConnectError,
    TransportSendError,
)
from actuctl.core.model import DeviceCandidate, DeviceIdentifier, TransportSpec
from actuctl.transports.base import CommunicationManager

LOGGER = logging.getLogger(__name__)


class BLEGATTChannel:
    def __init__(self, client: Any, spec: TransportSpec) -> None:
        self._client = client
        self._spec = spec
        self._incoming: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._closed = False

    def _notify_handler(self, _: Any, data: bytearray) -> None:
        self._incoming.put_nowait(bytes(data))

    def _disconnected(self, _: Any) -> None:
        self._incoming.put_nowait(None)

    async def open(self) -> None:
        try:
            await self._client.connect()
            if self._spec.notify_char_uuid:
                await self._client.start_notify(self._spec.notify_char_uuid, self._notify_handler)
        except asyncio.TimeoutError as exc:
            raise TransportConnectError(f"BLE connect timed out for {self._client.address}") from exc
        except Exception as exc:
            raise TransportConnectError(f"BLE connect failed for {self._client.address}: {exc}") from exc

    async def read(self) -> bytes:
        if self._closed and self._incoming.empty():
            raise ChannelClosedError("BLE channel closed")
        data = await self._incoming.get()
        if data is None:
            self._closed = True
            raise ChannelClosedError(f"BLE device {self._client.address} disconnected")
        return data

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise TransportSendError("BLE channel closed")
        try:
            await self._client.write_gatt_char(
                self._spec.write_char_uuid,
                data,
                response=self._spec.write_with_response,
            )
        except Exception as exc:
            raise TransportSendError(f"BLE GATT write failed: {exc}") from exc

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            if self._spec.notify_char_uuid:
                await self._client.stop_notify(self._spec.notify_char_uuid)
            await self._client.disconnect()
        except Exception as exc:
            LOGGER.debug("Ignoring BLE teardown error for %s: %s", self._client.address, exc)
        self._incoming.put_nowait(None)


class BLEManager(CommunicationManager):
    name = "ble"

    def __init__(self) -> None:
        super().__init__()
        self._scanner: Any = None

    async def _start(self) -> None:
        try:
            from bleak import BleakScanner  # type: ignore
        except Exception as exc:  # pragma: no cover - import failure path
            self._fail(f"BLE transport requires 'bleak'. Install dependency and retry. ({exc})")
            return

        self._scanner = BleakScanner(detection_callback=self._on_detect)
        try:
            await self._scanner.start()
        except Exception as exc:
            self._scanner = None
            self._fail(f"Could not start BLE scanning: {exc}")

    async def _stop(self) -> None:
        if self._scanner is None:
            return
        scanner, self._scanner = self._scanner, None
        try:
            await scanner.stop()
        except Exception as exc:
            LOGGER.debug("Ignoring BLE scanner stop error: %s", exc)

    def _on_detect(self, device: Any, advertisement: Any) -> None:
        name = advertisement.local_name or device.name
        if not name:
            return
        identifier = DeviceIdentifier(
            address=device.address,
            name=name,
            transport="ble",
            services=tuple(uuid.lower() for uuid in advertisement.service_uuids),
        )

        async def _connect(spec: TransportSpec) -> BLEGATTChannel:
            from bleak import BleakClient  # type: ignore

            channel: BLEGATTChannel | None = None

            def _on_disconnect(client: Any) -> None:
                if channel is not None:
                    channel._disconnected(client)

            client = BleakClient(device, disconnected_callback=_on_disconnect, timeout=spec.timeout_s)
            channel = BLEGATTChannel(client, spec)
            await channel.open()
            return channel

        self._report(DeviceCandidate(identifier=identifier, connector=_connect))
