"""Transport interfaces."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from actuctl.core.events import DeviceDiscovered, ManagerError
from actuctl.core.model import DeviceCandidate

LOGGER = logging.getLogger(__name__)


class RawChannel(Protocol):
    async def read(self) -> bytes:
        """Wait for the next frame; raise ChannelClosedError once disconnected."""

    async def write(self, data: bytes) -> None:
        """Write one frame; raise TransportSendError on failure."""

    async def close(self) -> None:
        """Release the channel. Safe to call more than once."""


class CommunicationManager:
    """Discovers devices on one transport and reports them as events.

    Subclasses implement :meth:`_start` and :meth:`_stop`. A manager that
    fails to initialize reports a single :class:`ManagerError` and stays
    inactive for the rest of its life.
    """

    name = "base"

    def __init__(self) -> None:
        self._events: asyncio.Queue | None = None
        self.failed = False
        self.scanning = False

    def bind(self, events: asyncio.Queue) -> None:
        self._events = events

    async def start_scanning(self) -> None:
        if self.failed or self.scanning:
            return
        self.scanning = True
        await self._start()

    async def stop_scanning(self) -> None:
        if not self.scanning:
            return
        self.scanning = False
        await self._stop()

    async def _start(self) -> None:
        raise NotImplementedError

    async def _stop(self) -> None:
        raise NotImplementedError

    def _report(self, candidate: DeviceCandidate) -> None:
        if self._events is None:
            LOGGER.debug("%s manager is unbound, dropping %s", self.name, candidate.identifier)
            return
        self._events.put_nowait(DeviceDiscovered(manager=self.name, candidate=candidate))

    def _fail(self, message: str) -> None:
        if self.failed:
            return
        self.failed = True
        self.scanning = False
        LOGGER.warning("%s manager disabled: %s", self.name, message)
        if self._events is not None:
            self._events.put_nowait(ManagerError(manager=self.name, message=message))
