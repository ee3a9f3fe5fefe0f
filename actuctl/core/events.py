"""Events passed between managers, devices and the device manager."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

from actuctl.core.model import CatalogEntry, DeviceCandidate, DeviceInfo, SensorReading

if TYPE_CHECKING:
    from actuctl.protocols.base import ProtocolTranslator
    from actuctl.transports.base import RawChannel


@dataclass(frozen=True)
class DeviceDiscovered:
    manager: str
    candidate: DeviceCandidate


@dataclass(frozen=True)
class ManagerError:
    manager: str
    message: str


@dataclass(frozen=True)
class DeviceConnected:
    candidate: DeviceCandidate
    entry: CatalogEntry
    channel: RawChannel
    translator: type[ProtocolTranslator]


@dataclass(frozen=True)
class ConnectFailed:
    key: str
    reason: str


@dataclass(frozen=True)
class DeviceReady:
    session_id: int


@dataclass(frozen=True)
class DeviceDisconnected:
    session_id: int


@dataclass(frozen=True)
class DeviceWarning:
    session_id: int
    message: str


@dataclass(frozen=True)
class DeviceAdded:
    device: DeviceInfo


@dataclass(frozen=True)
class DeviceRemoved:
    session_id: int


# Events the device manager forwards to subscribers.
ManagerEvent = Union[DeviceAdded, DeviceRemoved, SensorReading, DeviceWarning, ManagerError]
