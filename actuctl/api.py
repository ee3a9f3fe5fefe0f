"""Stable public API for embedding actuctl.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from actuctl.core.catalog import DeviceCatalog, load_catalog
from actuctl.core.config import Settings, load_settings
from actuctl.core.device_manager import DeviceManager
from actuctl.core.errors import (
    ActuctlError,
    CatalogLoadError,
    CatalogNotFound,
    CatalogValidationError,
    ConfigError,
    DeviceNotAvailable,
    HandshakeError,
    InvalidCommand,
    MessageGrammarError,
    PingTimeout,
    ProtocolError,
    SessionClosed,
    TransportError,
    UnsupportedFeature,
)
from actuctl.core.events import DeviceAdded, DeviceRemoved, DeviceWarning, ManagerError
from actuctl.core.model import (
    CatalogEntry,
    DeviceIdentifier,
    DeviceInfo,
    Feature,
    FeatureKind,
    LinearCommand,
    RotateCommand,
    ScalarCommand,
    SensorReading,
)
from actuctl.server.channel import MemoryChannel
from actuctl.server.client import ProtocolClient
from actuctl.server.server import ProtocolServer
from actuctl.transports.base import CommunicationManager

__all__ = [
    "ActuctlError",
    "CatalogLoadError",
    "CatalogNotFound",
    "CatalogValidationError",
    "ConfigError",
    "DeviceNotAvailable",
    "HandshakeError",
    "InvalidCommand",
    "MessageGrammarError",
    "PingTimeout",
    "ProtocolError",
    "SessionClosed",
    "TransportError",
    "UnsupportedFeature",
    "CatalogEntry",
    "DeviceIdentifier",
    "DeviceInfo",
    "Feature",
    "FeatureKind",
    "LinearCommand",
    "RotateCommand",
    "ScalarCommand",
    "SensorReading",
    "DeviceAdded",
    "DeviceRemoved",
    "DeviceWarning",
    "ManagerError",
    "CommunicationManager",
    "DeviceCatalog",
    "DeviceManager",
    "ProtocolClient",
    "ProtocolServer",
    "Settings",
    "connect_in_process",
    "load_catalog",
    "load_settings",
]


async def connect_in_process(
    server: ProtocolServer,
    *,
    name: str = "actuctl-client",
    version: int | None = None,
) -> ProtocolClient:
    """Open a session on ``server`` over an in-memory channel and handshake.

    The returned client is negotiated; close it with ``await client.close()``.
    """
    client_end, server_end = MemoryChannel.pair()
    server.attach(server_end)
    if version is None:
        client = ProtocolClient(client_end, name=name)
    else:
        client = ProtocolClient(client_end, name=name, version=version)
    await client.connect()
    return client
