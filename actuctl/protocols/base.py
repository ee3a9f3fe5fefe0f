"""Protocol translator interface and registry."""

from __future__ import annotations

from typing import ClassVar, TypeVar

from actuctl.core.errors import UnsupportedFeature
from actuctl.core.model import (
    Command,
    Decoded,
    Feature,
    FeatureKind,
    FeatureSchema,
    LinearCommand,
    RotateCommand,
    ScalarCommand,
    SensorReadCommand,
)
from actuctl.transports.base import RawChannel

Frames = tuple[bytes, ...]


class ProtocolTranslator:
    """Maps generic commands to raw frames for one device family.

    One instance is created per connected device, so translators may keep
    per-device state (motor levels, last position, direction).
    """

    protocol: ClassVar[str] = ""
    # Minimum seconds between two dispatched commands; enforced by the Device.
    min_command_interval: ClassVar[float] = 0.0
    # Written during connection when several catalog entries match the device.
    probe: ClassVar[bytes | None] = None

    def __init__(self, schema: FeatureSchema) -> None:
        self.schema = schema

    @classmethod
    def identify(cls, data: bytes) -> str | None:
        """Return the family token found in a probe reply, if any."""
        return None

    async def initialize(self, channel: RawChannel) -> None:
        return None

    def encode(self, command: Command, schema: FeatureSchema) -> Frames:
        feature = schema.require(command.feature_index, command.kind)
        if isinstance(command, ScalarCommand):
            return self.encode_scalar(command.feature_index, feature.to_steps(command.value))
        if isinstance(command, RotateCommand):
            return self.encode_rotate(command.feature_index, feature.to_steps(command.speed), command.clockwise)
        if isinstance(command, LinearCommand):
            return self.encode_linear(command.feature_index, command.position, command.duration_ms, feature)
        if isinstance(command, SensorReadCommand):
            return self.encode_sensor_read(command.feature_index, feature)
        raise UnsupportedFeature(f"Unknown command type {type(command).__name__}")

    def encode_scalar(self, index: int, steps: int) -> Frames:
        raise self._unsupported(FeatureKind.SCALAR)

    def encode_rotate(self, index: int, steps: int, clockwise: bool) -> Frames:
        raise self._unsupported(FeatureKind.ROTATE)

    def encode_linear(self, index: int, position: float, duration_ms: int, feature: Feature) -> Frames:
        raise self._unsupported(FeatureKind.LINEAR)

    def encode_sensor_read(self, index: int, feature: Feature) -> Frames:
        raise self._unsupported(FeatureKind.SENSOR)

    def decode(self, data: bytes) -> Decoded:
        raise NotImplementedError

    def _unsupported(self, kind: FeatureKind) -> UnsupportedFeature:
        return UnsupportedFeature(f"Protocol '{self.protocol}' does not support {kind.value} features")


TRANSLATORS: dict[str, type[ProtocolTranslator]] = {}

T = TypeVar("T", bound=type[ProtocolTranslator])


def register(cls: T) -> T:
    if not cls.protocol:
        raise ValueError(f"{cls.__name__} must set a protocol name")
    TRANSLATORS[cls.protocol] = cls
    return cls


def translator_class(protocol: str) -> type[ProtocolTranslator]:
    try:
        return TRANSLATORS[protocol]
    except KeyError:
        raise UnsupportedFeature(f"No translator registered for protocol '{protocol}'") from None

