"""Core data models shared by the catalog, devices, managers and server."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

from actuctl.core.errors import InvalidCommand, UnsupportedFeature

if TYPE_CHECKING:
    from actuctl.transports.base import RawChannel


class FeatureKind(str, Enum):
    SCALAR = "ScalarActuator"
    ROTATE = "RotateActuator"
    LINEAR = "LinearActuator"
    SENSOR = "Sensor"

    @property
    def is_actuator(self) -> bool:
        return self is not FeatureKind.SENSOR


@dataclass(frozen=True)
class Feature:
    kind: FeatureKind
    actuator_type: str | None = None
    sensor_type: str | None = None
    step_count: int = 0
    value_range: tuple[int, int] = (0, 0)

    def to_steps(self, value: float) -> int:
        return max(0, min(self.step_count, round(value * self.step_count)))

    def describe(self, index: int) -> dict[str, Any]:
        desc: dict[str, Any] = {"index": index, "kind": self.kind.value}
        if self.kind is FeatureKind.SENSOR:
            desc["sensor"] = self.sensor_type
            desc["range"] = list(self.value_range)
        else:
            desc["actuator"] = self.actuator_type
            desc["steps"] = self.step_count
        return desc


@dataclass(frozen=True)
class FeatureSchema:
    features: tuple[Feature, ...]

    def __len__(self) -> int:
        return len(self.features)

    def __iter__(self) -> Iterator[Feature]:
        return iter(self.features)

    def __getitem__(self, index: int) -> Feature:
        return self.features[index]

    def indices_of(self, kind: FeatureKind) -> tuple[int, ...]:
        return tuple(i for i, feature in enumerate(self.features) if feature.kind is kind)

    def require(self, index: int, kind: FeatureKind) -> Feature:
        """Return the feature at ``index`` if it exists and has ``kind``."""
        if index < 0 or index >= len(self.features):
            raise UnsupportedFeature(
                f"Feature index {index} out of range; device has {len(self.features)} features"
            )
        feature = self.features[index]
        if feature.kind is not kind:
            raise UnsupportedFeature(
                f"Feature {index} is a {feature.kind.value}, not a {kind.value}"
            )
        return feature


@dataclass(frozen=True)
class TransportSpec:
    type: str
    service_uuid: str | None = None
    write_char_uuid: str | None = None
    notify_char_uuid: str | None = None
    write_with_response: bool = True
    baudrate: int | None = None
    timeout_s: float = 5.0


@dataclass(frozen=True)
class MatchRules:
    name_prefix: tuple[str, ...] = ()
    name_contains: tuple[str, ...] = ()
    address_prefix: tuple[str, ...] = ()
    services: tuple[str, ...] = ()
    identify: str | None = None


@dataclass(frozen=True)
class CatalogEntry:
    """One device configuration; ``id`` is the protocol family name."""

    id: str
    name: str
    protocol: str
    match: MatchRules
    transport: TransportSpec
    features: FeatureSchema


@dataclass(frozen=True)
class DeviceIdentifier:
    address: str
    name: str
    transport: str
    services: tuple[str, ...] = ()

    @property
    def key(self) -> str:
        return self.address.upper()


@dataclass(frozen=True)
class DeviceCandidate:
    """A discovered device plus the capability to open its raw channel."""

    identifier: DeviceIdentifier
    connector: Callable[[TransportSpec], Awaitable[RawChannel]] = field(compare=False)
    # Set by transports whose link is already open when the device is reported.
    releaser: Callable[[], Awaitable[None]] | None = field(default=None, compare=False)

    async def connect(self, spec: TransportSpec) -> RawChannel:
        return await self.connector(spec)

    async def release(self) -> None:
        """Drop a candidate that will not be connected."""
        if self.releaser is not None:
            await self.releaser()


def _check_unit(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise InvalidCommand(f"{name} must be within 0.0-1.0, got {value}")


@dataclass(frozen=True)
class ScalarCommand:
    feature_index: int
    value: float

    kind = FeatureKind.SCALAR

    def __post_init__(self) -> None:
        _check_unit("value", self.value)


@dataclass(frozen=True)
class RotateCommand:
    feature_index: int
    speed: float
    clockwise: bool = True

    kind = FeatureKind.ROTATE

    def __post_init__(self) -> None:
        _check_unit("speed", self.speed)


@dataclass(frozen=True)
class LinearCommand:
    feature_index: int
    position: float
    duration_ms: int

    kind = FeatureKind.LINEAR

    def __post_init__(self) -> None:
        _check_unit("position", self.position)
        if self.duration_ms < 0:
            raise InvalidCommand(f"duration must not be negative, got {self.duration_ms}")


@dataclass(frozen=True)
class SensorReadCommand:
    feature_index: int

    kind = FeatureKind.SENSOR


Command = Union[ScalarCommand, RotateCommand, LinearCommand, SensorReadCommand]


@dataclass(frozen=True)
class SensorValue:
    """Decoded sensor value, before it is bound to a session."""

    feature_index: int
    value: int


@dataclass(frozen=True)
class ControlEvent:
    """Decoded non-sensor frame (acks, state echoes, position reports)."""

    name: str
    feature_index: int | None = None
    value: float | None = None


Decoded = Union[SensorValue, ControlEvent]


@dataclass(frozen=True)
class SensorReading:
    session_id: int
    feature_index: int
    value: int
    timestamp: float


@dataclass(frozen=True)
class DeviceInfo:
    session_id: int
    name: str
    family: str
    identifier: DeviceIdentifier
    features: FeatureSchema

    def describe(self) -> dict[str, Any]:
        return {
            "session": self.session_id,
            "name": self.name,
            "family": self.family,
            "address": self.identifier.address,
            "features": [feature.describe(i) for i, feature in enumerate(self.features)],
        }
