"""Kiiroo v2 linear stroker protocol (Fleshlight Launch family)."""

from __future__ import annotations

from actuctl.core.errors import MalformedResponse
from actuctl.core.model import ControlEvent, Decoded, Feature, FeatureKind, FeatureSchema
from actuctl.protocols.base import Frames, ProtocolTranslator, register
from actuctl.transports.base import RawChannel

FIRMWARE_UNLOCK = b"\x00"
_MAX_SPEED = 99


def launch_speed(distance: float, duration_ms: int) -> float:
    """Speed fraction needed to travel ``distance`` (0..1) in ``duration_ms``."""
    distance = min(abs(distance), 1.0)
    if distance <= 0.0:
        return 0.0
    if duration_ms <= 0:
        return 1.0
    speed = 25000 * (duration_ms * 90 / (distance * 100)) ** -1.05
    return min(speed, _MAX_SPEED) / _MAX_SPEED


@register
class KiirooV2Translator(ProtocolTranslator):
    protocol = "kiiroo_v2"
    min_command_interval = 0.05

    def __init__(self, schema: FeatureSchema) -> None:
        super().__init__(schema)
        self._linear = schema.indices_of(FeatureKind.LINEAR)
        self._position = 0.0

    async def initialize(self, channel: RawChannel) -> None:
        # Commands are ignored until the firmware has been told to accept them.
        await channel.write(FIRMWARE_UNLOCK)

    def encode_linear(self, index: int, position: float, duration_ms: int, feature: Feature) -> Frames:
        speed = launch_speed(position - self._position, duration_ms)
        self._position = position
        return (bytes((feature.to_steps(position), round(speed * _MAX_SPEED))),)

    def decode(self, data: bytes) -> Decoded:
        if len(data) != 1 or data[0] > _MAX_SPEED:
            raise MalformedResponse(f"Unexpected Kiiroo frame {data.hex()}")
        index = self._linear[0] if self._linear else None
        return ControlEvent("position", feature_index=index, value=data[0] / _MAX_SPEED)
