"""Reference binary protocol with an XOR checksum.

Every frame is four bytes: ``opcode, feature index, value, checksum`` where the
checksum is the XOR of the first three bytes. The device echoes actuator
frames back and answers sensor requests with the current reading.
"""

from __future__ import annotations

from actuctl.core.errors import MalformedResponse
from actuctl.core.model import ControlEvent, Decoded, Feature, FeatureKind, SensorValue
from actuctl.protocols.base import Frames, ProtocolTranslator, register

OP_SET = 0xA0
OP_SENSOR = 0xA1
OP_IDENTIFY = 0xA2


def frame(opcode: int, index: int, value: int) -> bytes:
    return bytes((opcode, index, value, opcode ^ index ^ value))


@register
class DemoTranslator(ProtocolTranslator):
    protocol = "demo"
    min_command_interval = 0.02
    probe = frame(OP_IDENTIFY, 0, 0)

    @classmethod
    def identify(cls, data: bytes) -> str | None:
        if len(data) != 4 or data[0] != OP_IDENTIFY or data[3] != data[0] ^ data[1] ^ data[2]:
            return None
        return chr(data[1])

    def encode_scalar(self, index: int, steps: int) -> Frames:
        return (frame(OP_SET, index, steps),)

    def encode_sensor_read(self, index: int, feature: Feature) -> Frames:
        return (frame(OP_SENSOR, index, 0),)

    def decode(self, data: bytes) -> Decoded:
        if len(data) != 4:
            raise MalformedResponse(f"Expected a 4 byte frame, got {len(data)} bytes")
        opcode, index, value, checksum = data
        if checksum != opcode ^ index ^ value:
            raise MalformedResponse(f"Checksum mismatch in frame {data.hex()}")
        if index >= len(self.schema):
            raise MalformedResponse(f"Frame {data.hex()} names unknown feature {index}")
        feature = self.schema[index]
        if opcode == OP_SET and feature.kind is FeatureKind.SCALAR:
            return ControlEvent("echo", feature_index=index, value=value / feature.step_count)
        if opcode == OP_SENSOR and feature.kind is FeatureKind.SENSOR:
            if feature.value_range[0] < 0 and value > 127:
                value -= 256
            return SensorValue(feature_index=index, value=value)
        raise MalformedResponse(f"Unexpected opcode {opcode:#04x} for feature {index}")


class DemoSimulator:
    """Device-side behavior for loopback channels speaking the demo protocol."""

    def __init__(self, *, model: str = "D", sensors: dict[int, int] | None = None, echo: bool = True) -> None:
        self.model = model
        self.sensors = dict(sensors or {})
        self.echo = echo

    def __call__(self, data: bytes) -> bytes | None:
        if len(data) != 4:
            return None
        opcode, index, value, _ = data
        if opcode == OP_SET:
            return data if self.echo else None
        if opcode == OP_SENSOR and index in self.sensors:
            return frame(OP_SENSOR, index, self.sensors[index] & 0xFF)
        if opcode == OP_IDENTIFY:
            return frame(OP_IDENTIFY, ord(self.model), 0)
        return None
