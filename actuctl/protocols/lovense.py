"""Lovense ASCII command protocol."""

from __future__ import annotations

import re

from actuctl.core.errors import MalformedResponse
from actuctl.core.model import ControlEvent, Decoded, Feature, FeatureKind, FeatureSchema, SensorValue
from actuctl.protocols.base import Frames, ProtocolTranslator, register

_DEVICE_TYPE_RE = re.compile(r"^([A-Z]+):[0-9]+:[0-9A-F]+;?$")
_NUMBER_RE = re.compile(r"^s?([0-9]{1,3});$")


@register
class LovenseTranslator(ProtocolTranslator):
    protocol = "lovense"
    min_command_interval = 0.05
    probe = b"DeviceType;"

    def __init__(self, schema: FeatureSchema) -> None:
        super().__init__(schema)
        self._vibrators = schema.indices_of(FeatureKind.SCALAR)
        self._battery = next(
            (i for i, f in enumerate(schema) if f.kind is FeatureKind.SENSOR and f.sensor_type == "Battery"),
            None,
        )
        # Lovense rotators power up turning clockwise and only expose a toggle.
        self._clockwise = True

    @classmethod
    def identify(cls, data: bytes) -> str | None:
        try:
            text = data.decode("ascii").strip()
        except UnicodeDecodeError:
            return None
        match = _DEVICE_TYPE_RE.match(text)
        return match.group(1) if match else None

    def encode_scalar(self, index: int, steps: int) -> Frames:
        if len(self._vibrators) == 1:
            return (f"Vibrate:{steps};".encode("ascii"),)
        motor = self._vibrators.index(index) + 1
        return (f"Vibrate{motor}:{steps};".encode("ascii"),)

    def encode_rotate(self, index: int, steps: int, clockwise: bool) -> Frames:
        frames: list[bytes] = []
        if clockwise != self._clockwise:
            frames.append(b"RotateChange;")
            self._clockwise = clockwise
        frames.append(f"Rotate:{steps};".encode("ascii"))
        return tuple(frames)

    def encode_sensor_read(self, index: int, feature: Feature) -> Frames:
        if index != self._battery:
            raise self._unsupported(FeatureKind.SENSOR)
        return (b"Battery;",)

    def decode(self, data: bytes) -> Decoded:
        try:
            text = data.decode("ascii").strip()
        except UnicodeDecodeError as exc:
            raise MalformedResponse(f"Non-ASCII Lovense frame {data.hex()}") from exc
        if text == "OK;":
            return ControlEvent("ack")
        if text == "ERR;":
            return ControlEvent("error")
        if _DEVICE_TYPE_RE.match(text):
            return ControlEvent("device_type")
        match = _NUMBER_RE.match(text)
        if match and self._battery is not None:
            return SensorValue(feature_index=self._battery, value=int(match.group(1)))
        raise MalformedResponse(f"Unrecognized Lovense frame {text!r}")


class LovenseSimulator:
    """Device-side behavior for loopback channels speaking the Lovense protocol."""

    def __init__(self, *, model: str = "S", battery: int = 80) -> None:
        self.model = model
        self.battery = battery

    def __call__(self, data: bytes) -> bytes | None:
        text = data.decode("ascii", errors="replace")
        if text == "DeviceType;":
            return f"{self.model}:11:0082059AD3BD;".encode("ascii")
        if text == "Battery;":
            return f"{self.battery};".encode("ascii")
        return b"OK;"
