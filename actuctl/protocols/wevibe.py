"""We-Vibe packed dual-motor protocol.

Both motor levels travel in a single byte, so every frame has to carry the
current level of the motor that is not being changed.
"""

from __future__ import annotations

from actuctl.core.errors import MalformedResponse
from actuctl.core.model import ControlEvent, Decoded, FeatureKind, FeatureSchema
from actuctl.protocols.base import Frames, ProtocolTranslator, register
from actuctl.transports.base import RawChannel

WAKE_FRAME = bytes((0x0F, 0x03, 0x00, 0x99, 0x00, 0x03, 0x00, 0x00))
IDLE_FRAME = bytes((0x0F, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00))


@register
class WeVibeTranslator(ProtocolTranslator):
    protocol = "wevibe"
    min_command_interval = 0.05

    def __init__(self, schema: FeatureSchema) -> None:
        super().__init__(schema)
        self._motors = schema.indices_of(FeatureKind.SCALAR)
        self._levels = [0] * len(self._motors)

    async def initialize(self, channel: RawChannel) -> None:
        await channel.write(WAKE_FRAME)
        await channel.write(IDLE_FRAME)

    def encode_scalar(self, index: int, steps: int) -> Frames:
        self._levels[self._motors.index(index)] = steps
        return (self._frame(),)

    def _frame(self) -> bytes:
        external = self._levels[0]
        internal = self._levels[1] if len(self._levels) > 1 else external
        if external == 0 and internal == 0:
            return IDLE_FRAME
        return bytes((0x0F, 0x03, 0x00, (external & 0x0F) | ((internal & 0x0F) << 4), 0x00, 0x03, 0x00, 0x00))

    def decode(self, data: bytes) -> Decoded:
        if not data:
            raise MalformedResponse("Empty We-Vibe notification")
        return ControlEvent("status", value=float(data[0]))
