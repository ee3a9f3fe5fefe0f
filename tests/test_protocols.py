from __future__ import annotations

import asyncio

import pytest

from actuctl.core.errors import MalformedResponse, UnsupportedFeature
from actuctl.core.model import (
    ControlEvent,
    Feature,
    FeatureKind,
    FeatureSchema,
    LinearCommand,
    RotateCommand,
    ScalarCommand,
    SensorReadCommand,
    SensorValue,
)
from actuctl.protocols import TRANSLATORS, translator_class
from actuctl.protocols.demo import OP_SENSOR, DemoSimulator, DemoTranslator, frame
from actuctl.protocols.kiiroo_v2 import KiirooV2Translator, launch_speed
from actuctl.protocols.lovense import LovenseSimulator, LovenseTranslator
from actuctl.protocols.wevibe import IDLE_FRAME, WAKE_FRAME, WeVibeTranslator
from actuctl.transports.loopback import LoopbackChannel

VIBRATE = Feature(kind=FeatureKind.SCALAR, actuator_type="Vibrate", step_count=20)
ROTATE = Feature(kind=FeatureKind.ROTATE, actuator_type="Rotate", step_count=20)
BATTERY = Feature(kind=FeatureKind.SENSOR, sensor_type="Battery", value_range=(0, 100))
RSSI = Feature(kind=FeatureKind.SENSOR, sensor_type="RSSI", value_range=(-128, 0))


def test_registry_knows_all_families() -> None:
    assert {"demo", "lovense", "wevibe", "kiiroo_v2"} <= set(TRANSLATORS)
    assert translator_class("demo") is DemoTranslator
    with pytest.raises(UnsupportedFeature):
        translator_class("nope")


def test_demo_scalar_echo_round_trip() -> None:
    schema = FeatureSchema((VIBRATE,))
    translator = DemoTranslator(schema)
    simulator = DemoSimulator()

    for value in (0.0, 0.05, 0.5, 0.77, 1.0):
        (data,) = translator.encode(ScalarCommand(0, value), schema)
        decoded = translator.decode(simulator(data))
        assert isinstance(decoded, ControlEvent)
        assert decoded.feature_index == 0
        assert decoded.value == pytest.approx(value, abs=1 / (2 * VIBRATE.step_count))


def test_demo_rejects_bad_checksum() -> None:
    translator = DemoTranslator(FeatureSchema((VIBRATE,)))
    data = bytearray(frame(0xA0, 0, 10))
    data[3] ^= 0xFF
    with pytest.raises(MalformedResponse):
        translator.decode(bytes(data))
    with pytest.raises(MalformedResponse):
        translator.decode(b"\x01\x02")


def test_demo_signed_sensor_range() -> None:
    schema = FeatureSchema((VIBRATE, RSSI))
    translator = DemoTranslator(schema)
    decoded = translator.decode(frame(OP_SENSOR, 1, (-60) & 0xFF))
    assert decoded == SensorValue(feature_index=1, value=-60)


def test_demo_identify() -> None:
    simulator = DemoSimulator(model="Q")
    assert DemoTranslator.identify(simulator(DemoTranslator.probe)) == "Q"
    assert DemoTranslator.identify(b"junk") is None


def test_encode_rejects_wrong_feature_kind() -> None:
    schema = FeatureSchema((VIBRATE, BATTERY))
    translator = DemoTranslator(schema)
    with pytest.raises(UnsupportedFeature):
        translator.encode(RotateCommand(0, 0.5), schema)
    with pytest.raises(UnsupportedFeature):
        translator.encode(ScalarCommand(1, 0.5), schema)
    with pytest.raises(UnsupportedFeature):
        translator.encode(ScalarCommand(7, 0.5), schema)


def test_lovense_single_and_multi_motor_vibrate() -> None:
    single = FeatureSchema((VIBRATE, BATTERY))
    assert LovenseTranslator(single).encode(ScalarCommand(0, 0.5), single) == (b"Vibrate:10;",)

    dual = FeatureSchema((VIBRATE, VIBRATE, BATTERY))
    translator = LovenseTranslator(dual)
    assert translator.encode(ScalarCommand(1, 1.0), dual) == (b"Vibrate2:20;",)


def test_lovense_rotate_toggles_direction_once() -> None:
    schema = FeatureSchema((VIBRATE, ROTATE, BATTERY))
    translator = LovenseTranslator(schema)
    assert translator.encode(RotateCommand(1, 0.25, clockwise=True), schema) == (b"Rotate:5;",)
    assert translator.encode(RotateCommand(1, 0.25, clockwise=False), schema) == (b"RotateChange;", b"Rotate:5;")
    assert translator.encode(RotateCommand(1, 0.5, clockwise=False), schema) == (b"Rotate:10;",)


def test_lovense_battery_and_identify() -> None:
    schema = FeatureSchema((VIBRATE, BATTERY))
    translator = LovenseTranslator(schema)
    simulator = LovenseSimulator(model="A", battery=64)

    assert translator.encode(SensorReadCommand(1), schema) == (b"Battery;",)
    assert translator.decode(simulator(b"Battery;")) == SensorValue(feature_index=1, value=64)
    assert LovenseTranslator.identify(simulator(b"DeviceType;")) == "A"
    assert translator.decode(b"OK;") == ControlEvent("ack")
    with pytest.raises(MalformedResponse):
        translator.decode(b"\xff\xfe")


def test_wevibe_packs_both_motors() -> None:
    motor = Feature(kind=FeatureKind.SCALAR, actuator_type="Vibrate", step_count=15)
    schema = FeatureSchema((motor, motor))
    translator = WeVibeTranslator(schema)

    (first,) = translator.encode(ScalarCommand(0, 1.0), schema)
    assert first == bytes((0x0F, 0x03, 0x00, 0x0F, 0x00, 0x03, 0x00, 0x00))
    (second,) = translator.encode(ScalarCommand(1, 2 / 15), schema)
    assert second[3] == 0x0F | (2 << 4)
    translator.encode(ScalarCommand(0, 0.0), schema)
    (idle,) = translator.encode(ScalarCommand(1, 0.0), schema)
    assert idle == IDLE_FRAME


def test_wevibe_initialize_sends_two_packets() -> None:
    async def scenario() -> list[bytes]:
        channel = LoopbackChannel()
        schema = FeatureSchema((VIBRATE,))
        await WeVibeTranslator(schema).initialize(channel)
        return channel.writes

    assert asyncio.run(scenario()) == [WAKE_FRAME, IDLE_FRAME]


def test_kiiroo_speed_from_distance_and_duration() -> None:
    assert launch_speed(0.0, 500) == 0.0
    assert launch_speed(1.0, 0) == 1.0
    slow = launch_speed(0.5, 1000)
    fast = launch_speed(0.5, 200)
    assert 0.0 < slow < fast <= 1.0


def test_kiiroo_linear_frame_tracks_position() -> None:
    linear = Feature(kind=FeatureKind.LINEAR, actuator_type="Position", step_count=99)
    schema = FeatureSchema((linear,))
    translator = KiirooV2Translator(schema)

    (data,) = translator.encode(LinearCommand(0, 1.0, 300), schema)
    assert data[0] == 99
    assert 0 < data[1] <= 99
    # Same target again: nothing to travel, so speed drops to zero.
    (again,) = translator.encode(LinearCommand(0, 1.0, 300), schema)
    assert again == bytes((99, 0))
    assert translator.decode(b"\x31") == ControlEvent("position", feature_index=0, value=49 / 99)
