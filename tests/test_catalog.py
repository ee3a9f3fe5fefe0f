from __future__ import annotations

from pathlib import Path

import pytest

from actuctl.core.catalog import load_catalog
from actuctl.core.errors import CatalogNotFound, CatalogValidationError
from actuctl.core.model import DeviceIdentifier, FeatureKind


def _write_device(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


@pytest.fixture(autouse=True)
def _isolated_xdg(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))


def test_load_packaged_catalog() -> None:
    catalog = load_catalog()
    assert {"demo", "demo_sensor", "lovense_lush", "lovense_nora", "wevibe", "kiiroo_launch"} <= set(
        catalog.entries
    )
    nora = catalog.entries["lovense_nora"]
    assert nora.protocol == "lovense"
    assert nora.match.identify == "A"
    assert [f.kind for f in nora.features] == [FeatureKind.SCALAR, FeatureKind.ROTATE, FeatureKind.SENSOR]
    assert nora.features[2].value_range == (0, 100)
    assert nora.transport.write_with_response is False
    assert catalog.warnings == ()


def test_resolve_demo_device() -> None:
    catalog = load_catalog()
    entry = catalog.resolve(DeviceIdentifier(address="00:11:22:33:44:55", name="Demo-1000", transport="loopback"))
    assert entry.id == "demo"
    assert entry.features[0].step_count == 20


def test_resolve_unknown_device_raises() -> None:
    catalog = load_catalog()
    with pytest.raises(CatalogNotFound):
        catalog.resolve(DeviceIdentifier(address="00:00:00:00:00:00", name="Mystery", transport="ble"))


def test_candidates_returns_all_ties() -> None:
    catalog = load_catalog()
    found = catalog.candidates(DeviceIdentifier(address="C4:4F:33:00:00:01", name="LVS-Z36", transport="ble"))
    assert {entry.id for entry in found} == {"lovense_edge", "lovense_lush", "lovense_nora"}


def test_invalid_uuid_in_user_config_rejected(tmp_path: Path) -> None:
    _write_device(
        tmp_path / "cfg" / "actuctl" / "devices" / "bad.yaml",
        """
id: bad_uuid
name: Bad UUID
protocol: demo
match:
  name_prefix: ["Bad"]
transport:
  type: ble
  service_uuid: "not-a-uuid"
  write_char_uuid: "2a19"
features:
  - kind: ScalarActuator
    actuator: Vibrate
    steps: 10
""",
    )

    with pytest.raises(CatalogValidationError):
        load_catalog()


def test_missing_required_keys_rejected(tmp_path: Path) -> None:
    _write_device(
        tmp_path / "cfg" / "actuctl" / "devices" / "missing.yaml",
        """
id: missing
name: Missing
protocol: demo
match:
  name_prefix: ["Missing"]
transport:
  type: loopback
""",
    )

    with pytest.raises(CatalogValidationError):
        load_catalog()


def test_actuator_without_steps_rejected(tmp_path: Path) -> None:
    _write_device(
        tmp_path / "data" / "actuctl" / "devices" / "nosteps.yaml",
        """
id: nosteps
name: No Steps
protocol: demo
match:
  name_prefix: ["NoSteps"]
transport:
  type: loopback
features:
  - kind: ScalarActuator
    actuator: Vibrate
""",
    )

    with pytest.raises(CatalogValidationError):
        load_catalog()


def test_user_config_overrides_packaged(tmp_path: Path) -> None:
    _write_device(
        tmp_path / "cfg" / "actuctl" / "devices" / "override.yaml",
        """
id: demo
name: User Demo
protocol: demo
match:
  name_prefix: ["Demo-1000"]
transport:
  type: loopback
features:
  - kind: ScalarActuator
    actuator: Vibrate
    steps: 100
""",
    )

    catalog = load_catalog()
    assert catalog.entries["demo"].name == "User Demo"
    assert catalog.entries["demo"].features[0].step_count == 100
    assert any("overrides" in warning for warning in catalog.warnings)


def test_duplicate_yaml_keys_rejected(tmp_path: Path) -> None:
    _write_device(
        tmp_path / "cfg" / "actuctl" / "devices" / "dup.yaml",
        """
id: dup
name: Duplicate
name: Duplicate Again
protocol: demo
match:
  name_prefix: ["Duplicate"]
transport:
  type: loopback
features:
  - kind: ScalarActuator
    actuator: Vibrate
    steps: 10
""",
    )

    with pytest.raises(CatalogValidationError):
        load_catalog()


def test_serial_device_loads(tmp_path: Path) -> None:
    _write_device(
        tmp_path / "cfg" / "actuctl" / "devices" / "serial.yaml",
        """
id: my_serial
name: My Serial Rig
protocol: demo
match:
  name_contains: ["CP2102"]
transport:
  type: serial
  baudrate: 9600
  timeout_s: 1.5
features:
  - kind: ScalarActuator
    actuator: Vibrate
    steps: 255
  - kind: Sensor
    sensor: Pressure
    range: [0, 255]
""",
    )

    entry = load_catalog().entries["my_serial"]
    assert entry.transport.type == "serial"
    assert entry.transport.baudrate == 9600
    assert entry.transport.timeout_s == 1.5
    assert entry.features.indices_of(FeatureKind.SENSOR) == (1,)


def test_unknown_protocol_rejected(tmp_path: Path) -> None:
    _write_device(
        tmp_path / "cfg" / "actuctl" / "devices" / "gadget.yaml",
        """
id: gadget
name: Unknown Gadget
protocol: nope
match:
  name_prefix: ["Gadget"]
transport:
  type: loopback
features:
  - kind: ScalarActuator
    actuator: Vibrate
    steps: 10
""",
    )

    with pytest.raises(CatalogValidationError, match="unknown protocol 'nope'"):
        load_catalog()
