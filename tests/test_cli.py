from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from actuctl import cli
from actuctl.core.catalog import DeviceCatalog
from actuctl.core.errors import CatalogLoadError

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated_xdg(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.delenv("ACTUCTL_CONFIG", raising=False)


def test_catalog_command() -> None:
    result = runner.invoke(cli.app, ["catalog"])
    assert result.exit_code == 0
    assert "demo: Demo Vibrator [demo over loopback]" in result.stdout
    assert "1: RotateActuator Rotate steps=20" in result.stdout
    assert "2: Sensor Battery 0..100" in result.stdout


def test_match_command_reports_ambiguity() -> None:
    result = runner.invoke(cli.app, ["match", "LVS-Nora", "--transport", "ble"])
    assert result.exit_code == 0
    assert "LVS-Nora -> lovense_" in result.stdout
    assert "Ambiguous: lovense_edge, lovense_lush, lovense_nora" in result.stdout


def test_match_command_unknown_device_is_clean() -> None:
    result = runner.invoke(cli.app, ["match", "Toaster", "--address", "00:00:00:00:00:00"])
    assert result.exit_code == 1
    assert "Error: No device configuration matches 'Toaster'" in result.stderr
    assert "Traceback" not in result.stdout
    assert "Traceback" not in result.stderr


def test_simulated_scan_lists_devices() -> None:
    result = runner.invoke(cli.app, ["scan", "--simulate", "--seconds", "0.5"])
    assert result.exit_code == 0
    assert "Demo Vibrator (demo) SIM-0001" in result.stdout
    assert "(demo_sensor) SIM-0002" in result.stdout
    assert "(lovense_nora) SIM-0003" in result.stdout


def test_catalog_load_error_is_clean(monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_catalog() -> DeviceCatalog:
        raise CatalogLoadError("Could not read devices")

    monkeypatch.setattr(cli, "load_catalog", failing_catalog)
    result = runner.invoke(cli.app, ["catalog"])
    assert result.exit_code == 1
    assert "Error: Could not read devices" in result.stderr


def test_override_warning_is_printed(monkeypatch: pytest.MonkeyPatch) -> None:
    def warn_catalog() -> DeviceCatalog:
        return DeviceCatalog(entries={}, warnings=("User device config 'demo' overrides packaged config",))

    monkeypatch.setattr(cli, "load_catalog", warn_catalog)
    result = runner.invoke(cli.app, ["catalog"])
    assert result.exit_code == 1
    assert "Warning: User device config 'demo' overrides packaged config" in result.stderr
    assert "No device configurations loaded" in result.stdout


def test_bad_config_file_is_clean(tmp_path: Path) -> None:
    config = tmp_path / "settings.yaml"
    config.write_text("write_failure_limit: -1\n", encoding="utf-8")
    result = runner.invoke(cli.app, ["--config", str(config), "scan", "--simulate", "--seconds", "0.1"])
    assert result.exit_code == 1
    assert "Error:" in result.stderr
