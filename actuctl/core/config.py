"""Runtime settings loaded from an optional YAML file."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path

from actuctl.core.errors import ConfigError
from actuctl.core.yamlio import load_schema, read_yaml, schema_validator, validate

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settings:
    server_name: str = "actuctl"
    # 0 disables the ping watchdog.
    max_ping_time_s: float = 0.0
    # 0 retires a session id as soon as its device is removed.
    session_reuse_window_s: float = 0.0
    write_failure_limit: int = 1
    sensor_read_timeout_s: float = 2.0
    probe_timeout_s: float = 1.0
    stop_devices_on_disconnect: bool = True
    serial_poll_interval_s: float = 2.0


def default_config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "actuctl/config.yaml"


def load_settings(path: Path | None = None) -> Settings:
    explicit = path is not None or "ACTUCTL_CONFIG" in os.environ
    if path is None:
        env_path = os.environ.get("ACTUCTL_CONFIG")
        path = Path(env_path) if env_path else default_config_path()

    if not path.exists():
        if explicit:
            raise ConfigError(f"Config file {path} does not exist")
        return Settings()

    doc = read_yaml(path, load_error=ConfigError, invalid_error=ConfigError)
    validate(schema_validator(load_schema("config.schema.json")), doc, path, error=ConfigError)
    LOGGER.debug("Loaded settings from %s", path)
    return replace(Settings(), **doc)
