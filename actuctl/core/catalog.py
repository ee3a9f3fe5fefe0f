"""Device catalog loading and validation for YAML device configuration files."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterable
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

from actuctl.core.device_match import best_entries
from actuctl.core.errors import CatalogLoadError, CatalogNotFound, CatalogValidationError
from actuctl.core.model import (
    CatalogEntry,
    DeviceIdentifier,
    Feature,
    FeatureKind,
    FeatureSchema,
    MatchRules,
    TransportSpec,
)
from actuctl.core.yamlio import load_schema, read_yaml, schema_validator, validate
from actuctl.protocols import TRANSLATORS

_UUID_RE = re.compile(r"^[0-9a-f]{4}$|^[0-9a-f]{8}$|^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceCatalog:
    entries: dict[str, CatalogEntry]
    warnings: tuple[str, ...] = ()

    def get(self, family: str) -> CatalogEntry | None:
        return self.entries.get(family)

    def candidates(self, identifier: DeviceIdentifier) -> list[CatalogEntry]:
        return best_entries(identifier, self.entries.values())

    def resolve(self, identifier: DeviceIdentifier) -> CatalogEntry:
        """Resolve an identifier to exactly one entry.

        Ties are broken by the catalog order; callers that can probe the
        device should use :meth:`candidates` instead.
        """
        found = self.candidates(identifier)
        if not found:
            raise CatalogNotFound(
                f"No device configuration matches '{identifier.name}' ({identifier.address})"
            )
        return found[0]

    @classmethod
    def from_entries(cls, entries: Iterable[CatalogEntry]) -> DeviceCatalog:
        return cls(entries={entry.id: entry for entry in entries})


def _catalog_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_config / "actuctl/devices", xdg_data / "actuctl/devices"


def _normalize_uuid(value: str, *, context: str) -> str:
    normalized = value.strip().lower()
    if not _UUID_RE.match(normalized):
        raise CatalogValidationError(
            f"{context} must be a 16-bit, 32-bit, or 128-bit UUID string"
        )
    return normalized


def _build_feature(spec: dict[str, Any], *, context: str) -> Feature:
    kind = FeatureKind(spec["kind"])
    if kind is FeatureKind.SENSOR:
        low, high = spec["range"]
        if low > high:
            raise CatalogValidationError(f"{context}.range must be ascending")
        return Feature(kind=kind, sensor_type=spec["sensor"], value_range=(low, high))
    return Feature(kind=kind, actuator_type=spec["actuator"], step_count=int(spec["steps"]))


def _build_transport(doc: dict[str, Any]) -> TransportSpec:
    spec = doc["transport"]
    transport_type = spec["type"]
    if transport_type == "ble":
        return TransportSpec(
            type="ble",
            service_uuid=_normalize_uuid(spec["service_uuid"], context=f"{doc['id']}.transport.service_uuid"),
            write_char_uuid=_normalize_uuid(
                spec["write_char_uuid"], context=f"{doc['id']}.transport.write_char_uuid"
            ),
            notify_char_uuid=_normalize_uuid(
                spec["notify_char_uuid"], context=f"{doc['id']}.transport.notify_char_uuid"
            )
            if "notify_char_uuid" in spec
            else None,
            write_with_response=spec.get("write_with_response", True),
            timeout_s=float(spec.get("timeout_s", 5.0)),
        )
    if transport_type == "serial":
        return TransportSpec(
            type="serial",
            baudrate=int(spec["baudrate"]),
            timeout_s=float(spec.get("timeout_s", 3.0)),
        )
    return TransportSpec(type=transport_type, timeout_s=float(spec.get("timeout_s", 5.0)))


def build_entry(doc: dict[str, Any], source: Path | Traversable | str) -> CatalogEntry:
    validate(schema_validator(load_schema("catalog.schema.json")), doc, source, error=CatalogValidationError)
    if doc["protocol"] not in TRANSLATORS:
        raise CatalogValidationError(
            f"{source}: {doc['id']}.protocol names unknown protocol '{doc['protocol']}'; "
            f"known protocols: {', '.join(sorted(TRANSLATORS))}"
        )

    features = tuple(
        _build_feature(spec, context=f"{doc['id']}.features.{i}")
        for i, spec in enumerate(doc["features"])
    )
    match = doc["match"]
    return CatalogEntry(
        id=doc["id"],
        name=doc["name"],
        protocol=doc["protocol"],
        match=MatchRules(
            name_prefix=tuple(match.get("name_prefix", [])),
            name_contains=tuple(match.get("name_contains", [])),
            address_prefix=tuple(p.strip().upper() for p in match.get("address_prefix", [])),
            services=tuple(
                _normalize_uuid(s, context=f"{doc['id']}.match.services") for s in match.get("services", [])
            ),
            identify=match.get("identify"),
        ),
        transport=_build_transport(doc),
        features=FeatureSchema(features),
    )


def _iter_packaged_paths() -> list[Traversable]:
    root = resources.files("actuctl.devices")
    return [item for item in root.iterdir() if item.name.endswith((".yml", ".yaml"))]


def _iter_user_paths() -> list[Path]:
    paths: list[Path] = []
    for directory in _catalog_dirs():
        if not directory.exists() or not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"}))
    return paths


def _load_entry(path: Path | Traversable) -> CatalogEntry:
    doc = read_yaml(path, load_error=CatalogLoadError, invalid_error=CatalogValidationError)
    return build_entry(doc, path)


def load_catalog() -> DeviceCatalog:
    entries: dict[str, CatalogEntry] = {}
    warnings: list[str] = []

    for path in sorted(_iter_packaged_paths(), key=lambda p: p.name):
        entry = _load_entry(path)
        entries[entry.id] = entry

    for path in _iter_user_paths():
        entry = _load_entry(path)
        if entry.id in entries:
            warning = f"User device config '{entry.id}' overrides packaged config"
            LOGGER.warning(warning)
            warnings.append(warning)
        entries[entry.id] = entry

    return DeviceCatalog(entries=entries, warnings=tuple(warnings))
