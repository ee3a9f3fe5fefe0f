"""Device-to-catalog matching logic."""

from __future__ import annotations

from collections.abc import Iterable

from actuctl.core.model import CatalogEntry, DeviceIdentifier


def _address_prefix_match(address: str, entry: CatalogEntry) -> bool:
    upper_address = address.upper()
    return any(upper_address.startswith(prefix) for prefix in entry.match.address_prefix)


def _name_match(name: str, entry: CatalogEntry) -> bool:
    lower_name = name.lower()
    if any(lower_name.startswith(prefix.lower()) for prefix in entry.match.name_prefix):
        return True
    return any(token.lower() in lower_name for token in entry.match.name_contains)


def _service_match(services: tuple[str, ...], entry: CatalogEntry) -> bool:
    advertised = {service.lower() for service in services}
    return any(service in advertised for service in entry.match.services)


def match_score(identifier: DeviceIdentifier, entry: CatalogEntry) -> int:
    if identifier.transport != entry.transport.type:
        return 0
    score = 0
    if _service_match(identifier.services, entry):
        score += 4
    if _address_prefix_match(identifier.address, entry):
        score += 2
    if _name_match(identifier.name, entry):
        score += 1
    return score


def best_entries(identifier: DeviceIdentifier, entries: Iterable[CatalogEntry]) -> list[CatalogEntry]:
    """Return every entry sharing the highest non-zero score, in input order."""
    best: list[CatalogEntry] = []
    best_score = 0
    for entry in entries:
        score = match_score(identifier, entry)
        if score > best_score:
            best = [entry]
            best_score = score
        elif score == best_score and score > 0:
            best.append(entry)
    return best
