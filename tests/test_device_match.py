from actuctl.core.device_match import best_entries, match_score
from actuctl.core.model import (
    CatalogEntry,
    DeviceIdentifier,
    Feature,
    FeatureKind,
    FeatureSchema,
    MatchRules,
    TransportSpec,
)


def _entry(
    entry_id: str,
    *,
    name_prefix: tuple[str, ...] = (),
    address_prefix: tuple[str, ...] = (),
    services: tuple[str, ...] = (),
    transport: str = "ble",
) -> CatalogEntry:
    return CatalogEntry(
        id=entry_id,
        name=entry_id,
        protocol="demo",
        match=MatchRules(name_prefix=name_prefix, address_prefix=address_prefix, services=services),
        transport=TransportSpec(type=transport),
        features=FeatureSchema((Feature(kind=FeatureKind.SCALAR, actuator_type="Vibrate", step_count=10),)),
    )


def test_match_score_prefers_combined_match() -> None:
    device = DeviceIdentifier(address="88:92:cc:00:11:22", name="Demo-1000", transport="ble")
    entry = _entry("p1", name_prefix=("Demo",), address_prefix=("88:92:CC",))
    assert match_score(device, entry) == 3


def test_service_outweighs_address_and_name() -> None:
    device = DeviceIdentifier(
        address="88:92:CC:00:11:22",
        name="Generic",
        transport="ble",
        services=("F000BB03-0451-4000-B000-000000000000",),
    )
    by_service = _entry("service", services=("f000bb03-0451-4000-b000-000000000000",))
    by_address_and_name = _entry("both", name_prefix=("Generic",), address_prefix=("88:92:CC",))

    assert [e.id for e in best_entries(device, [by_address_and_name, by_service])] == ["service"]


def test_best_entries_prefers_address_only_over_name_only() -> None:
    device = DeviceIdentifier(address="88:92:CC:00:11:22", name="Generic Device", transport="ble")
    name_entry = _entry("name", name_prefix=("Generic",), address_prefix=("AA:BB:CC",))
    address_entry = _entry("address", name_prefix=("Other",), address_prefix=("88:92:CC",))

    assert [e.id for e in best_entries(device, [name_entry, address_entry])] == ["address"]


def test_transport_mismatch_never_matches() -> None:
    device = DeviceIdentifier(address="/dev/ttyUSB0", name="Demo-1000", transport="serial")
    entry = _entry("p1", name_prefix=("Demo",), transport="ble")
    assert match_score(device, entry) == 0
    assert best_entries(device, [entry]) == []


def test_ties_are_kept_in_order() -> None:
    device = DeviceIdentifier(address="C4:00:00:00:00:01", name="LVS-Z36", transport="ble")
    first = _entry("first", name_prefix=("LVS-",))
    second = _entry("second", name_prefix=("LVS-",))
    assert [e.id for e in best_entries(device, [first, second])] == ["first", "second"]
