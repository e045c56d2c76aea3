from __future__ import annotations

import pytest

from app.core.errors import NotFoundError
from app.db.models.organizations import Address, Coordinates, Location, Organization, OrganizationType
from services.references.store import AddressStore, CoordinatesStore, LocationStore, SharedEntityStore


def _graph(db):
    town = Location(name="Springfield", x=1, y=2, z=3)
    addr = Address(zip_code="1234567", town=town)
    coords = Coordinates(x=1, y=1)
    org = Organization(
        name="Acme",
        coordinates=coords,
        employees_count=1,
        rating=1,
        type=OrganizationType.PUBLIC,
        postal_address=addr,
    )
    db.add(org)
    db.flush()
    return org


def test_reference_counts_follow_live_parents(db):
    org = _graph(db)
    coords, addresses, locations = CoordinatesStore(db), AddressStore(db), LocationStore(db)

    assert coords.reference_count(org.coordinates_id) == 1
    assert addresses.reference_count(org.postal_address_id) == 1
    assert locations.is_referenced(org.postal_address.town_id)

    org.official_address = org.postal_address
    db.flush()
    # an organization using the row for both roles counts once
    assert addresses.reference_count(org.postal_address_id) == 1
    assert addresses.is_referenced(org.postal_address_id)

    db.delete(org)
    db.flush()
    assert not coords.is_referenced(org.coordinates_id)
    assert not addresses.is_referenced(org.postal_address_id)
    # the address still exists, so its town is still referenced
    assert locations.is_referenced(org.postal_address.town_id)


def test_base_store_cannot_be_instantiated(db):
    with pytest.raises(TypeError):
        SharedEntityStore(db)


def test_require_raises_not_found(db):
    with pytest.raises(NotFoundError) as err:
        CoordinatesStore(db).require(404)
    assert "Coordinates with id 404" in err.value.message


def test_save_insert_then_update(db):
    store = CoordinatesStore(db)
    row = store.save(Coordinates(x=1, y=2))
    assert row.id is not None
    row.x = 10
    store.save(row)
    db.expire_all()
    assert store.get(row.id).x == 10


def test_page_and_count(db):
    store = CoordinatesStore(db)
    for i in range(5):
        store.save(Coordinates(x=i, y=i))
    assert store.count() == 5
    page = store.page(limit=2, offset=2)
    assert [c.x for c in page] == [2, 3]


def test_location_name_lookup_is_case_insensitive(db):
    store = LocationStore(db)
    town = store.save(Location(name="Springfield", x=0, y=0, z=0))
    assert store.find_by_name("  springFIELD ").id == town.id
    assert store.name_taken("SPRINGFIELD")
    assert not store.name_taken("springfield", exclude_id=town.id)
    assert not store.name_taken("   ")
