from __future__ import annotations

import pytest
from sqlalchemy import func, select

from app.core.errors import NotFoundError, ValidationError
from app.db.models.organizations import Address, Coordinates, Location
from services.organizations import records
from services.organizations.resolution import EntityResolver, cleanup_orphans
from services.organizations.schemas import AddressIn, CoordinatesIn, LocationIn, OrganizationIn


def _count(db, model) -> int:
    return db.execute(select(func.count(model.id))).scalar_one()


def test_reuse_by_id_ignores_inline_data(db):
    resolver = EntityResolver(db)
    coords = resolver.new_coordinates(CoordinatesIn(x=1, y=2))

    same = resolver.resolve_coordinates(coords.id, CoordinatesIn(x=99, y=99))
    db.flush()
    db.expire_all()

    assert same.id == coords.id
    assert (db.get(Coordinates, coords.id).x, db.get(Coordinates, coords.id).y) == (1, 2)
    assert _count(db, Coordinates) == 1


def test_update_flag_mutates_in_place_for_every_referencer(db, org_data):
    first = records.create_organization(db, OrganizationIn.model_validate(org_data("A")))
    second = records.create_organization(
        db, OrganizationIn.model_validate(org_data("B", coordinatesId=first.coordinates_id, coordinates=None))
    )
    assert second.coordinates_id == first.coordinates_id

    EntityResolver(db).resolve_coordinates(first.coordinates_id, CoordinatesIn(x=50, y=60, is_updated=True))
    db.flush()
    db.expire_all()

    for org in (db.get(type(first), first.id), db.get(type(second), second.id)):
        assert (org.coordinates.x, org.coordinates.y) == (50, 60)


def test_create_without_id_inserts_new_row(db):
    resolver = EntityResolver(db)
    a = resolver.resolve_coordinates(None, CoordinatesIn(x=1, y=1))
    b = resolver.resolve_coordinates(None, CoordinatesIn(x=1, y=1))
    assert a.id != b.id


def test_unknown_id_is_not_found(db):
    with pytest.raises(NotFoundError):
        EntityResolver(db).resolve_address(12345, None)


def test_address_without_town_names_the_missing_field(db):
    with pytest.raises(ValidationError) as err:
        EntityResolver(db).resolve_address(None, AddressIn(zip_code="1234567"), label="postalAddress")
    assert "postalAddress.town" in err.value.message


def test_missing_reference_and_payload_is_rejected(db):
    with pytest.raises(ValidationError) as err:
        EntityResolver(db).resolve_coordinates(None, None)
    assert "coordinates is required" in err.value.message


def test_partial_inline_payload_is_rejected(db):
    resolver = EntityResolver(db)
    with pytest.raises(ValidationError) as err:
        resolver.resolve_coordinates(None, CoordinatesIn(x=1))
    assert "y" in err.value.message

    coords = resolver.new_coordinates(CoordinatesIn(x=1, y=1))
    with pytest.raises(ValidationError):
        resolver.resolve_coordinates(coords.id, CoordinatesIn(x=5, is_updated=True))


def test_nested_town_follows_the_same_rule(db):
    resolver = EntityResolver(db)
    town = resolver.new_location(LocationIn(name="Springfield", x=1, y=1, z=1))

    reused = resolver.resolve_address(None, AddressIn(zip_code="1234567", town_id=town.id))
    assert reused.town_id == town.id

    resolver.resolve_address(
        None,
        AddressIn(zip_code="7654321", town=LocationIn(id=town.id, name="Shelbyville", x=2, y=2, z=2, is_updated=True)),
    )
    db.flush()
    db.expire_all()
    assert db.get(Location, town.id).name == "Shelbyville"
    assert _count(db, Location) == 1


def test_inline_town_with_known_name_reuses_the_same_place(db):
    resolver = EntityResolver(db)
    town = resolver.new_location(LocationIn(name="Springfield", x=1, y=1, z=1))
    addr = resolver.resolve_address(None, AddressIn(town=LocationIn(name="springfield", x=1, y=1, z=1)))
    assert addr.town_id == town.id
    assert _count(db, Location) == 1


def test_inline_town_with_known_name_elsewhere_is_rejected(db):
    resolver = EntityResolver(db)
    town = resolver.new_location(LocationIn(name="Springfield", x=1, y=1, z=1))
    with pytest.raises(ValidationError) as err:
        resolver.resolve_address(None, AddressIn(town=LocationIn(name="springfield", x=9, y=9, z=9)))
    assert "already exists" in err.value.message
    db.expire_all()
    assert db.get(Location, town.id).x == 1


def test_moving_a_shared_address_drops_the_old_town(db, org_data):
    first = records.create_organization(db, OrganizationIn.model_validate(org_data("A", town="T1")))
    address_id = first.postal_address_id
    old_town = first.postal_address.town_id

    moved = dict(org_data("B"), postalAddressId=address_id)
    moved["postalAddress"] = {"isUpdated": True, "town": {"name": "T2", "x": 2, "y": 2, "z": 2}}
    records.create_organization(db, OrganizationIn.model_validate(moved))

    assert db.get(Location, old_town) is None
    assert db.get(Address, address_id).town.name == "T2"
    assert _count(db, Location) == 1


def test_address_update_keeps_a_town_other_addresses_use(db):
    resolver = EntityResolver(db)
    town = resolver.new_location(LocationIn(name="Springfield", x=1, y=1, z=1))
    moving = resolver.new_address(AddressIn(town_id=town.id))
    resolver.new_address(AddressIn(town_id=town.id))
    other = resolver.new_location(LocationIn(name="Shelbyville", x=2, y=2, z=2))

    records.update_address(db, moving.id, AddressIn(town_id=other.id))
    assert db.get(Location, town.id) is not None

    records.update_address(db, moving.id, AddressIn(town_id=town.id))
    assert db.get(Location, other.id) is None


def test_standalone_location_name_must_be_unique(db):
    resolver = EntityResolver(db)
    resolver.new_location(LocationIn(name="Springfield", x=1, y=1, z=1))
    with pytest.raises(ValidationError):
        resolver.new_location(LocationIn(name="SPRINGFIELD", x=1, y=1, z=1))


def test_shared_address_survives_until_last_organization_goes(db, org_data):
    first = records.create_organization(db, OrganizationIn.model_validate(org_data("A")))
    address_id = first.postal_address_id
    town_id = first.postal_address.town_id
    second = records.create_organization(
        db, OrganizationIn.model_validate(org_data("B", postalAddressId=address_id, postalAddress=None))
    )

    records.delete_organization(db, first.id)
    assert db.get(Address, address_id) is not None
    assert db.get(Location, town_id) is not None

    removed = records.delete_organization(db, second.id)
    assert db.get(Address, address_id) is None
    assert db.get(Location, town_id) is None
    assert f"address:{address_id}" in removed
    assert f"location:{town_id}" in removed
    assert _count(db, Coordinates) == 0


def test_town_shared_by_another_address_is_kept(db):
    resolver = EntityResolver(db)
    town = resolver.new_location(LocationIn(name="Springfield", x=1, y=1, z=1))
    lonely = resolver.new_address(AddressIn(town_id=town.id))
    resolver.new_address(AddressIn(town_id=town.id))

    removed = cleanup_orphans(db, postal_address_id=lonely.id)

    assert removed == [f"address:{lonely.id}"]
    assert db.get(Location, town.id) is not None


def test_cleanup_skips_official_when_same_as_postal(db):
    resolver = EntityResolver(db)
    addr = resolver.new_address(AddressIn(town=LocationIn(name="T", x=0, y=0, z=0)))
    removed = cleanup_orphans(db, official_address_id=addr.id, postal_address_id=addr.id)
    assert removed.count(f"address:{addr.id}") == 1
