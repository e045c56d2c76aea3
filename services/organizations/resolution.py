"""Three-way resolution of shared entities and orphan cleanup.

Every shared-entity reference in a write payload is either reused as is
(id, no update flag), mutated in place (id plus isUpdated) or created from
the inline data (no id). Mutation changes the row every other referencer
sees; that is intended.
"""
from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy.orm import Session

from app.core.errors import ValidationError
from app.db.models.organizations import Address, Coordinates, Location
from services.organizations.schemas import AddressIn, CoordinatesIn, LocationIn
from services.references.store import AddressStore, CoordinatesStore, LocationStore

logger = logging.getLogger(__name__)


def _missing(payload, fields: tuple[str, ...]) -> list[str]:
    return [f for f in fields if getattr(payload, f) is None]


def _require_fields(label: str, payload, fields: tuple[str, ...]) -> None:
    missing = _missing(payload, fields)
    if missing:
        raise ValidationError(f"{label}: missing required field(s) {', '.join(missing)}")


class EntityResolver:
    """Resolves inline references against the session's transaction."""

    def __init__(self, db: Session):
        self.db = db
        self.coordinates = CoordinatesStore(db)
        self.addresses = AddressStore(db)
        self.locations = LocationStore(db)
        # towns detached from an address by an in-place edit
        self.released_towns: list[int] = []

    # --- coordinates ---

    def resolve_coordinates(
        self, coordinates_id: int | None, payload: CoordinatesIn | None, *, label: str = "coordinates"
    ) -> Coordinates:
        ref_id = coordinates_id if coordinates_id is not None else (payload.id if payload else None)
        if ref_id is not None:
            existing = self.coordinates.require(ref_id)
            if payload is None or not payload.is_updated:
                return existing
            self.apply_coordinates(existing, payload, label=label)
            return self.coordinates.save(existing)
        if payload is None:
            raise ValidationError(f"{label} is required")
        return self.new_coordinates(payload, label=label)

    def new_coordinates(self, payload: CoordinatesIn, *, label: str = "coordinates") -> Coordinates:
        _require_fields(label, payload, ("x", "y"))
        return self.coordinates.save(Coordinates(x=payload.x, y=payload.y))

    @staticmethod
    def apply_coordinates(target: Coordinates, payload: CoordinatesIn, *, label: str = "coordinates") -> None:
        _require_fields(label, payload, ("x", "y"))
        target.x = payload.x
        target.y = payload.y

    # --- locations ---

    def resolve_location(
        self,
        location_id: int | None,
        payload: LocationIn | None,
        *,
        label: str = "town",
        reuse_by_name: bool = True,
    ) -> Location:
        ref_id = location_id if location_id is not None else (payload.id if payload else None)
        if ref_id is not None:
            existing = self.locations.require(ref_id)
            if payload is None or not payload.is_updated:
                return existing
            self.apply_location(existing, payload, label=label)
            return self.locations.save(existing)
        if payload is None:
            raise ValidationError(f"{label} is required")
        if reuse_by_name and payload.name:
            # A repeated town is the same row only if it describes the same place.
            named = self.locations.find_by_name(payload.name)
            if named is not None and (payload.x, payload.y, payload.z) == (named.x, named.y, named.z):
                return named
        return self.new_location(payload, label=label)

    def new_location(self, payload: LocationIn, *, label: str = "location") -> Location:
        _require_fields(label, payload, ("name", "x", "y", "z"))
        name = payload.name.strip()
        if not name:
            raise ValidationError(f"{label}: name must not be blank")
        if self.locations.name_taken(name):
            raise ValidationError(f"Location with name '{name}' already exists")
        return self.locations.save(Location(name=name, x=payload.x, y=payload.y, z=payload.z))

    def apply_location(self, target: Location, payload: LocationIn, *, label: str = "location") -> None:
        _require_fields(label, payload, ("name", "x", "y", "z"))
        name = payload.name.strip()
        if not name:
            raise ValidationError(f"{label}: name must not be blank")
        if self.locations.name_taken(name, exclude_id=target.id):
            raise ValidationError(f"Location with name '{name}' already exists")
        target.name = name
        target.x = payload.x
        target.y = payload.y
        target.z = payload.z

    # --- addresses ---

    def resolve_address(self, address_id: int | None, payload: AddressIn | None, *, label: str = "address") -> Address:
        ref_id = address_id if address_id is not None else (payload.id if payload else None)
        if ref_id is not None:
            existing = self.addresses.require(ref_id)
            if payload is None or not payload.is_updated:
                return existing
            self.apply_address(existing, payload, label=label)
            return self.addresses.save(existing)
        if payload is None:
            raise ValidationError(f"{label} is required")
        return self.new_address(payload, label=label)

    def new_address(self, payload: AddressIn, *, label: str = "address") -> Address:
        if payload.town_id is None and payload.town is None:
            raise ValidationError(f"{label}.town is required")
        town = self.resolve_location(payload.town_id, payload.town, label=f"{label}.town")
        return self.addresses.save(Address(zip_code=payload.zip_code, town=town))

    def apply_address(self, target: Address, payload: AddressIn, *, label: str = "address") -> None:
        if payload.zip_code is not None:
            target.zip_code = payload.zip_code
        if payload.town_id is not None or payload.town is not None:
            previous = target.town_id
            town = self.resolve_location(payload.town_id, payload.town, label=f"{label}.town")
            target.town = town
            if previous is not None and previous != town.id:
                self.released_towns.append(previous)

    def release_orphans(self) -> list[str]:
        """Delete towns that in-place address edits left unreferenced."""
        if not self.released_towns:
            return []
        self.db.flush()
        removed = cleanup_orphans(self.db, location_ids=self.released_towns)
        self.released_towns = []
        return removed


def cleanup_orphans(
    db: Session,
    *,
    coordinates_id: int | None = None,
    official_address_id: int | None = None,
    postal_address_id: int | None = None,
    location_ids: Iterable[int] = (),
) -> list[str]:
    """Delete the given shared entities (and their towns) if nothing references them.

    Must run in the same transaction that removed the last reference, after
    that change has been flushed. Goes top-down: an address is dropped before
    its town is considered, and a town still used by another address stays.
    `location_ids` are towns whose address moved elsewhere. Returns a
    description of each deleted row.
    """
    deleted: list[str] = []
    coords = CoordinatesStore(db)
    addresses = AddressStore(db)
    locations = LocationStore(db)

    if coordinates_id is not None:
        row = coords.lock(coordinates_id)
        if row is not None and not coords.is_referenced(coordinates_id):
            coords.delete(row)
            deleted.append(f"coordinates:{coordinates_id}")

    town_ids: list[int] = list(location_ids)
    for address_id in dict.fromkeys(a for a in (official_address_id, postal_address_id) if a is not None):
        row = addresses.lock(address_id)
        if row is None or addresses.is_referenced(address_id):
            continue
        town_ids.append(row.town_id)
        addresses.delete(row)
        deleted.append(f"address:{address_id}")

    for town_id in dict.fromkeys(town_ids):
        row = locations.lock(town_id)
        if row is not None and not locations.is_referenced(town_id):
            locations.delete(row)
            deleted.append(f"location:{town_id}")

    if deleted:
        logger.debug("Removed orphaned shared entities: %s", ", ".join(deleted))
    return deleted
