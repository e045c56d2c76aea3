"""Organization and shared-entity writes.

Functions taking a `db` run inside the caller's transaction and never commit:
the import saga composes many of them into one batch. `RecordService` wraps
each one in its own retried SERIALIZABLE transaction for the REST endpoints
and announces the change once it has committed.
"""
from __future__ import annotations

import logging
from typing import Any, Callable

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.core.retry import run_in_transaction
from app.db.models.imports import ImportObjectType
from app.db.models.organizations import Address, Coordinates, Location, Organization, OrganizationType
from app.events import bus
from app.events.notifier import Notifier, notifier as default_notifier
from services.organizations import serializers
from services.organizations.resolution import EntityResolver, cleanup_orphans
from services.organizations.schemas import INT_MAX, AddressIn, CoordinatesIn, LocationIn, OrganizationIn
from services.references.store import AddressStore, CoordinatesStore, LocationStore, SharedEntityStore

logger = logging.getLogger(__name__)


def _full_name_taken(db: Session, full_name: str | None, exclude_id: int | None = None) -> bool:
    if not full_name:
        return False
    stmt = select(func.count(Organization.id)).where(Organization.full_name == full_name)
    if exclude_id is not None:
        stmt = stmt.where(Organization.id != exclude_id)
    return db.execute(stmt).scalar_one() > 0


def get_organization(db: Session, org_id: int) -> Organization:
    org = db.get(Organization, org_id)
    if org is None:
        raise NotFoundError(f"Organization with id {org_id} not found")
    return org


def _apply_scalars(org: Organization, payload: OrganizationIn) -> None:
    org.name = payload.name
    org.annual_turnover = payload.annual_turnover
    org.employees_count = payload.employees_count
    org.rating = payload.rating
    org.full_name = payload.full_name
    org.type = payload.type


def create_organization(db: Session, payload: OrganizationIn) -> Organization:
    if _full_name_taken(db, payload.full_name):
        raise ValidationError(f"Organization with full name '{payload.full_name}' already exists")

    resolver = EntityResolver(db)
    org = Organization()
    _apply_scalars(org, payload)
    org.coordinates = resolver.resolve_coordinates(payload.coordinates_id, payload.coordinates)

    postal = resolver.resolve_address(payload.postal_address_id, payload.postal_address, label="postalAddress")
    org.postal_address = postal
    if payload.reuse_postal_address_as_official:
        org.official_address = postal
    elif payload.official_address_id is not None or payload.official_address is not None:
        org.official_address = resolver.resolve_address(
            payload.official_address_id, payload.official_address, label="officialAddress"
        )
    else:
        org.official_address = None

    db.add(org)
    db.flush()
    resolver.release_orphans()
    return org


def update_organization(db: Session, org_id: int, payload: OrganizationIn) -> Organization:
    """Replace scalar fields and re-resolve references; replaced shared rows may become orphans."""
    org = get_organization(db, org_id)
    if payload.version is None:
        raise ValidationError("version is required to update an organization")
    if payload.version != org.version:
        raise ConflictError(
            f"Organization {org_id} was modified by someone else (version {org.version}, you sent {payload.version})"
        )
    if _full_name_taken(db, payload.full_name, exclude_id=org_id):
        raise ValidationError(f"Organization with full name '{payload.full_name}' already exists")

    old_coordinates_id = org.coordinates_id
    old_postal_id = org.postal_address_id
    old_official_id = org.official_address_id

    # The resolver flushes; touch the organization only afterwards so it is written once.
    resolver = EntityResolver(db)
    coordinates = org.coordinates
    if payload.coordinates_id is not None or payload.coordinates is not None:
        coordinates = resolver.resolve_coordinates(payload.coordinates_id, payload.coordinates)

    postal = org.postal_address
    if payload.postal_address_id is not None or payload.postal_address is not None:
        postal = resolver.resolve_address(payload.postal_address_id, payload.postal_address, label="postalAddress")

    if payload.reuse_postal_address_as_official:
        official = postal
    elif payload.official_address_id is not None or payload.official_address is not None:
        official = resolver.resolve_address(
            payload.official_address_id, payload.official_address, label="officialAddress"
        )
    else:
        official = None

    _apply_scalars(org, payload)
    org.coordinates = coordinates
    org.postal_address = postal
    org.official_address = official
    db.flush()

    cleanup_orphans(
        db,
        coordinates_id=old_coordinates_id if old_coordinates_id != org.coordinates_id else None,
        official_address_id=old_official_id if old_official_id not in (None, org.official_address_id) else None,
        postal_address_id=old_postal_id if old_postal_id != org.postal_address_id else None,
        location_ids=resolver.released_towns,
    )
    return org


def _remove_organization(db: Session, org: Organization) -> list[str]:
    coordinates_id = org.coordinates_id
    official_id = org.official_address_id
    postal_id = org.postal_address_id
    db.delete(org)
    db.flush()
    return cleanup_orphans(
        db, coordinates_id=coordinates_id, official_address_id=official_id, postal_address_id=postal_id
    )


def delete_organization(db: Session, org_id: int) -> list[str]:
    return _remove_organization(db, get_organization(db, org_id))


def dismiss_employees(db: Session, org_id: int) -> Organization:
    org = get_organization(db, org_id)
    org.employees_count = 0
    db.flush()
    return org


def absorb_organization(db: Session, absorbing_id: int, absorbed_id: int) -> Organization:
    """Move the absorbed organization's employees over, then delete it."""
    if absorbing_id == absorbed_id:
        raise ValidationError("An organization cannot absorb itself")
    absorbing = get_organization(db, absorbing_id)
    absorbed = get_organization(db, absorbed_id)
    total = (absorbing.employees_count or 0) + (absorbed.employees_count or 0)
    if total > INT_MAX:
        raise ValidationError(f"Absorbing would give {total} employees, more than {INT_MAX}")
    absorbing.employees_count = total
    _remove_organization(db, absorbed)
    db.flush()
    return absorbing


# --- standalone shared entities ---

def create_coordinates(db: Session, payload: CoordinatesIn) -> Coordinates:
    return EntityResolver(db).new_coordinates(payload)


def create_location(db: Session, payload: LocationIn) -> Location:
    return EntityResolver(db).new_location(payload)


def create_address(db: Session, payload: AddressIn) -> Address:
    return EntityResolver(db).new_address(payload)


def update_coordinates(db: Session, entity_id: int, payload: CoordinatesIn) -> Coordinates:
    store = CoordinatesStore(db)
    row = store.require(entity_id)
    EntityResolver.apply_coordinates(row, payload)
    return store.save(row)


def update_location(db: Session, entity_id: int, payload: LocationIn) -> Location:
    store = LocationStore(db)
    row = store.require(entity_id)
    EntityResolver(db).apply_location(row, payload)
    return store.save(row)


def update_address(db: Session, entity_id: int, payload: AddressIn) -> Address:
    store = AddressStore(db)
    row = store.require(entity_id)
    resolver = EntityResolver(db)
    resolver.apply_address(row, payload)
    row = store.save(row)
    resolver.release_orphans()
    return row


def delete_shared(store: SharedEntityStore, entity_id: int) -> None:
    """Delete a shared entity unless something still points at it."""
    store.require(entity_id)
    row = store.lock(entity_id)
    if store.is_referenced(entity_id):
        raise ConflictError(f"{store.label} with id {entity_id} is in use and cannot be deleted")
    store.delete(row)


# --- reads ---

def list_organizations(db: Session, *, limit: int = 100, offset: int = 0) -> list[Organization]:
    stmt = select(Organization).order_by(Organization.id.desc()).limit(limit).offset(offset)
    return list(db.execute(stmt).scalars().all())


def min_coordinates_organization(db: Session) -> Organization:
    stmt = (
        select(Organization)
        .join(Coordinates, Organization.coordinates_id == Coordinates.id)
        .order_by(Coordinates.x.asc(), Coordinates.y.asc(), Organization.id.asc())
        .limit(1)
    )
    org = db.execute(stmt).scalars().first()
    if org is None:
        raise NotFoundError("No organizations found")
    return org


def group_by_rating(db: Session) -> dict[int, int]:
    stmt = select(Organization.rating, func.count(Organization.id)).group_by(Organization.rating).order_by(Organization.rating)
    return {int(rating): int(n) for rating, n in db.execute(stmt).all()}


def count_by_type(db: Session, org_type: OrganizationType) -> int:
    return db.execute(select(func.count(Organization.id)).where(Organization.type == org_type)).scalar_one()


# --- import dispatch ---

Creator = Callable[[Session, Any], Any]

CREATORS: dict[ImportObjectType, Creator] = {
    ImportObjectType.ORGANIZATION: create_organization,
    ImportObjectType.COORDINATES: create_coordinates,
    ImportObjectType.LOCATION: create_location,
    ImportObjectType.ADDRESS: create_address,
}

TOPICS: dict[ImportObjectType, str] = {
    ImportObjectType.ORGANIZATION: bus.ORGANIZATIONS_CHANGED,
    ImportObjectType.COORDINATES: bus.COORDINATES_CHANGED,
    ImportObjectType.LOCATION: bus.LOCATIONS_CHANGED,
    ImportObjectType.ADDRESS: bus.ADDRESSES_CHANGED,
}


def create_record(db: Session, object_type: ImportObjectType, record) -> Any:
    return CREATORS[object_type](db, record)


class RecordService:
    """Retried, self-committing entry points. Each call is one transaction plus one notification."""

    def __init__(self, notifier: Notifier | None = None):
        self.notifier = notifier or default_notifier

    def _run(self, fn: Callable[[Session], Any], topic: str, action: str) -> Any:
        try:
            result = run_in_transaction(fn)
        except IntegrityError as exc:
            raise ValidationError(f"Constraint violation: {exc.orig}") from exc
        ref = result.get("id") if isinstance(result, dict) else None
        self.notifier.broadcast(topic, {"action": action, "id": ref})
        return result

    def _delete(self, store_cls: type[SharedEntityStore], entity_id: int, topic: str) -> dict:
        def work(db: Session) -> dict:
            delete_shared(store_cls(db), entity_id)
            return {"id": entity_id}

        return self._run(work, topic, "deleted")

    # organizations

    def create_organization(self, payload: OrganizationIn) -> dict:
        return self._run(
            lambda db: serializers.organization_out(create_organization(db, payload)),
            bus.ORGANIZATIONS_CHANGED,
            "created",
        )

    def update_organization(self, org_id: int, payload: OrganizationIn) -> dict:
        return self._run(
            lambda db: serializers.organization_out(update_organization(db, org_id, payload)),
            bus.ORGANIZATIONS_CHANGED,
            "updated",
        )

    def delete_organization(self, org_id: int) -> dict:
        def work(db: Session) -> dict:
            removed = delete_organization(db, org_id)
            return {"id": org_id, "removedOrphans": removed}

        return self._run(work, bus.ORGANIZATIONS_CHANGED, "deleted")

    def dismiss_employees(self, org_id: int) -> dict:
        return self._run(
            lambda db: serializers.organization_out(dismiss_employees(db, org_id)),
            bus.ORGANIZATIONS_CHANGED,
            "updated",
        )

    def absorb(self, absorbing_id: int, absorbed_id: int) -> dict:
        return self._run(
            lambda db: serializers.organization_out(absorb_organization(db, absorbing_id, absorbed_id)),
            bus.ORGANIZATIONS_CHANGED,
            "absorbed",
        )

    # shared entities

    def create_coordinates(self, payload: CoordinatesIn) -> dict:
        return self._run(
            lambda db: serializers.coordinates_out(create_coordinates(db, payload)), bus.COORDINATES_CHANGED, "created"
        )

    def update_coordinates(self, entity_id: int, payload: CoordinatesIn) -> dict:
        return self._run(
            lambda db: serializers.coordinates_out(update_coordinates(db, entity_id, payload)),
            bus.COORDINATES_CHANGED,
            "updated",
        )

    def delete_coordinates(self, entity_id: int) -> dict:
        return self._delete(CoordinatesStore, entity_id, bus.COORDINATES_CHANGED)

    def create_location(self, payload: LocationIn) -> dict:
        return self._run(
            lambda db: serializers.location_out(create_location(db, payload)), bus.LOCATIONS_CHANGED, "created"
        )

    def update_location(self, entity_id: int, payload: LocationIn) -> dict:
        return self._run(
            lambda db: serializers.location_out(update_location(db, entity_id, payload)),
            bus.LOCATIONS_CHANGED,
            "updated",
        )

    def delete_location(self, entity_id: int) -> dict:
        return self._delete(LocationStore, entity_id, bus.LOCATIONS_CHANGED)

    def create_address(self, payload: AddressIn) -> dict:
        return self._run(
            lambda db: serializers.address_out(create_address(db, payload)), bus.ADDRESSES_CHANGED, "created"
        )

    def update_address(self, entity_id: int, payload: AddressIn) -> dict:
        return self._run(
            lambda db: serializers.address_out(update_address(db, entity_id, payload)),
            bus.ADDRESSES_CHANGED,
            "updated",
        )

    def delete_address(self, entity_id: int) -> dict:
        return self._delete(AddressStore, entity_id, bus.ADDRESSES_CHANGED)
