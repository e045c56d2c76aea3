"""Persistence primitives for the shared-reference entities.

Coordinates, Address and Location rows can be pointed to by many parents at
once. Nothing stores a reference count: `is_referenced` recomputes it with a
query, and callers must run that query in the same transaction as the delete
it guards (see services.organizations.resolution.cleanup_orphans).
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Generic, TypeVar

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError
from app.db.models.organizations import Address, Coordinates, Location, Organization

E = TypeVar("E", Coordinates, Address, Location)


class SharedEntityStore(ABC, Generic[E]):
    model: type[E]
    label: str

    def __init__(self, db: Session):
        self.db = db

    def get(self, entity_id: int) -> E | None:
        return self.db.get(self.model, entity_id)

    def require(self, entity_id: int) -> E:
        entity = self.get(entity_id)
        if entity is None:
            raise NotFoundError(f"{self.label} with id {entity_id} not found")
        return entity

    def lock(self, entity_id: int) -> E | None:
        """Load the row with SELECT ... FOR UPDATE (a no-op on SQLite).

        On PostgreSQL an inserted foreign key takes a KEY SHARE lock on the row it
        points to, so holding this lock serializes against new referencers.
        """
        stmt = select(self.model).where(self.model.id == entity_id).with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def save(self, entity: E) -> E:
        if entity.id is None:
            self.db.add(entity)
        else:
            entity = self.db.merge(entity)
        self.db.flush()
        return entity

    def delete(self, entity: E) -> None:
        self.db.delete(entity)
        self.db.flush()

    @abstractmethod
    def reference_count(self, entity_id: int) -> int:
        """Number of live rows pointing at the entity."""

    def is_referenced(self, entity_id: int) -> bool:
        return self.reference_count(entity_id) > 0

    def page(self, *, limit: int = 100, offset: int = 0) -> list[E]:
        stmt = select(self.model).order_by(self.model.id.asc()).limit(limit).offset(offset)
        return list(self.db.execute(stmt).scalars().all())

    def count(self) -> int:
        return self.db.execute(select(func.count(self.model.id))).scalar_one()


class CoordinatesStore(SharedEntityStore[Coordinates]):
    model = Coordinates
    label = "Coordinates"

    def reference_count(self, entity_id: int) -> int:
        stmt = select(func.count(Organization.id)).where(Organization.coordinates_id == entity_id)
        return self.db.execute(stmt).scalar_one()


class AddressStore(SharedEntityStore[Address]):
    model = Address
    label = "Address"

    def reference_count(self, entity_id: int) -> int:
        stmt = select(func.count(Organization.id)).where(
            or_(Organization.postal_address_id == entity_id, Organization.official_address_id == entity_id)
        )
        return self.db.execute(stmt).scalar_one()


class LocationStore(SharedEntityStore[Location]):
    model = Location
    label = "Location"

    def reference_count(self, entity_id: int) -> int:
        stmt = select(func.count(Address.id)).where(Address.town_id == entity_id)
        return self.db.execute(stmt).scalar_one()

    def find_by_name(self, name: str) -> Location | None:
        stmt = select(Location).where(func.lower(Location.name) == name.strip().lower())
        return self.db.execute(stmt).scalars().first()

    def name_taken(self, name: str, exclude_id: int | None = None) -> bool:
        if not name or not name.strip():
            return False
        stmt = select(func.count(Location.id)).where(func.lower(Location.name) == name.strip().lower())
        if exclude_id is not None:
            stmt = stmt.where(Location.id != exclude_id)
        return self.db.execute(stmt).scalar_one() > 0
