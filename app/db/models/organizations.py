from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Enum, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.models.common import HasId, utcnow


class OrganizationType(str, enum.Enum):
    COMMERCIAL = "COMMERCIAL"
    PUBLIC = "PUBLIC"
    GOVERNMENT = "GOVERNMENT"
    TRUST = "TRUST"
    PRIVATE_LIMITED_COMPANY = "PRIVATE_LIMITED_COMPANY"
    OPEN_JOINT_STOCK_COMPANY = "OPEN_JOINT_STOCK_COMPANY"


class Coordinates(Base, HasId):
    """Plain value holder shared by any number of organizations."""

    __tablename__ = "coordinates"

    x: Mapped[float] = mapped_column(Float, nullable=False)
    y: Mapped[float] = mapped_column(Float, nullable=False)


class Location(Base, HasId):
    """A town. Shared by addresses; the name is unique across all locations."""

    __tablename__ = "location"

    x: Mapped[float] = mapped_column(Float, nullable=False)
    y: Mapped[float] = mapped_column(Float, nullable=False)
    z: Mapped[float] = mapped_column(Float, nullable=False)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)


class Address(Base, HasId):
    __tablename__ = "address"

    zip_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    town_id: Mapped[int] = mapped_column(Integer, ForeignKey("location.id"), nullable=False, index=True)
    town: Mapped[Location] = relationship("Location")


class Organization(Base, HasId):
    """Parent record. Holds references (never copies) to its shared entities.

    `version` is the optimistic concurrency token: SQLAlchemy bumps it on every
    UPDATE and adds it to the WHERE clause, so a concurrent write shows up as
    StaleDataError at flush time.
    """

    __tablename__ = "organization"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    coordinates_id: Mapped[int] = mapped_column(Integer, ForeignKey("coordinates.id"), nullable=False, index=True)
    coordinates: Mapped[Coordinates] = relationship("Coordinates")

    creation_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    annual_turnover: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    employees_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(512), unique=True, nullable=True)
    type: Mapped[OrganizationType] = mapped_column(Enum(OrganizationType), nullable=False)

    postal_address_id: Mapped[int] = mapped_column(Integer, ForeignKey("address.id"), nullable=False, index=True)
    postal_address: Mapped[Address] = relationship("Address", foreign_keys=[postal_address_id])

    official_address_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("address.id"), nullable=True, index=True)
    official_address: Mapped[Address | None] = relationship("Address", foreign_keys=[official_address_id])

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


Index("ix_organization_type", Organization.type)
Index("ix_organization_rating", Organization.rating)
