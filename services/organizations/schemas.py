from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.db.models.organizations import OrganizationType

ZIP_CODE_MIN_LENGTH = 7

# Column limits: employees_count and rating are INTEGER, annual_turnover is BIGINT.
INT_MAX = 2**31 - 1
BIGINT_MAX = 2**63 - 1


class Payload(BaseModel):
    """Wire format is camelCase (zipCode, townId, isUpdated); code uses snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# Inline shared-entity payloads keep every field optional: which ones are required
# depends on whether the payload is reused, mutated or created, and that is decided
# by services.organizations.resolution.

class CoordinatesIn(Payload):
    id: int | None = None
    x: float | None = None
    y: float | None = None
    is_updated: bool = False


class LocationIn(Payload):
    id: int | None = None
    x: float | None = None
    y: float | None = None
    z: float | None = None
    name: str | None = Field(default=None, max_length=255)
    is_updated: bool = False


class AddressIn(Payload):
    id: int | None = None
    zip_code: str | None = Field(default=None, min_length=ZIP_CODE_MIN_LENGTH, max_length=64)
    town_id: int | None = None
    town: LocationIn | None = None
    is_updated: bool = False


class OrganizationIn(Payload):
    id: int | None = None
    name: str = Field(..., min_length=1, max_length=255)

    coordinates_id: int | None = None
    coordinates: CoordinatesIn | None = None

    annual_turnover: int | None = Field(default=None, gt=0, le=BIGINT_MAX)
    employees_count: int = Field(..., ge=0, le=INT_MAX)
    rating: int = Field(..., gt=0, le=INT_MAX)
    full_name: str | None = Field(default=None, max_length=512)
    type: OrganizationType

    postal_address_id: int | None = None
    postal_address: AddressIn | None = None
    official_address_id: int | None = None
    official_address: AddressIn | None = None
    reuse_postal_address_as_official: bool = False

    version: int | None = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name must not be blank")
        return v.strip()

    @field_validator("full_name")
    @classmethod
    def _full_name_not_blank(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            raise ValueError("fullName must not be blank")
        return v
