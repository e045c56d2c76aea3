from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.db.models.organizations import OrganizationType
from app.db.session import get_db
from services.organizations import records, serializers
from services.organizations.records import RecordService
from services.organizations.schemas import OrganizationIn

router = APIRouter(prefix="/api/organizations", tags=["organizations"])
operations_router = APIRouter(prefix="/api/operations", tags=["operations"])

_service: RecordService | None = None


def get_record_service() -> RecordService:
    global _service
    if _service is None:
        _service = RecordService()
    return _service


@router.get("")
def list_organizations(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    return [serializers.organization_out(o) for o in records.list_organizations(db, limit=limit, offset=offset)]


@router.get("/types")
def organization_types():
    return [t.value for t in OrganizationType]


@router.get("/{org_id}")
def get_organization(org_id: int, db: Session = Depends(get_db)):
    return serializers.organization_out(records.get_organization(db, org_id))


@router.post("", status_code=201)
def create_organization(payload: OrganizationIn, service: RecordService = Depends(get_record_service)):
    return service.create_organization(payload)


@router.put("/{org_id}")
def update_organization(org_id: int, payload: OrganizationIn, service: RecordService = Depends(get_record_service)):
    return service.update_organization(org_id, payload)


@router.delete("/{org_id}")
def delete_organization(org_id: int, service: RecordService = Depends(get_record_service)):
    return service.delete_organization(org_id)


@operations_router.get("/min-coordinates")
def min_coordinates(db: Session = Depends(get_db)):
    return serializers.organization_out(records.min_coordinates_organization(db))


@operations_router.get("/group-by-rating")
def group_by_rating(db: Session = Depends(get_db)):
    return records.group_by_rating(db)


@operations_router.get("/count-by-type")
def count_by_type(org_type: OrganizationType = Query(..., alias="type"), db: Session = Depends(get_db)):
    return {"type": org_type.value, "count": records.count_by_type(db, org_type)}


@operations_router.post("/dismiss-employees")
def dismiss_employees(
    organization_id: int = Query(..., alias="organizationId"),
    service: RecordService = Depends(get_record_service),
):
    org = service.dismiss_employees(organization_id)
    return {"organization": org, "message": f'All employees of "{org["name"]}" were dismissed'}


@operations_router.post("/absorb")
def absorb(
    absorbing_id: int = Query(..., alias="absorbingId"),
    absorbed_id: int = Query(..., alias="absorbedId"),
    service: RecordService = Depends(get_record_service),
):
    org = service.absorb(absorbing_id, absorbed_id)
    return {"organization": org, "message": f"Absorbed. New employee count: {org['employeesCount']}"}
