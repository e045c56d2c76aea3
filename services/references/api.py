from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.db.session import get_db
from services.organizations import serializers
from services.organizations.api import get_record_service
from services.organizations.records import RecordService
from services.organizations.schemas import AddressIn, CoordinatesIn, LocationIn
from services.references.store import AddressStore, CoordinatesStore, LocationStore

router = APIRouter(prefix="/api", tags=["references"])


def _page(store, out, limit: int, offset: int) -> dict:
    return {
        "items": [out(row) for row in store.page(limit=limit, offset=offset)],
        "total": store.count(),
        "limit": limit,
        "offset": offset,
    }


# --- coordinates ---

@router.get("/coordinates")
def list_coordinates(limit: int = Query(50, ge=1, le=1000), offset: int = Query(0, ge=0), db: Session = Depends(get_db)):
    return _page(CoordinatesStore(db), serializers.coordinates_out, limit, offset)


@router.get("/coordinates/{entity_id}")
def get_coordinates(entity_id: int, db: Session = Depends(get_db)):
    return serializers.coordinates_out(CoordinatesStore(db).require(entity_id))


@router.post("/coordinates", status_code=201)
def create_coordinates(payload: CoordinatesIn, service: RecordService = Depends(get_record_service)):
    return service.create_coordinates(payload)


@router.put("/coordinates/{entity_id}")
def update_coordinates(entity_id: int, payload: CoordinatesIn, service: RecordService = Depends(get_record_service)):
    return service.update_coordinates(entity_id, payload)


@router.delete("/coordinates/{entity_id}")
def delete_coordinates(entity_id: int, service: RecordService = Depends(get_record_service)):
    return service.delete_coordinates(entity_id)


# --- addresses ---

@router.get("/addresses")
def list_addresses(limit: int = Query(50, ge=1, le=1000), offset: int = Query(0, ge=0), db: Session = Depends(get_db)):
    return _page(AddressStore(db), serializers.address_out, limit, offset)


@router.get("/addresses/{entity_id}")
def get_address(entity_id: int, db: Session = Depends(get_db)):
    return serializers.address_out(AddressStore(db).require(entity_id))


@router.post("/addresses", status_code=201)
def create_address(payload: AddressIn, service: RecordService = Depends(get_record_service)):
    return service.create_address(payload)


@router.put("/addresses/{entity_id}")
def update_address(entity_id: int, payload: AddressIn, service: RecordService = Depends(get_record_service)):
    return service.update_address(entity_id, payload)


@router.delete("/addresses/{entity_id}")
def delete_address(entity_id: int, service: RecordService = Depends(get_record_service)):
    return service.delete_address(entity_id)


# --- locations ---

@router.get("/locations")
def list_locations(limit: int = Query(50, ge=1, le=1000), offset: int = Query(0, ge=0), db: Session = Depends(get_db)):
    return _page(LocationStore(db), serializers.location_out, limit, offset)


@router.get("/locations/{entity_id}")
def get_location(entity_id: int, db: Session = Depends(get_db)):
    return serializers.location_out(LocationStore(db).require(entity_id))


@router.post("/locations", status_code=201)
def create_location(payload: LocationIn, service: RecordService = Depends(get_record_service)):
    return service.create_location(payload)


@router.put("/locations/{entity_id}")
def update_location(entity_id: int, payload: LocationIn, service: RecordService = Depends(get_record_service)):
    return service.update_location(entity_id, payload)


@router.delete("/locations/{entity_id}")
def delete_location(entity_id: int, service: RecordService = Depends(get_record_service)):
    return service.delete_location(entity_id)
