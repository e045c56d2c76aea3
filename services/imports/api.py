from __future__ import annotations

from fastapi import APIRouter, Depends, File, Query, UploadFile
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError
from app.core.security import Principal, get_principal
from app.db.models.imports import ImportObjectType
from app.db.session import get_db
from services.imports.history import get_operation as load_operation
from services.imports.history import list_operations as load_operations
from services.imports.history import operation_out
from services.imports.service import ImportService
from services.imports.storage import StagingStore
from services.imports.templates import template_for

router = APIRouter(prefix="/api/imports", tags=["imports"])

_service: ImportService | None = None


def get_import_service() -> ImportService:
    global _service
    if _service is None:
        _service = ImportService()
    return _service


@router.post("", status_code=202)
def import_objects(
    file: UploadFile = File(...),
    object_type: ImportObjectType = Query(ImportObjectType.ORGANIZATION, alias="objectType"),
    principal: Principal = Depends(get_principal),
    service: ImportService = Depends(get_import_service),
):
    data = file.file.read()
    return service.execute(data, file.filename, file.content_type, object_type, principal)


@router.get("")
def list_operations(
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return [operation_out(op) for op in load_operations(db, principal, limit=limit, offset=offset)]


@router.get("/template")
def download_template(object_type: ImportObjectType = Query(ImportObjectType.ORGANIZATION, alias="objectType")):
    return JSONResponse(
        content=template_for(object_type),
        headers={"Content-Disposition": 'attachment; filename="import-template.json"'},
    )


@router.get("/{op_id}")
def get_operation(op_id: int, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    return operation_out(load_operation(db, op_id, principal))


@router.get("/{op_id}/file")
def download_file(
    op_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    service: ImportService = Depends(get_import_service),
):
    op = load_operation(db, op_id, principal)
    if not op.storage_bucket or not op.storage_object:
        raise NotFoundError(f"Import operation {op_id} has no stored file")
    storage: StagingStore = service.storage
    stored = storage.load(op.storage_bucket, op.storage_object, op.storage_file_name, op.storage_content_type)
    return Response(
        content=stored.data,
        media_type=stored.content_type,
        headers={"Content-Disposition": f'attachment; filename="{stored.file_name}"'},
    )
