from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError
from app.core.security import Principal
from app.db.models.imports import ImportOperation


def operation_out(op: ImportOperation, created: list[dict] | None = None) -> dict:
    out = {
        "id": op.id,
        "status": op.status.value,
        "objectType": op.object_type.value,
        "username": op.username,
        "startedAt": op.started_at.isoformat() if op.started_at else None,
        "finishedAt": op.finished_at.isoformat() if op.finished_at else None,
        "addedCount": op.added_count,
        "errorMessage": op.error_message,
        "storage": {
            "bucket": op.storage_bucket,
            "object": op.storage_object,
            "fileName": op.storage_file_name,
            "contentType": op.storage_content_type,
            "size": op.storage_size,
        },
        "hasFile": bool(op.storage_bucket and op.storage_object),
    }
    if created is not None:
        out["createdOrganizations"] = created
    return out


def list_operations(db: Session, principal: Principal, *, limit: int = 200, offset: int = 0) -> list[ImportOperation]:
    """Admins see every operation, everyone else only their own. Newest first."""
    stmt = select(ImportOperation)
    if not principal.is_admin:
        stmt = stmt.where(ImportOperation.username == principal.username)
    stmt = stmt.order_by(ImportOperation.started_at.desc(), ImportOperation.id.desc()).limit(limit).offset(offset)
    return list(db.execute(stmt).scalars().all())


def get_operation(db: Session, op_id: int, principal: Principal) -> ImportOperation:
    op = db.get(ImportOperation, op_id)
    # Someone else's operation looks exactly like a missing one.
    if op is None or (not principal.is_admin and op.username != principal.username):
        raise NotFoundError(f"Import operation {op_id} not found")
    return op
