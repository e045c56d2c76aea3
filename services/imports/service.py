"""Import saga: stage the file, record the operation, apply the batch, then
finalize or compensate.

    Staging -> Recording -> Parsing -> Executing -> Finalizing -> SUCCESS
    any failure after Staging -> roll back the staged object -> FAILED

The relational batch runs strictly inside the window between staging and
commit/rollback of the uploaded object, so the object store never holds a
finalized file for a batch that did not commit.
"""
from __future__ import annotations

import logging

from sqlalchemy.exc import StatementError
from sqlalchemy.orm import Session

from app.core.errors import (
    ConflictError,
    DomainError,
    ImportFailedError,
    InternalError,
    NotFoundError,
    StorageUnavailableError,
    ValidationError,
)
from app.core.retry import is_transient, run_in_transaction
from app.core.security import ANONYMOUS, Principal
from app.db.models.imports import ImportObjectType, ImportOperation, ImportStatus
from app.db.session import transaction
from app.events.bus import IMPORTS_CHANGED
from app.events.notifier import Notifier, notifier as default_notifier
from services.imports.history import operation_out
from services.imports.parser import parse_records, record_error
from services.imports.storage import StagedObject, StagingStore
from services.organizations import records as record_service
from services.organizations import serializers

logger = logging.getLogger(__name__)

INTERNAL_MESSAGE = "The import failed because of an internal error"


def _message(exc: BaseException) -> str:
    if isinstance(exc, DomainError):
        return exc.message
    text = str(exc).strip()
    if text:
        return text
    cause = exc.__cause__
    return str(cause) if cause is not None and str(cause) else "Unknown error"


class ImportService:
    def __init__(self, storage: StagingStore | None = None, notifier: Notifier | None = None):
        self.storage = storage or StagingStore()
        self.notifier = notifier or default_notifier

    def execute(
        self,
        data: bytes,
        file_name: str | None,
        content_type: str | None,
        object_type: ImportObjectType | None,
        principal: Principal | None,
    ) -> dict:
        """Run one import end to end and return the operation summary.

        Raises StorageUnavailableError, ImportFailedError (client data),
        ConflictError (retries exhausted) or InternalError.
        """
        if not data:
            raise ValidationError("The import file is missing or empty")

        kind = object_type or ImportObjectType.ORGANIZATION
        username = principal.username if principal is not None else ANONYMOUS

        staged: StagedObject | None = None
        op_id: int | None = None
        try:
            staged = self.storage.stage(data, file_name, content_type)
            op_id = self._start(username, kind, staged)
            records = parse_records(data, kind)
            summary, created_count = run_in_transaction(
                lambda db: self._apply_batch(db, op_id, kind, records, staged)
            )
        except Exception as exc:
            self.storage.rollback(staged)
            message = _message(exc)
            if op_id is not None:
                self._safe_mark_failed(op_id, message)
            elif isinstance(exc, StorageUnavailableError) and principal is not None and object_type is not None:
                op_id = self._record_failed(username, kind, file_name, content_type, len(data), message)
            self.notifier.broadcast(IMPORTS_CHANGED, {"id": op_id, "status": ImportStatus.FAILED.value})
            error = self._classify(exc, op_id, username, kind)
            if error is exc:
                raise
            raise error from exc

        logger.info("Import %s by %s added %s %s record(s)", op_id, username, created_count, kind.value)
        self.notifier.broadcast(IMPORTS_CHANGED, {"id": op_id, "status": ImportStatus.SUCCESS.value})
        if created_count > 0:
            self.notifier.broadcast(
                record_service.TOPICS[kind], {"action": "imported", "importId": op_id, "count": created_count}
            )
        return summary

    # --- stages ---

    def _start(self, username: str, kind: ImportObjectType, staged: StagedObject) -> int:
        with transaction(isolation=None) as db:
            op = ImportOperation(
                username=username,
                object_type=kind,
                status=ImportStatus.IN_PROGRESS,
                storage_file_name=staged.file_name,
                storage_content_type=staged.content_type,
                storage_size=staged.size,
            )
            db.add(op)
            db.flush()
            logger.info("Import %s started by %s (%s, %s bytes)", op.id, username, kind.value, staged.size)
            return op.id

    def _apply_batch(
        self,
        db: Session,
        op_id: int,
        kind: ImportObjectType,
        records: list,
        staged: StagedObject,
    ) -> tuple[dict, int]:
        op = db.get(ImportOperation, op_id)
        if op is None:
            raise NotFoundError(f"Import operation {op_id} not found")

        created = []
        for index, record in enumerate(records, start=1):
            try:
                created.append(record_service.create_record(db, kind, record))
            except StatementError as exc:
                if is_transient(exc):
                    raise
                raise record_error(index, str(getattr(exc, "orig", None) or exc)) from exc
            except OverflowError as exc:
                raise record_error(index, f"value out of range ({exc})") from exc
            except (ValidationError, NotFoundError) as exc:
                raise record_error(index, exc.message) from exc

        op.storage_file_name = staged.file_name
        op.storage_content_type = staged.content_type
        op.storage_size = staged.size
        op.mark_success(len(created), bucket=staged.bucket, object_name=staged.final_key)
        db.flush()

        self.storage.commit(staged)

        organizations = None
        if kind is ImportObjectType.ORGANIZATION:
            organizations = [serializers.organization_out(o) for o in created]
        return operation_out(op, organizations), len(created)

    # --- failure path ---

    def _safe_mark_failed(self, op_id: int, message: str) -> None:
        try:
            with transaction(isolation=None) as db:
                op = db.get(ImportOperation, op_id)
                if op is not None and not op.is_terminal:
                    op.mark_failed(message)
        except Exception as exc:
            logger.warning("Could not record failure of import %s: %s", op_id, exc)

    def _record_failed(
        self,
        username: str,
        kind: ImportObjectType,
        file_name: str | None,
        content_type: str | None,
        size: int,
        message: str,
    ) -> int | None:
        try:
            with transaction(isolation=None) as db:
                op = ImportOperation(
                    username=username,
                    object_type=kind,
                    status=ImportStatus.IN_PROGRESS,
                    storage_file_name=file_name,
                    storage_content_type=content_type,
                    storage_size=size,
                )
                op.mark_failed(message)
                db.add(op)
                db.flush()
                return op.id
        except Exception as exc:
            logger.warning("Could not record failed import for %s: %s", username, exc)
            return None

    def _classify(self, exc: Exception, op_id: int | None, username: str, kind: ImportObjectType) -> Exception:
        if isinstance(exc, StorageUnavailableError):
            logger.error("Import failed, storage unavailable (user=%s, type=%s)", username, kind.value, exc_info=exc)
            return exc
        if isinstance(exc, ImportFailedError):
            exc.operation_id = op_id
            logger.warning("Import %s rejected: %s", op_id, exc.message)
            return exc
        if isinstance(exc, (ValidationError, NotFoundError)):
            logger.warning("Import %s rejected: %s", op_id, exc.message)
            return ImportFailedError(exc.message, operation_id=op_id)
        if isinstance(exc, (ConflictError, DomainError)):
            logger.warning("Import %s failed: %s", op_id, exc.message)
            return exc
        logger.error("Import %s failed unexpectedly (user=%s, type=%s)", op_id, username, kind.value, exc_info=exc)
        return InternalError(INTERNAL_MESSAGE)
