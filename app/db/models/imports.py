from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Enum, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.models.common import HasId, utcnow


class ImportStatus(str, enum.Enum):
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class ImportObjectType(str, enum.Enum):
    ORGANIZATION = "ORGANIZATION"
    COORDINATES = "COORDINATES"
    LOCATION = "LOCATION"
    ADDRESS = "ADDRESS"


class ImportOperationClosed(RuntimeError):
    """Raised when something tries to move an operation out of a terminal state."""


class ImportOperation(Base, HasId):
    """Audit record of one import request.

    Lifecycle: IN_PROGRESS -> SUCCESS | FAILED. Terminal rows never change again.
    """

    __tablename__ = "import_operation"

    status: Mapped[ImportStatus] = mapped_column(Enum(ImportStatus), nullable=False, default=ImportStatus.IN_PROGRESS)
    username: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    object_type: Mapped[ImportObjectType] = mapped_column(Enum(ImportObjectType), nullable=False)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    added_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Object store descriptor
    storage_bucket: Mapped[str | None] = mapped_column(String(255), nullable=True)
    storage_object: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    storage_file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    storage_content_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    storage_size: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in (ImportStatus.SUCCESS, ImportStatus.FAILED)

    def _ensure_open(self) -> None:
        if self.is_terminal:
            raise ImportOperationClosed(f"import operation {self.id} is already {self.status.value}")

    def mark_success(self, added: int, *, bucket: str, object_name: str) -> None:
        self._ensure_open()
        self.status = ImportStatus.SUCCESS
        self.added_count = added
        self.storage_bucket = bucket
        self.storage_object = object_name
        self.error_message = None
        self.finished_at = utcnow()

    def mark_failed(self, message: str) -> None:
        self._ensure_open()
        self.status = ImportStatus.FAILED
        self.error_message = (message or "")[:4000]
        self.added_count = None
        self.storage_bucket = None
        self.storage_object = None
        self.finished_at = utcnow()


Index("ix_import_operation_user_started", ImportOperation.username, ImportOperation.started_at)
