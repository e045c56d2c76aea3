from __future__ import annotations


class DomainError(Exception):
    """Base for errors that carry their own HTTP status and a user-facing message."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message}


class ValidationError(DomainError):
    """Bad, missing or duplicate client data. Never retried."""

    status_code = 400


class NotFoundError(DomainError):
    status_code = 404


class ConflictError(DomainError):
    """Concurrent-write hazard or an entity still in use."""

    status_code = 409


class StorageUnavailableError(DomainError):
    """The object store could not be reached. Clients may retry later."""

    status_code = 503

    DEFAULT_MESSAGE = "File storage is temporarily unavailable. Please try again later."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.DEFAULT_MESSAGE)


class StorageError(DomainError):
    """Any other object store failure (permissions, missing bucket, bad key...)."""

    status_code = 500


class InternalError(DomainError):
    status_code = 500


class ImportFailedError(ValidationError):
    """A batch was rejected. `index` is the 1-based record position when known."""

    def __init__(self, message: str, *, index: int | None = None, operation_id: int | None = None):
        super().__init__(message)
        self.index = index
        self.operation_id = operation_id

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.index is not None:
            body["index"] = self.index
        if self.operation_id is not None:
            body["operationId"] = self.operation_id
        return body
