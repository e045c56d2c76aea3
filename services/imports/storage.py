"""Object staging store for uploaded import files (MinIO / any S3 endpoint).

An upload goes to `imports/staged/<id>` first. `commit` copies it to its
permanent key and drops the staged copy; `rollback` removes both keys. The
store has no transactions of its own, so the import saga decides which of the
two runs.
"""
from __future__ import annotations

import io
import logging
import os
import socket
import uuid
from dataclasses import dataclass

import urllib3
from minio import Minio
from minio.commonconfig import CopySource
from minio.error import S3Error

from app.core.errors import StorageError, StorageUnavailableError, ValidationError

logger = logging.getLogger(__name__)

MINIO_ENDPOINT = os.getenv("MINIO_ENDPOINT", "localhost:9000")
MINIO_ACCESS_KEY = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
MINIO_SECRET_KEY = os.getenv("MINIO_SECRET_KEY", "minioadmin")
MINIO_SECURE = os.getenv("MINIO_SECURE", "false").lower() in ("1", "true", "yes")
MINIO_BUCKET = os.getenv("MINIO_BUCKET", "imports")

DEFAULT_FILE_NAME = "import.json"
DEFAULT_CONTENT_TYPE = "application/octet-stream"
MAX_FILE_NAME = 120

_NOT_FOUND_CODES = {"NoSuchKey", "NoSuchObject", "NoSuchBucket"}

_CONNECTIVITY_TYPES: tuple[type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
    socket.gaierror,
    urllib3.exceptions.NewConnectionError,
    urllib3.exceptions.ConnectTimeoutError,
    urllib3.exceptions.MaxRetryError,
    urllib3.exceptions.ProtocolError,
)
_CONNECTIVITY_MARKERS = (
    "failed to connect",
    "connection refused",
    "connect timed out",
    "name or service not known",
    "temporary failure in name resolution",
    "max retries exceeded",
)


@dataclass(frozen=True)
class StagedObject:
    bucket: str
    temp_key: str
    final_key: str
    file_name: str
    size: int
    content_type: str


@dataclass(frozen=True)
class StoredFile:
    data: bytes
    file_name: str
    content_type: str


def sanitize_file_name(name: str | None) -> str:
    if not name or not name.strip():
        return DEFAULT_FILE_NAME
    cleaned = name.strip().replace("\\", "_").replace("/", "_")
    return cleaned[-MAX_FILE_NAME:]


def _causes(exc: BaseException):
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        reason = getattr(current, "reason", None)
        if isinstance(reason, BaseException) and id(reason) not in seen:
            yield from _causes(reason)
        current = current.__cause__ or current.__context__


def is_connectivity_error(exc: BaseException) -> bool:
    """True when the store could not be reached at all (refused, timed out, DNS)."""
    for err in _causes(exc):
        if isinstance(err, S3Error):
            continue
        if isinstance(err, _CONNECTIVITY_TYPES):
            return True
        text = str(err).lower()
        if any(m in text for m in _CONNECTIVITY_MARKERS):
            return True
    return False


def _is_not_found(exc: BaseException) -> bool:
    return isinstance(exc, S3Error) and exc.code in _NOT_FOUND_CODES


def classify(message: str, exc: Exception) -> Exception:
    if is_connectivity_error(exc):
        return StorageUnavailableError()
    return StorageError(f"{message}: {exc}")


def make_client() -> Minio:
    return Minio(MINIO_ENDPOINT, access_key=MINIO_ACCESS_KEY, secret_key=MINIO_SECRET_KEY, secure=MINIO_SECURE)


class StagingStore:
    def __init__(self, client: Minio | None = None, bucket: str | None = None):
        self._client = client
        self.bucket = bucket or MINIO_BUCKET

    @property
    def client(self) -> Minio:
        if self._client is None:
            self._client = make_client()
        return self._client

    def ensure_bucket(self) -> None:
        try:
            if not self.client.bucket_exists(bucket_name=self.bucket):
                self.client.make_bucket(bucket_name=self.bucket)
                logger.info("Created bucket %s", self.bucket)
        except S3Error as exc:
            # Lost a creation race with another request.
            if exc.code in ("BucketAlreadyOwnedByYou", "BucketAlreadyExists"):
                return
            raise classify("Could not prepare storage bucket", exc) from exc
        except Exception as exc:
            raise classify("Could not prepare storage bucket", exc) from exc

    def stage(self, data: bytes, file_name: str | None, content_type: str | None = None) -> StagedObject:
        if not data:
            raise ValidationError("The import file is missing or empty")
        self.ensure_bucket()

        object_id = uuid.uuid4().hex
        name = sanitize_file_name(file_name)
        staged = StagedObject(
            bucket=self.bucket,
            temp_key=f"imports/staged/{object_id}",
            final_key=f"imports/{object_id}/{name}",
            file_name=name,
            size=len(data),
            content_type=content_type or DEFAULT_CONTENT_TYPE,
        )
        try:
            self.client.put_object(
                bucket_name=staged.bucket,
                object_name=staged.temp_key,
                data=io.BytesIO(data),
                length=staged.size,
                content_type=staged.content_type,
            )
        except Exception as exc:
            raise classify("Could not store the import file", exc) from exc
        logger.debug("Staged %s (%s bytes) at %s/%s", name, staged.size, staged.bucket, staged.temp_key)
        return staged

    def _exists(self, key: str) -> bool:
        try:
            self.client.stat_object(bucket_name=self.bucket, object_name=key)
        except S3Error as exc:
            if _is_not_found(exc):
                return False
            raise
        return True

    def commit(self, staged: StagedObject | None) -> None:
        """Move the staged object to its final key. Safe to call again after a success."""
        if staged is None:
            return
        try:
            try:
                self.client.copy_object(
                    bucket_name=staged.bucket,
                    object_name=staged.final_key,
                    source=CopySource(bucket_name=staged.bucket, object_name=staged.temp_key),
                )
            except S3Error as exc:
                # A retried batch may find the staged copy already moved.
                if not (_is_not_found(exc) and self._exists(staged.final_key)):
                    raise
            self._remove(staged.bucket, staged.temp_key)
        except Exception as exc:
            raise classify("Could not finalize the import file", exc) from exc

    def rollback(self, staged: StagedObject | None) -> None:
        """Best effort: remove both keys, never raises."""
        if staged is None:
            return
        for key in (staged.temp_key, staged.final_key):
            try:
                self._remove(staged.bucket, key)
            except Exception as exc:
                logger.warning("Could not remove %s/%s during rollback: %s", staged.bucket, key, exc)

    def _remove(self, bucket: str, key: str) -> None:
        try:
            self.client.remove_object(bucket_name=bucket, object_name=key)
        except S3Error as exc:
            if not _is_not_found(exc):
                raise

    def load(self, bucket: str, key: str, file_name: str | None = None, content_type: str | None = None) -> StoredFile:
        response = None
        try:
            response = self.client.get_object(bucket_name=bucket, object_name=key)
            data = response.read()
        except S3Error as exc:
            if _is_not_found(exc):
                raise ValidationError("The file was not found in storage") from exc
            raise classify("Could not read the file from storage", exc) from exc
        except Exception as exc:
            raise classify("Could not read the file from storage", exc) from exc
        finally:
            if response is not None:
                response.close()
                response.release_conn()
        return StoredFile(
            data=data,
            file_name=file_name or DEFAULT_FILE_NAME,
            content_type=content_type or DEFAULT_CONTENT_TYPE,
        )
