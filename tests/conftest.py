from __future__ import annotations

import io

import pytest
from minio.error import S3Error

from app.core import retry
from app.db import models  # noqa: F401
from app.db import session as db_session
from app.db.base import Base
from services.imports.storage import StagingStore


class _FakeS3Error(S3Error):
    """S3Error with only a code; the real constructor wants an HTTP response."""

    def __init__(self, code: str):
        Exception.__init__(self, code)
        self._fake_code = code

    @property
    def code(self):
        return self._fake_code

    def __str__(self):
        return f"S3 operation failed; code: {self._fake_code}"


def s3_error(code: str) -> S3Error:
    return _FakeS3Error(code)


class _Body(io.BytesIO):
    def release_conn(self) -> None:
        pass


class FakeMinio:
    """In-memory stand-in for the minio client methods StagingStore uses."""

    def __init__(self):
        self.buckets: set[str] = set()
        self.objects: dict[tuple[str, str], bytes] = {}
        self.failures: dict[str, Exception] = {}
        self.calls: list[str] = []

    def _hit(self, name: str) -> None:
        self.calls.append(name)
        exc = self.failures.get(name)
        if exc is not None:
            raise exc

    def keys(self, bucket: str = "imports") -> set[str]:
        return {k for (b, k) in self.objects if b == bucket}

    def bucket_exists(self, bucket_name):
        self._hit("bucket_exists")
        return bucket_name in self.buckets

    def make_bucket(self, bucket_name):
        self._hit("make_bucket")
        self.buckets.add(bucket_name)

    def put_object(self, bucket_name, object_name, data, length, content_type=None):
        self._hit("put_object")
        self.objects[(bucket_name, object_name)] = data.read()

    def copy_object(self, bucket_name, object_name, source):
        self._hit("copy_object")
        src = (source.bucket_name, source.object_name)
        if src not in self.objects:
            raise s3_error("NoSuchKey")
        self.objects[(bucket_name, object_name)] = self.objects[src]

    def stat_object(self, bucket_name, object_name):
        self._hit("stat_object")
        if (bucket_name, object_name) not in self.objects:
            raise s3_error("NoSuchKey")
        return object()

    def remove_object(self, bucket_name, object_name):
        self._hit("remove_object")
        self.objects.pop((bucket_name, object_name), None)

    def get_object(self, bucket_name, object_name):
        self._hit("get_object")
        if (bucket_name, object_name) not in self.objects:
            raise s3_error("NoSuchKey")
        return _Body(self.objects[(bucket_name, object_name)])


class RecordingNotifier:
    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    def broadcast(self, topic, payload=None):
        self.events.append((topic, payload or {}))

    def topics(self) -> list[str]:
        return [t for t, _ in self.events]


@pytest.fixture(autouse=True)
def engine(tmp_path, monkeypatch):
    eng = db_session.configure(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=eng)
    monkeypatch.setattr(retry, "RETRY_INITIAL_DELAY", 0.0)
    monkeypatch.setattr(retry, "RETRY_MAX_DELAY", 0.0)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    s = db_session.SessionLocal()
    try:
        yield s
    finally:
        s.rollback()
        s.close()


@pytest.fixture
def minio():
    return FakeMinio()


@pytest.fixture
def storage(minio):
    return StagingStore(client=minio, bucket="imports")


@pytest.fixture
def notifier():
    return RecordingNotifier()


def _org(name="Acme", *, town="Springfield", zip_code="1234567", x=1.0, y=2.0, **extra) -> dict:
    body = {
        "name": name,
        "employeesCount": 10,
        "rating": 3,
        "type": "COMMERCIAL",
        "coordinates": {"x": x, "y": y},
        "postalAddress": {"zipCode": zip_code, "town": {"name": town, "x": 1.0, "y": 1.0, "z": 1.0}},
    }
    body.update(extra)
    return body


@pytest.fixture
def org_data():
    """Factory for a valid organization payload (camelCase, inline shared entities)."""
    return _org
