from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from app.core.security import JWT_ALG, JWT_SECRET, principal_from_token
from main import app
from services.imports.api import get_import_service
from services.imports.service import ImportService
from services.organizations.api import get_record_service
from services.organizations.records import RecordService


def _token(username: str, *roles: str) -> dict:
    token = jwt.encode({"sub": username, "roles": list(roles)}, JWT_SECRET, algorithm=JWT_ALG)
    return {"Authorization": f"Bearer {token}"}


ALICE = _token("alice", "USER")
BOB = _token("bob", "USER")
ADMIN = _token("root", "ROLE_ADMIN")


@pytest.fixture
def client(storage, notifier):
    app.dependency_overrides[get_import_service] = lambda: ImportService(storage=storage, notifier=notifier)
    app.dependency_overrides[get_record_service] = lambda: RecordService(notifier=notifier)
    yield TestClient(app)
    app.dependency_overrides.clear()


def _upload(client, records, headers, object_type="ORGANIZATION"):
    return client.post(
        "/api/imports",
        params={"objectType": object_type},
        files={"file": ("orgs.json", json.dumps(records), "application/json")},
        headers=headers,
    )


def test_principal_from_token():
    assert principal_from_token(None).is_anonymous
    assert principal_from_token("garbage").is_anonymous
    admin = principal_from_token(ADMIN["Authorization"].split()[1])
    assert admin.username == "root"
    assert admin.is_admin


def test_organization_crud(client, notifier, org_data):
    created = client.post("/api/organizations", json=org_data(fullName="Acme Ltd"))
    assert created.status_code == 201
    body = created.json()
    assert body["postalAddress"]["town"]["name"] == "Springfield"
    assert body["version"] == 1

    org_id = body["id"]
    assert client.get(f"/api/organizations/{org_id}").json()["name"] == "Acme"
    assert [o["id"] for o in client.get("/api/organizations").json()] == [org_id]

    update = org_data("Acme 2", coordinatesId=body["coordinates"]["id"], coordinates=None, version=body["version"])
    updated = client.put(f"/api/organizations/{org_id}", json=update)
    assert updated.status_code == 200
    assert updated.json()["version"] == 2

    stale = client.put(f"/api/organizations/{org_id}", json=dict(update, version=1))
    assert stale.status_code == 409

    unversioned = {k: v for k, v in update.items() if k != "version"}
    assert client.put(f"/api/organizations/{org_id}", json=unversioned).status_code == 400

    assert client.delete(f"/api/organizations/{org_id}").status_code == 200
    assert client.get(f"/api/organizations/{org_id}").status_code == 404
    assert "organizations.changed" in notifier.topics()


def test_invalid_payload_is_rejected(client, org_data):
    assert client.post("/api/organizations", json=org_data(rating=0)).status_code == 422
    missing_town = org_data()
    missing_town["postalAddress"] = {"zipCode": "1234567"}
    resp = client.post("/api/organizations", json=missing_town)
    assert resp.status_code == 400
    assert "town" in resp.json()["detail"]


def test_special_operations(client, org_data):
    a = client.post("/api/organizations", json=org_data("A", employeesCount=3, x=9)).json()
    b = client.post("/api/organizations", json=org_data("B", employeesCount=4, x=-9)).json()

    assert client.get("/api/operations/min-coordinates").json()["id"] == b["id"]
    assert client.get("/api/operations/group-by-rating").json() == {"3": 2}
    assert client.get("/api/operations/count-by-type", params={"type": "COMMERCIAL"}).json() == {
        "type": "COMMERCIAL",
        "count": 2,
    }

    absorbed = client.post("/api/operations/absorb", params={"absorbingId": a["id"], "absorbedId": b["id"]})
    assert absorbed.json()["organization"]["employeesCount"] == 7
    assert client.post("/api/operations/absorb", params={"absorbingId": a["id"], "absorbedId": a["id"]}).status_code == 400

    dismissed = client.post("/api/operations/dismiss-employees", params={"organizationId": a["id"]})
    assert dismissed.json()["organization"]["employeesCount"] == 0


def test_referenced_entities_cannot_be_deleted(client, org_data):
    org = client.post("/api/organizations", json=org_data()).json()
    town_id = org["postalAddress"]["town"]["id"]

    assert client.delete(f"/api/locations/{town_id}").status_code == 409
    assert client.delete(f"/api/addresses/{org['postalAddress']['id']}").status_code == 409
    assert client.delete(f"/api/coordinates/{org['coordinates']['id']}").status_code == 409

    lonely = client.post("/api/coordinates", json={"x": 1, "y": 1}).json()
    assert client.delete(f"/api/coordinates/{lonely['id']}").status_code == 200
    assert client.get("/api/coordinates").json()["total"] == 1


def test_import_and_history_visibility(client, minio, org_data):
    resp = _upload(client, [org_data("A"), org_data("B", town="Other")], ALICE)
    assert resp.status_code == 202
    op = resp.json()
    assert op["status"] == "SUCCESS"
    assert op["addedCount"] == 2
    assert op["username"] == "alice"

    failed = _upload(client, [org_data("C", rating=-5)], BOB)
    assert failed.status_code == 400
    assert failed.json()["index"] == 1
    assert "operationId" in failed.json()

    assert [o["username"] for o in client.get("/api/imports", headers=ALICE).json()] == ["alice"]
    assert {o["username"] for o in client.get("/api/imports", headers=ADMIN).json()} == {"alice", "bob"}

    assert client.get(f"/api/imports/{op['id']}", headers=BOB).status_code == 404
    assert client.get(f"/api/imports/{op['id']}", headers=ADMIN).status_code == 200

    download = client.get(f"/api/imports/{op['id']}/file", headers=ALICE)
    assert download.status_code == 200
    assert [r["name"] for r in json.loads(download.content)] == ["A", "B"]

    failed_id = failed.json()["operationId"]
    assert client.get(f"/api/imports/{failed_id}/file", headers=BOB).status_code == 404


def test_import_when_storage_is_down(client, minio, org_data):
    minio.failures["bucket_exists"] = ConnectionRefusedError("Connection refused")
    resp = _upload(client, [org_data()], ALICE)
    assert resp.status_code == 503
    history = client.get("/api/imports", headers=ALICE).json()
    assert [h["status"] for h in history] == ["FAILED"]


def test_import_template(client):
    resp = client.get("/api/imports/template", params={"objectType": "LOCATION"})
    assert resp.status_code == 200
    assert all("name" in row for row in resp.json())
    assert "attachment" in resp.headers["content-disposition"]


def test_admin_event_endpoints_require_admin(client):
    assert client.get("/admin/events/subscriptions").status_code == 401
    assert client.get("/admin/events/subscriptions", headers=ALICE).status_code == 403

    created = client.post(
        "/admin/events/subscriptions",
        json={"topic_pattern": "organizations.*", "target_url": "http://example.invalid/hook"},
        headers=ADMIN,
    )
    assert created.status_code == 201
    sub_id = created.json()["id"]
    assert client.post(f"/admin/events/subscriptions/{sub_id}/toggle", headers=ADMIN).json()["is_active"] is False
    assert client.delete(f"/admin/events/subscriptions/{sub_id}", headers=ADMIN).json() == {"deleted": True}


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"
