import os
import uuid

# Env defaults must be set before the app module is imported.
os.environ.setdefault("AUTO_CREATE_DB", "true")
os.environ.setdefault("AUTO_SEED_HOSPITALS", "true")
os.environ.setdefault("ENABLE_MQTT_BRIDGE", "false")
os.environ.setdefault("ENABLE_INTAKE_CONSUMER", "false")

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from ambudispatch.core.db import SessionLocal
from ambudispatch.core.security import hash_password
from ambudispatch.main import create_app
from ambudispatch.models.app_user import AppUser


def _suffix() -> str:
    return uuid.uuid4().hex[:8]


def _new_emergency(client: TestClient, **extra) -> dict:
    payload = {
        "name": f"Caller {_suffix()}",
        "phone": "+91 98 7654 3210",
        "location": {"address": "Connaught Place", "coordinates": {"latitude": 28.6315, "longitude": 77.2167}},
    }
    payload.update(extra)
    resp = client.post("/api/v1/emergencies", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


def _new_ambulance(client: TestClient, **extra) -> dict:
    payload = {
        "name": f"Rescue {_suffix()}",
        "vehicle_number": f"DL-{_suffix()}",
        "driver_name": "Ravi",
        "driver_phone": "+91 9000000000",
    }
    payload.update(extra)
    resp = client.post("/api/v1/ambulances", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setenv("AMBU_AUTH_DISABLED", "true")
    with TestClient(create_app()) as test_client:
        yield test_client


@pytest.fixture
def auth_client(monkeypatch):
    monkeypatch.setenv("AMBU_AUTH_DISABLED", "false")
    with TestClient(create_app()) as test_client:
        yield test_client


def test_emergency_crud_and_listing(client):
    created = _new_emergency(client, notes="gate 2")
    assert created["status"] == "pending"
    assert created["location"]["address"] == "Connaught Place"
    assert created["timestamp"] is not None

    resp = client.get(f"/api/v1/emergencies/{created['id']}")
    assert resp.status_code == 200
    assert resp.json()["notes"] == "gate 2"

    resp = client.patch(f"/api/v1/emergencies/{created['id']}", json={"notes": "gate 3"})
    assert resp.status_code == 200
    assert resp.json()["notes"] == "gate 3"
    assert resp.json()["name"] == created["name"]

    resp = client.get("/api/v1/emergencies", params={"search": created["name"], "page_size": 5})
    assert resp.status_code == 200
    body = resp.json()
    assert [item["id"] for item in body["items"]] == [created["id"]]
    assert resp.headers["X-Total-Count"] == "1"

    resp = client.delete(f"/api/v1/emergencies/{created['id']}")
    assert resp.status_code == 204
    assert client.get(f"/api/v1/emergencies/{created['id']}").status_code == 404


def test_list_rejects_unknown_sort_key(client):
    resp = client.get("/api/v1/emergencies", params={"sort": "ambulance_id"})
    assert resp.status_code == 422


def test_dispatch_then_complete(client):
    emergency = _new_emergency(client)
    ambulance = _new_ambulance(client)

    available = client.get("/api/v1/ambulances/available").json()
    assert ambulance["id"] in {a["id"] for a in available}

    resp = client.post(f"/api/v1/emergencies/{emergency['id']}/dispatch", json={"ambulance_id": ambulance["id"]})
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["message"] == "Ambulance dispatched successfully"
    assert body["emergency"]["status"] == "dispatched"
    assert body["emergency"]["ambulance_id"] == ambulance["id"]

    detail = client.get(f"/api/v1/ambulances/{ambulance['id']}").json()
    assert detail["status"] == "dispatched"
    assert detail["active_emergency"]["id"] == emergency["id"]
    assert ambulance["id"] not in {a["id"] for a in client.get("/api/v1/ambulances/available").json()}

    resp = client.post(f"/api/v1/emergencies/{emergency['id']}/complete")
    assert resp.status_code == 200
    assert client.get(f"/api/v1/emergencies/{emergency['id']}").json()["status"] == "completed"
    assert client.get(f"/api/v1/ambulances/{ambulance['id']}").json()["status"] == "available"

    # Terminal requests cannot be dispatched again.
    resp = client.post(f"/api/v1/emergencies/{emergency['id']}/dispatch", json={"ambulance_id": ambulance["id"]})
    assert resp.status_code == 409


def test_dispatch_error_mapping(client):
    emergency = _new_emergency(client)

    resp = client.post(f"/api/v1/emergencies/{emergency['id']}/dispatch", json={})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Please select an ambulance"

    resp = client.post(f"/api/v1/emergencies/{emergency['id']}/dispatch", json={"ambulance_id": "missing"})
    assert resp.status_code == 404

    resp = client.post("/api/v1/emergencies/missing/dispatch", json={"ambulance_id": "missing"})
    assert resp.status_code == 404

    resp = client.post(f"/api/v1/emergencies/{emergency['id']}/complete")
    assert resp.status_code == 409

    resp = client.post(f"/api/v1/emergencies/{emergency['id']}/cancel")
    assert resp.status_code == 200
    assert client.get(f"/api/v1/emergencies/{emergency['id']}").json()["status"] == "cancelled"


def test_emergency_links(client):
    emergency = _new_emergency(client)

    links = client.get(f"/api/v1/emergencies/{emergency['id']}/links").json()

    assert links["call"] == "tel:+919876543210"
    assert links["directions"].endswith("destination=28.6315,77.2167")


def test_ambulance_status_and_location(client):
    ambulance = _new_ambulance(client)

    resp = client.patch(f"/api/v1/ambulances/{ambulance['id']}/status", json={"status": "maintenance"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "maintenance"

    resp = client.put(f"/api/v1/ambulances/{ambulance['id']}/location", json={"latitude": 28.6, "longitude": 77.2})
    assert resp.status_code == 200
    assert resp.json()["last_location"]["latitude"] == 28.6

    resp = client.patch(f"/api/v1/ambulances/{ambulance['id']}/status", json={"status": "flying"})
    assert resp.status_code == 422
    assert client.patch("/api/v1/ambulances/missing/status", json={"status": "available"}).status_code == 404


def test_patients_and_reports(client):
    emergency = _new_emergency(client)
    patient = client.post("/api/v1/patients", json={"name": f"Meera {_suffix()}", "phone": "+91 3"})
    assert patient.status_code == 201, patient.text

    report = client.post(
        "/api/v1/reports",
        json={"title": f"Fall injury {_suffix()}", "emergency_id": emergency["id"]},
    )
    assert report.status_code == 201, report.text

    listed = client.get("/api/v1/reports", params={"search": report.json()["title"]}).json()
    assert len(listed) == 1
    assert listed[0]["emergency"]["name"] == emergency["name"]

    assert client.delete(f"/api/v1/patients/{patient.json()['id']}").status_code == 204
    assert client.delete(f"/api/v1/patients/{patient.json()['id']}").status_code == 404


def test_nearest_hospitals_from_seed(client):
    resp = client.get("/api/v1/hospitals/nearest", params={"latitude": 28.6139, "longitude": 77.2090})
    assert resp.status_code == 200
    hospitals = resp.json()
    assert len(hospitals) >= 3
    distances = [h["distance_km"] for h in hospitals]
    assert distances == sorted(distances)
    assert all(h["directions_link"].startswith("https://www.google.com/maps/dir/") for h in hospitals)

    limited = client.get("/api/v1/hospitals/nearest", params={"latitude": 28.6139, "longitude": 77.2090, "limit": 1})
    assert len(limited.json()) == 1


def test_dashboard_summary_follows_changes(client):
    before = client.get("/api/v1/dashboard/summary").json()

    created = _new_emergency(client)
    after = client.get("/api/v1/dashboard/summary").json()

    assert after["pending_requests"] == before["pending_requests"] + 1
    assert after["total_requests"] == before["total_requests"] + 1
    assert len(after["active_emergencies"]) <= 5

    client.post(f"/api/v1/emergencies/{created['id']}/cancel")
    assert client.get("/api/v1/dashboard/summary").json()["pending_requests"] == before["pending_requests"]


def test_mismatch_scan(client):
    emergency = _new_emergency(client)
    ambulance = _new_ambulance(client)
    client.post(f"/api/v1/emergencies/{emergency['id']}/dispatch", json={"ambulance_id": ambulance["id"]})
    client.patch(f"/api/v1/ambulances/{ambulance['id']}/status", json={"status": "available"})

    items = client.get("/api/v1/dashboard/mismatches").json()["items"]

    assert any(i["ambulance_id"] == ambulance["id"] and i["emergency_id"] == emergency["id"] for i in items)


def test_health(client):
    body = client.get("/api/v1/health").json()
    assert body["status"] == "ok"
    assert body["database"]["ok"] is True
    assert body["change_feed"]["subscribers"] >= 3
    assert body["mqtt"]["bridge"] == {"enabled": False, "connected": False}


def test_websocket_streams_changes_and_alerts(client):
    with client.websocket_connect("/api/v1/realtime/ws?tables=emergency_requests") as ws:
        hello = ws.receive_json()
        assert hello["type"] == "subscribed"
        assert hello["tables"] == ["emergency_requests"]

        ws.send_text("ping")
        assert ws.receive_text() == "pong"

        created = _new_emergency(client)
        messages = [ws.receive_json(), ws.receive_json()]

    by_type = {m["type"]: m for m in messages}
    assert by_type["change"]["event_type"] == "INSERT"
    assert by_type["change"]["record"]["id"] == created["id"]
    assert by_type["change"]["seq"] > hello["last_seq"]["emergency_requests"]
    assert by_type["emergency_alert"]["alert"]["emergency_id"] == created["id"]


def test_websocket_rejects_unknown_table(client):
    with pytest.raises(WebSocketDisconnect) as info:
        with client.websocket_connect("/api/v1/realtime/ws?tables=app_users") as ws:
            ws.receive_json()
    assert info.value.code == 1008


def _bearer(resp) -> dict:
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


def test_auth_flow(auth_client):
    first = auth_client.post(
        "/api/v1/auth/register",
        json={"email": f"lead-{_suffix()}@example.com", "password": "secret-pass", "role": "DRIVER"},
    )
    assert first.status_code == 200, first.text
    assert first.json()["user"]["role"] == "ADMIN"
    admin_headers = _bearer(first)

    driver_email = f"driver-{_suffix()}@example.com"
    resp = auth_client.post("/api/v1/auth/register", json={"email": driver_email, "password": "secret-pass"})
    assert resp.status_code == 200
    assert resp.json()["user"]["role"] == "DRIVER"

    assert (
        auth_client.post("/api/v1/auth/register", json={"email": driver_email, "password": "secret-pass"}).status_code
        == 409
    )
    resp = auth_client.post(
        "/api/v1/auth/register", json={"email": f"x-{_suffix()}@example.com", "password": "secret-pass", "role": "PILOT"}
    )
    assert resp.status_code == 400
    for role in ("ADMIN", "DISPATCHER"):
        resp = auth_client.post(
            "/api/v1/auth/register",
            json={"email": f"y-{_suffix()}@example.com", "password": "secret-pass", "role": role},
        )
        assert resp.status_code == 403

    dispatcher_email = f"ops-{_suffix()}@example.com"
    resp = auth_client.post(
        "/api/v1/auth/register",
        json={"email": dispatcher_email, "password": "secret-pass", "role": "DISPATCHER"},
        headers=admin_headers,
    )
    assert resp.status_code == 200
    assert resp.json()["user"]["role"] == "DISPATCHER"

    assert auth_client.post("/api/v1/auth/login", json={"email": dispatcher_email, "password": "wrong"}).status_code == 401
    login = auth_client.post("/api/v1/auth/login", json={"email": dispatcher_email.upper(), "password": "secret-pass"})
    assert login.status_code == 200
    headers = _bearer(login)

    me = auth_client.get("/api/v1/auth/me", headers=headers).json()
    assert me["email"] == dispatcher_email
    assert me["role"] == "DISPATCHER"

    assert auth_client.get("/api/v1/emergencies").status_code == 401
    assert auth_client.get("/api/v1/emergencies", headers={"Authorization": "Bearer junk"}).status_code == 401
    assert auth_client.get("/api/v1/emergencies", headers=headers).status_code == 200
    resp = auth_client.post(
        "/api/v1/hospitals",
        json={"name": "Clinic", "latitude": 28.6, "longitude": 77.2},
        headers=headers,
    )
    assert resp.status_code == 403


def _create_user(*, email: str, password: str, role: str) -> None:
    with SessionLocal() as db:
        db.add(AppUser(email=email, name=email.split("@", 1)[0], password_hash=hash_password(password), role=role))
        db.commit()


def test_self_registered_driver_cannot_change_dispatch_state(auth_client):
    admin_email = f"admin-{_suffix()}@example.com"
    _create_user(email=admin_email, password="secret-pass", role="ADMIN")
    admin_headers = _bearer(
        auth_client.post("/api/v1/auth/login", json={"email": admin_email, "password": "secret-pass"})
    )

    walk_in = auth_client.post(
        "/api/v1/auth/register", json={"email": f"walkin-{_suffix()}@example.com", "password": "secret-pass"}
    )
    assert walk_in.status_code == 200
    assert walk_in.json()["user"]["role"] == "DRIVER"
    driver_headers = _bearer(walk_in)

    created = auth_client.post(
        "/api/v1/emergencies", json={"name": f"Caller {_suffix()}", "phone": "+91 1"}, headers=driver_headers
    )
    assert created.status_code == 201
    emergency_id = created.json()["id"]

    assert auth_client.post(f"/api/v1/emergencies/{emergency_id}/cancel", headers=driver_headers).status_code == 403
    assert auth_client.delete(f"/api/v1/emergencies/{emergency_id}", headers=driver_headers).status_code == 403
    assert auth_client.get(f"/api/v1/emergencies/{emergency_id}", headers=admin_headers).json()["status"] == "pending"

    ambulance = auth_client.post(
        "/api/v1/ambulances",
        json={"name": f"Rescue {_suffix()}", "vehicle_number": "DL-9", "driver_name": "Ravi", "driver_phone": "+91 2"},
        headers=admin_headers,
    )
    assert ambulance.status_code == 201
    status_url = f"/api/v1/ambulances/{ambulance.json()['id']}/status"
    assert auth_client.patch(status_url, json={"status": "maintenance"}, headers=driver_headers).status_code == 403
    assert auth_client.patch(status_url, json={"status": "maintenance"}, headers=admin_headers).status_code == 200
    assert auth_client.post(f"/api/v1/emergencies/{emergency_id}/cancel", headers=admin_headers).status_code == 200


def test_websocket_requires_token_when_auth_enabled(auth_client):
    with pytest.raises(WebSocketDisconnect) as info:
        with auth_client.websocket_connect("/api/v1/realtime/ws?token=junk") as ws:
            ws.receive_json()
    assert info.value.code == 1008


def test_login_with_auth_disabled_returns_demo_session(client):
    resp = client.post("/api/v1/auth/login", json={"email": "Anyone@Example.com", "password": "x"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["access_token"] == "demo-token"
    assert body["user"]["role"] == "ADMIN"
    assert body["user"]["email"] == "anyone@example.com"
