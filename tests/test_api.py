"""HTTP surface: routing, identity headers, status codes and the error envelope."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from src.container import build_container
from src.complaints.infrastructure.repositories import sqlalchemy_uow_factory
from src.infrastructure.database import create_session_maker
from src.main import create_app

STUDENT = {"X-Actor-Id": "stu-1", "X-Actor-Role": "student"}
OTHER_STUDENT = {"X-Actor-Id": "stu-2", "X-Actor-Role": "student"}
STAFF = {"X-Actor-Id": "staff-1", "X-Actor-Role": "staff"}
COORDINATOR = {"X-Actor-Id": "coord-1", "X-Actor-Role": "coordinator"}
PARENT = {"X-Actor-Id": "par-1", "X-Actor-Role": "parent"}

COMPLAINT = {
    "subject": "Broken projector in room 12",
    "description": "The projector has not worked for a week.",
    "category": "facilities",
    "priority": "medium",
}


@pytest.fixture
def client(container):
    with TestClient(create_app(container=container)) as client:
        yield client


def create(client, headers=STUDENT, **overrides):
    response = client.post("/complaints", json={**COMPLAINT, **overrides}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["checks"]["sla_scheduler"] == "stopped"


def test_missing_identity_headers(client):
    response = client.get("/complaints")
    assert response.status_code == 403
    assert response.json()["code"] == "forbidden"


@pytest.mark.parametrize("role", ["system", "janitor"])
def test_unusable_roles(client, role):
    response = client.get("/complaints", headers={"X-Actor-Id": "x", "X-Actor-Role": role})
    assert response.status_code == 403


def test_create_and_fetch(client):
    created = create(client)

    assert created["ticket_number"] == "CMP-2025-00001"
    assert created["status"] == "submitted"
    assert created["assignee_id"] == "complaints-desk"

    fetched = client.get(f"/complaints/{created['id']}", headers=STUDENT)
    assert fetched.status_code == 200
    assert fetched.json()["id"] == created["id"]


def test_validation_envelope(client):
    response = client.post("/complaints", json={**COMPLAINT, "subject": "", "priority": "whenever"}, headers=STUDENT)

    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "validation_error"
    assert set(body["fields"]) >= {"subject", "priority"}


def test_invalid_transition_envelope(client):
    created = create(client)

    response = client.post(
        f"/complaints/{created['id']}/status", json={"status": "closed"}, headers=STAFF
    )

    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "invalid_transition"
    assert "fields" not in body


def test_not_found(client):
    response = client.get("/complaints/does-not-exist", headers=STAFF)
    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


def test_other_students_are_forbidden(client):
    created = create(client)
    response = client.get(f"/complaints/{created['id']}", headers=OTHER_STUDENT)
    assert response.status_code == 403


def test_list_is_scoped_to_submitter(client):
    create(client)
    create(client, headers=OTHER_STUDENT)

    mine = client.get("/complaints", headers=STUDENT).json()
    everything = client.get("/complaints", params={"limit": 1}, headers=STAFF).json()

    assert mine["total"] == 1
    assert everything["total"] == 2
    assert len(everything["items"]) == 1


def test_student_complaints_route(client):
    create(client, headers=PARENT, student_id="stu-1")
    create(client, headers=PARENT, student_id="stu-7")
    create(client, headers=STUDENT, student_id="stu-1")

    parent_view = client.get("/complaints/students/stu-1", headers=PARENT).json()
    assert parent_view["total"] == 1
    assert parent_view["items"][0]["student_id"] == "stu-1"

    staff_view = client.get("/complaints/students/stu-1", headers=STAFF).json()
    assert staff_view["total"] == 2

    filtered = client.get("/complaints", params={"student_id": "stu-7"}, headers=STAFF).json()
    assert filtered["total"] == 1


def test_lifecycle_over_http(client):
    ticket_id = create(client)["id"]

    assert client.post(f"/complaints/{ticket_id}/acknowledge", headers=STAFF).json()["status"] == "acknowledged"
    client.post(f"/complaints/{ticket_id}/status", json={"status": "in_progress"}, headers=STAFF)
    resolution = client.post(
        f"/complaints/{ticket_id}/resolution", json={"summary": "Projector replaced"}, headers=STAFF
    )
    assert resolution.status_code == 201
    again = client.post(f"/complaints/{ticket_id}/resolution", json={"summary": "Again"}, headers=STAFF)
    assert again.status_code == 409
    assert again.json()["code"] == "already_submitted"
    edited = client.put(
        f"/complaints/{ticket_id}/resolution", json={"summary": "Projector and cable replaced"}, headers=STAFF
    )
    assert edited.status_code == 200
    assert edited.json()["summary"] == "Projector and cable replaced"

    closed = client.post(f"/complaints/{ticket_id}/resolution/verify", headers=STUDENT)
    assert closed.json()["status"] == "closed"

    survey = client.post(f"/complaints/{ticket_id}/survey", headers=STAFF)
    assert survey.status_code in (200, 201)
    history = client.get(f"/complaints/{ticket_id}/history", headers=STUDENT).json()
    assert [e["status_change"]["to_status"] for e in history if e["entry_type"] == "status_change"][-1] == "closed"


def test_comments_hide_internal_notes(client):
    ticket_id = create(client)["id"]
    client.post(f"/complaints/{ticket_id}/comments", json={"body": "Checking stock"}, headers=STAFF)
    client.post(f"/complaints/{ticket_id}/comments", json={"body": "Vendor is slow", "internal": True}, headers=STAFF)

    assert len(client.get(f"/complaints/{ticket_id}/comments", headers=STAFF).json()) == 2
    assert [c["body"] for c in client.get(f"/complaints/{ticket_id}/comments", headers=STUDENT).json()] == [
        "Checking stock"
    ]


def test_escalate_and_sweep(client, clock):
    ticket_id = create(client)["id"]

    escalated = client.post(f"/complaints/{ticket_id}/escalate", json={"reason": "Urgent exam"}, headers=STAFF)
    assert escalated.json()["escalation_level"] == 1

    clock.advance(hours=25)
    assert client.post("/complaints/sla/sweep", headers=STAFF).status_code == 403
    report = client.post("/complaints/sla/sweep", headers=COORDINATOR).json()
    assert report["breaches_created"] == 1

    breaches = client.get("/complaints/breaches", headers=STAFF).json()
    assert [b["breach_type"] for b in breaches] == ["response"]
    addressed = client.post(f"/complaints/breaches/{breaches[0]['id']}/address", headers=STAFF)
    assert addressed.json()["status"] == "addressed"


def test_static_routes_are_not_ticket_ids(client):
    assert client.get("/complaints/analytics/stats", headers=STAFF).status_code == 200
    assert client.get("/complaints/sla-configs", headers=STAFF).status_code == 200
    assert client.get("/complaints/rules", headers=STAFF).status_code == 200
    assert client.get("/complaints/surveys", headers=STAFF).status_code == 200
    assert client.get("/complaints/feedback", headers=STAFF).status_code == 200


def test_anonymous_feedback_needs_no_identity(client):
    created = client.post("/complaints/feedback/anonymous", json={
        "category": "bullying", "subject": "Lunch break", "body": "Older students take food.",
    })
    assert created.status_code == 201
    token = created.json()["lookup_token"]
    assert token.startswith("FB-")

    found = client.post("/complaints/feedback/anonymous/lookup", json={"lookup_token": token})
    assert found.status_code == 200
    assert found.json()["status"] == "received"
    assert "token_digest" not in found.json()

    unknown = client.post("/complaints/feedback/anonymous/lookup", json={"lookup_token": "FB-nope"})
    assert unknown.status_code == 404


def test_correlation_id_is_echoed(client):
    response = client.get("/health", headers={"X-Correlation-ID": "abc-123"})
    assert response.headers["X-Correlation-ID"] == "abc-123"
    assert "X-Response-Time" in response.headers


def test_delete_withdraws(client):
    ticket_id = create(client)["id"]
    response = client.delete(f"/complaints/{ticket_id}", headers=STUDENT)
    assert response.status_code == 200
    assert response.json()["status"] == "withdrawn"


def test_storage_errors_are_not_leaked(tmp_path, policy_provider, gateway, clock, test_settings):
    # No tables were created, so every query fails inside the driver
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/empty.db", poolclass=NullPool)
    container = build_container(
        sqlalchemy_uow_factory(create_session_maker(engine)),
        policy_provider, gateway, clock=clock, settings=test_settings
    )

    with TestClient(create_app(container=container)) as client:
        response = client.get("/complaints", headers=STAFF)

    assert response.status_code == 500
    body = response.json()
    assert body["code"] == "dependency_failure"
    assert body["error"] == "database: storage unavailable"
    assert "sqlite" not in response.text.lower()
    assert "SELECT" not in response.text
