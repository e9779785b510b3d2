"""HTTP adapter: session routes and health endpoints via TestClient."""

import json

import pytest
from fastapi.testclient import TestClient

from advisor_council.api.gateway import create_app
from advisor_council.api.routes.sessions import _sse_event

from conftest import MockBackend, council_responder

BASE = "/api/v1/sessions"


@pytest.fixture
def client(make_machine, config):
    machine = make_machine(
        secondary=MockBackend(council_responder(), name="secondary", available=False)
    )
    app = create_app(machine=machine, config=config, background_tasks=False)
    with TestClient(app) as test_client:
        yield test_client


def start(client, text="A payments app for young people", **options):
    response = client.post(BASE, json={"user_id": "u1", "text": text, "options": options})
    assert response.status_code == 200
    return response.json()


class TestSessionRoutes:
    def test_start_session(self, client):
        data = start(client)
        assert data["session_id"].startswith("session-")
        assert data["phase"] == "discovery"
        assert data["first_message"]

    def test_blank_text_rejected(self, client):
        response = client.post(BASE, json={"user_id": "u1", "text": "   "})
        assert response.status_code == 400

    def test_missing_text_is_unprocessable(self, client):
        response = client.post(BASE, json={"user_id": "u1"})
        assert response.status_code == 422

    def test_invalid_option_is_unprocessable(self, client):
        response = client.post(
            BASE, json={"user_id": "u1", "text": "An app", "options": {"max_experts": 9}}
        )
        assert response.status_code == 422

    def test_message_assembles_team(self, client):
        session_id = start(client)["session_id"]
        response = client.post(
            f"{BASE}/{session_id}/messages", json={"text": "Launch in 3 months"}
        )

        assert response.status_code == 200
        turn = response.json()
        assert turn["status"] == "team_assembled"
        assert turn["selected_experts"] == [
            "backend-specialist",
            "frontend-specialist",
            "security-specialist",
            "mobile-specialist",
        ]

    def test_message_to_unknown_session(self, client):
        response = client.post(f"{BASE}/session-nope/messages", json={"text": "hi"})
        assert response.status_code == 404

    def test_get_session_snapshot(self, client):
        session_id = start(client, max_rounds=1)["session_id"]
        response = client.get(f"{BASE}/{session_id}")

        assert response.status_code == 200
        snapshot = response.json()
        assert snapshot["id"] == session_id
        assert snapshot["user_id"] == "u1"
        assert snapshot["context"]["priorities"] == ["Mobile-first"]
        assert [m["kind"] for m in snapshot["messages"]] == ["user", "orchestrator"]

    def test_stop_session(self, client):
        session_id = start(client)["session_id"]

        response = client.post(f"{BASE}/{session_id}/stop")
        assert response.status_code == 200
        assert response.json() == {"session_id": session_id, "stopped": True}

        after = client.post(f"{BASE}/{session_id}/messages", json={"text": "still there?"})
        assert after.status_code == 404
        assert client.get(f"{BASE}/{session_id}").json()["active"] is False

    def test_stop_unknown_session(self, client):
        assert client.post(f"{BASE}/session-nope/stop").status_code == 404

    def test_events_for_inactive_session(self, client):
        session_id = start(client)["session_id"]
        client.post(f"{BASE}/{session_id}/stop")
        assert client.get(f"{BASE}/{session_id}/events").status_code == 404

    def test_sse_format(self):
        frame = _sse_event("phase-change", {"phase": "planning"})
        assert frame.startswith("event: phase-change\ndata: ")
        assert frame.endswith("\n\n")
        assert json.loads(frame.split("data: ", 1)[1]) == {"phase": "planning"}


class TestHealthRoutes:
    def test_liveness(self, client):
        start(client)
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["active_sessions"] == 1
        assert set(data["generation"]["backends"]) == {"primary", "secondary"}

    def test_probe_reports_backend_status(self, client):
        data = client.get("/health/generation").json()
        backends = data["generation"]["backends"]

        assert backends["primary"]["status"] == "healthy"
        assert backends["secondary"]["status"] == "unavailable"
        assert data["generation"]["overall"] == "good"
        assert data["status"] == "healthy"
        assert data["generation"]["recommended"] == "primary"
