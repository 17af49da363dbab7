import pytest
from fastapi.testclient import TestClient

from calendar_mcp.core.auth.token_supervisor import AuthenticationError
from calendar_mcp.main import app, settings


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(settings, "REDIS_URL", None)
    monkeypatch.setattr(settings, "OPENAI_API_KEY", None)
    monkeypatch.setattr(settings, "GOOGLE_CLIENT_ID", None)

    with TestClient(app) as test_client:
        yield test_client


def test_process_command_queues_event(client):
    response = client.post(
        "/mcp/process",
        json={
            "command": "calendar.event.create",
            "parameters": {"title": "Standup", "attendees": ["Jane"]},
            "user_id": "user-1",
        },
        headers={"X-Request-ID": "req-from-caller"},
    )

    assert response.status_code == 200
    assert response.headers["X-Request-ID"] == "req-from-caller"
    body = response.json()
    assert body["success"] is True
    assert body["data"]["status"] == "queued"
    assert body["data"]["queue"] == "calendar-jobs"
    assert body["data"]["parameters"]["attendees"] == ["Jane"]


def test_request_id_is_generated_when_missing(client):
    response = client.get("/mcp/health")

    assert response.headers["X-Request-ID"].startswith("req-")


@pytest.mark.parametrize(
    "payload, status_code, code",
    [
        ({}, 400, "MISSING_COMMAND"),
        ({"command": "calendar.events.query"}, 404, "NO_HANDLER"),
        ({"command": "reminders.schedule", "parameters": {"delay_ms": 5}}, 400, "INVALID_PARAMETERS"),
    ],
)
def test_process_command_failures_map_to_status_codes(client, payload, status_code, code):
    response = client.post("/mcp/process", json=payload)

    assert response.status_code == status_code
    assert response.json()["error"]["code"] == code


def test_handler_errors_map_to_401_and_500(client):
    router = client.app.state.assistant.router

    async def expired(command, context):
        raise AuthenticationError("Token refresh failed", user_id=context.user_id)

    async def broken(command, context):
        raise RuntimeError("provider down")

    router.register_handler("test.expired", expired)
    router.register_handler("test.broken", broken)

    unauthorized = client.post("/mcp/process", json={"command": "test.expired", "user_id": "u"})
    failed = client.post("/mcp/process", json={"command": "test.broken"})

    assert unauthorized.status_code == 401
    assert failed.status_code == 500
    assert failed.json()["detail"] == "Failed to process command"


def test_interpret_free_text(client):
    response = client.post(
        "/mcp/interpret",
        json={"text": "schedule a meeting with Jane tomorrow at 3pm", "user_id": "user-1"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["intent"]["type"] == "CREATE_EVENT"
    assert body["result"]["success"] is True
    assert body["result"]["data"]["intent"] == "CREATE_EVENT"


def test_interpret_rejects_empty_text(client):
    response = client.post("/mcp/interpret", json={"text": ""})

    assert response.status_code == 422


def test_health_and_metrics(client):
    health = client.get("/mcp/health").json()
    metrics = client.get("/mcp/queues/metrics").json()

    assert health["status"] == "ok"
    assert health["queues_running"] is True
    assert "calendar.event.create" in health["handlers"]
    assert {task["name"] for task in health["scheduled_tasks"]} == {
        "queue-metrics",
        "health-check",
        "job-cleanup",
    }
    assert set(metrics["queues"]) == {"calendar-jobs", "docs-jobs", "notification-jobs"}
    assert metrics["queues"]["calendar-jobs"]["DEAD"] == 0


def test_job_listing_and_retry_errors(client):
    assert client.get("/mcp/queues/unknown-jobs/jobs").status_code == 404
    assert client.get("/mcp/queues/calendar-jobs/jobs?state=DEAD").json() == []
    assert client.post("/mcp/queues/calendar-jobs/jobs/missing/retry").status_code == 409
    assert client.post("/mcp/queues/unknown-jobs/jobs/missing/retry").status_code == 404


def test_interpret_query_is_acknowledged_without_provider(client):
    response = client.post(
        "/mcp/interpret", json={"text": "what meetings do I have tomorrow", "user_id": "user-1"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["intent"]["type"] == "QUERY_EVENTS"
    assert body["result"]["success"] is True
    assert body["result"]["data"]["message"] == "Events retrieved successfully"


def test_store_credentials(client):
    response = client.put(
        "/mcp/users/user-1/credentials",
        json={
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "expires_at": "2099-01-01T00:00:00Z",
        },
    )

    assert response.status_code == 200
    assert response.json() == {
        "user_id": "user-1",
        "state": "VALID",
        "expires_at": "2099-01-01T00:00:00+00:00",
    }
    credentials = client.app.state.assistant.credentials
    stored = client.portal.call(credentials.load, "user-1")
    assert stored.refresh_token == "refresh-1"

    assert client.put("/mcp/users/user-1/credentials", json={"access_token": ""}).status_code == 422
