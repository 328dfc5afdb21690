"""Realtime socket tests, run through Starlette's synchronous TestClient."""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from conftest import FakeAssistant, FakeStorage, build_session_factory, create_schema
from classhub.api.deps import get_assistant, get_gateway, get_realtime
from classhub.api.routes import realtime as realtime_routes
from classhub.config import get_settings
from classhub.main import app
from classhub.realtime import RealtimeBroker
from classhub.services.gateway import PersistenceGateway


@pytest.fixture
def ws_client(tmp_path, monkeypatch):
    db_path = tmp_path / "ws.db"
    create_schema(db_path)
    broker = RealtimeBroker()
    gateway = PersistenceGateway(build_session_factory(db_path), broker, FakeStorage())
    monkeypatch.setattr(realtime_routes.settings, "session_store_dir", tmp_path / "sessions")
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_realtime] = lambda: broker
    app.dependency_overrides[get_assistant] = lambda: FakeAssistant()
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


def register(client: TestClient, name: str, secret: str | None = None) -> dict:
    body = {"name": name, "email": f"{name.lower()}@example.com", "secret": secret}
    response = client.post("/auth/register", json=body)
    client.cookies.clear()
    return response.json()


def receive_until(ws, event_type: str, limit: int = 50) -> dict:
    for _ in range(limit):
        event = ws.receive_json()
        if event["type"] == event_type:
            return event
    raise AssertionError(f"No {event_type} event")


def test_socket_requires_a_valid_token(ws_client):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with ws_client.websocket_connect("/realtime?token=junk") as ws:
            ws.receive_json()
    assert exc_info.value.code == realtime_routes.CLOSE_UNAUTHORIZED


def test_send_message_over_socket(ws_client):
    alice = register(ws_client, "Alice")

    with ws_client.websocket_connect(f"/realtime?token={alice['access_token']}") as ws:
        state = receive_until(ws, "state")
        assert [u["name"] for u in state["payload"]["snapshot"]["users"]] == ["Alice"]

        ws.send_json({"type": "send", "payload": {"content": "hello class"}})
        event = receive_until(ws, "messages")
        while not event["payload"]["messages"]:
            event = receive_until(ws, "messages")

    assert [m["content"] for m in event["payload"]["messages"]] == ["hello class"]
    stored = ws_client.get("/messages/", headers={"Authorization": f"Bearer {alice['access_token']}"})
    assert [m["content"] for m in stored.json()] == ["hello class"]


def test_unknown_command_reports_error(ws_client):
    alice = register(ws_client, "Alice")

    with ws_client.websocket_connect(f"/realtime?token={alice['access_token']}") as ws:
        receive_until(ws, "state")
        ws.send_json({"type": "dance"})
        error = receive_until(ws, "error")

    assert error["payload"]["command"] == "dance"


def test_remote_deletion_closes_socket(ws_client, monkeypatch):
    monkeypatch.setattr(get_settings(), "dev_registration_secret", "open-sesame")
    alice = register(ws_client, "Alice")
    dev = register(ws_client, "Dev", secret="open-sesame")
    assert dev["user"]["role"] == "DEV"

    with ws_client.websocket_connect(f"/realtime?token={alice['access_token']}") as ws:
        receive_until(ws, "presence")
        response = ws_client.delete(
            f"/users/{alice['user']['id']}",
            headers={"Authorization": f"Bearer {dev['access_token']}"},
        )
        assert response.status_code == 204

        revoked = receive_until(ws, "session.revoked")
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_json()

    assert revoked["payload"]["message"]
    assert exc_info.value.code == realtime_routes.CLOSE_UNAUTHORIZED
