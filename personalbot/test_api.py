"""HTTP profile routes and the WebSocket transport."""

import shutil

import pytest
from starlette.testclient import TestClient

from conftest import PROFILE_PATH, ScriptedCompletion
from personalbot.main import create_app

GENERAL_REPLY = {"response": "Hello Arjun! How can I help?", "serviceType": "general", "requiresA2A": False}


@pytest.fixture
def client(settings, tmp_path):
    profile_path = tmp_path / "user_profile.json"
    shutil.copy(PROFILE_PATH, profile_path)
    app_settings = settings.__class__(**{**settings.__dict__, "profile_path": str(profile_path)})
    app = create_app(settings=app_settings, completion=ScriptedCompletion(requester=GENERAL_REPLY))
    with TestClient(app) as client:
        yield client


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_get_profile(client):
    profile = client.get("/api/profile").json()
    assert profile["name"] == "Arjun Mehta"
    assert profile["cars"][0]["isPrimary"] is True


def test_replace_and_reload_profile(client):
    response = client.put("/api/profile", json={"name": "Priya Mehta", "age": 39})
    assert response.status_code == 200
    assert client.get("/api/profile").json()["name"] == "Priya Mehta"

    reloaded = client.post("/api/reload-profile").json()
    assert reloaded["profile"]["name"] == "Arjun Mehta"
    assert client.get("/api/profile").json()["name"] == "Arjun Mehta"


def test_replace_profile_rejects_invalid_body(client):
    assert client.put("/api/profile", json={"age": "forty"}).status_code == 422
    assert client.put("/api/profile", content=b"not json").status_code == 422
    assert client.get("/api/profile").json()["name"] == "Arjun Mehta"


def test_websocket_chat(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": "user_message", "data": {"text": "hi", "timestamp": "2026-10-19T10:00:00Z"}})
        frame = ws.receive_json()
    assert frame["event"] == "bot_message"
    assert frame["data"]["message"] == "Hello Arjun! How can I help?"
    assert frame["data"]["avatar"] == "🤖"


def test_websocket_malformed_frames(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_text("{not json")
        assert ws.receive_json() == {"event": "error", "data": {"message": "Malformed message."}}
        ws.send_json({"data": {}})
        assert ws.receive_json()["event"] == "error"
        ws.send_json({"event": "teleport", "data": {}})
        assert ws.receive_json() == {"event": "error", "data": {"message": "Unsupported event: teleport"}}


def test_disconnect_destroys_session(client):
    registry = client.app.state.registry
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": "user_message", "data": {"text": "hi"}})
        ws.receive_json()
        assert len(registry._sessions) == 1
    # the server notices the close asynchronously
    for _ in range(50):
        if not registry._sessions:
            break
        client.get("/health")
    assert registry._sessions == {}
