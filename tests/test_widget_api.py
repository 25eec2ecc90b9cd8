import time

import pytest
from fastapi.testclient import TestClient

from support_widget.__version__ import __version__
from support_widget.config import EngineSettings
from support_widget.limits import limiter
from support_widget.main import app
from support_widget.registry import WidgetRegistry
from support_widget.stores import build_stores
from support_widget.triage.replies import CanonicalReplyStore, ReplyBranch

GREETING_REPLY = CanonicalReplyStore._DEFAULT_REPLIES[ReplyBranch.GREETING]


@pytest.fixture
def client():
    settings = EngineSettings(reply_delay=0.0, resubscribe_delay=0.01, max_message_length=50)
    app.state.widgets = WidgetRegistry(build_stores(settings), settings)
    limiter.reset()
    with TestClient(app) as test_client:
        yield test_client


def _create(client, **payload):
    payload.setdefault("options", {"title": "Suporte"})
    resp = client.post("/api/widget/sessions", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


def _wait_for(client, session_id, predicate, attempts=100):
    for _ in range(attempts):
        data = client.get(f"/api/widget/sessions/{session_id}").json()
        if predicate(data):
            return data
        time.sleep(0.01)
    return data


def test_health_version_and_config(client):
    assert client.get("/api/health").json() == {"status": "ok"}
    assert client.get("/api/version").json()["version"] == __version__
    config = client.get("/api/config").json()
    assert config["STORE_BACKEND"] == "memory"
    assert "CHAT_MAX_MESSAGE_LENGTH" in config


def test_create_session_returns_closed_view(client):
    data = _create(client)
    assert data["session_id"]
    assert data["visitor_id"].startswith("visitor_")
    assert data["conversation_id"] is None
    assert data["view"]["mode"] == "closed"
    assert data["view"]["messages"] == []


def test_invalid_options_are_rejected(client):
    resp = client.post("/api/widget/sessions", json={"options": {"title": ""}})
    assert resp.status_code == 422


def test_actions(client):
    session_id = _create(client)["session_id"]

    view = client.post(f"/api/widget/sessions/{session_id}/actions/open").json()
    assert view["panel_visible"] is True
    assert [m["role"] for m in view["messages"]] == ["bot"]

    view = client.post(f"/api/widget/sessions/{session_id}/actions/minimize").json()
    assert view["mode"] == "open-minimized"

    resp = client.post(f"/api/widget/sessions/{session_id}/actions/explode")
    assert resp.status_code == 404


def test_unknown_session_is_404(client):
    assert client.get("/api/widget/sessions/nope").status_code == 404
    assert client.post("/api/widget/sessions/nope/actions/open").status_code == 404
    assert client.delete("/api/widget/sessions/nope").status_code == 404


def test_send_and_auto_reply(client):
    session_id = _create(client)["session_id"]
    client.post(f"/api/widget/sessions/{session_id}/actions/open")
    view = client.put(
        f"/api/widget/sessions/{session_id}/compose", json={"text": "Oi, bom dia"}
    ).json()
    assert view["send_enabled"] is True

    resp = client.post(f"/api/widget/sessions/{session_id}/send", json={})
    assert resp.status_code == 200
    data = resp.json()
    assert data["message"]["body"] == "Oi, bom dia"
    assert data["message"]["delivery"] == "sent"
    assert data["conversation_id"]
    assert data["view"]["compose_buffer"] == ""

    data = _wait_for(
        client,
        session_id,
        lambda d: d["view"]["messages"][-1]["text"] == GREETING_REPLY,
    )
    assert [m["role"] for m in data["view"]["messages"]] == ["bot", "visitor", "bot"]
    assert data["view"]["typing_indicator"] is False


def test_message_too_long(client):
    session_id = _create(client)["session_id"]
    resp = client.post(f"/api/widget/sessions/{session_id}/send", json={"text": "x" * 51})
    assert resp.status_code == 400


def test_agent_message_hands_off_conversation(client):
    session_id = _create(client)["session_id"]
    client.post(f"/api/widget/sessions/{session_id}/actions/open")
    sent = client.post(
        f"/api/widget/sessions/{session_id}/send", json={"text": "Olá"}
    ).json()
    conversation_id = sent["conversation_id"]

    resp = client.post(
        f"/api/conversations/{conversation_id}/messages",
        json={"senderId": "agent_7", "body": "Olá, aqui é a Maria"},
    )
    assert resp.status_code == 201
    assert resp.json()["sender_id"] == "agent_7"

    data = _wait_for(client, session_id, lambda d: d["view"]["has_human_agent"])
    assert data["view"]["has_human_agent"] is True
    assert data["view"]["messages"][-1]["role"] == "agent"


def test_agent_message_for_unknown_conversation(client):
    resp = client.post(
        "/api/conversations/missing/messages",
        json={"senderId": "agent_7", "body": "Olá"},
    )
    assert resp.status_code == 404


def test_session_resumes_previous_conversation(client):
    first = _create(client)
    sent = client.post(
        f"/api/widget/sessions/{first['session_id']}/send", json={"text": "Oi"}
    ).json()
    _wait_for(
        client,
        first["session_id"],
        lambda d: not d["view"]["typing_indicator"],
    )

    second = _create(
        client,
        visitorId=first["visitor_id"],
        conversationId=sent["conversation_id"],
    )
    assert second["visitor_id"] == first["visitor_id"]
    assert second["conversation_id"] == sent["conversation_id"]
    view = client.post(
        f"/api/widget/sessions/{second['session_id']}/actions/open"
    ).json()
    assert view["messages"][0]["role"] == "visitor"
    assert view["messages"][0]["text"] == "Oi"


def test_retry_and_visitor_update(client):
    session_id = _create(client)["session_id"]

    resp = client.post(f"/api/widget/sessions/{session_id}/messages/local_x/retry")
    assert resp.status_code == 200
    assert resp.json()["message"] is None

    view = client.put(
        f"/api/widget/sessions/{session_id}/visitor",
        json={"name": "Ana", "email": "ana@example.com"},
    ).json()
    assert view["identity_hint"] is None


def test_delete_session(client):
    session_id = _create(client)["session_id"]
    assert client.delete(f"/api/widget/sessions/{session_id}").status_code == 204
    assert client.get(f"/api/widget/sessions/{session_id}").status_code == 404
