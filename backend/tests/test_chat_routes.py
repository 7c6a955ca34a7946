from __future__ import annotations

from contextlib import asynccontextmanager

import pytest

pytest.importorskip("fastapi")
pytest.importorskip("httpx")
pytest.importorskip("sqlalchemy")
pytest.importorskip("jose")

from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from salesdesk.api.deps import get_chat_engine, get_chat_engine_scope, get_current_principal, get_realtime_fanout
from salesdesk.core.rate_limit import limiter
from salesdesk.core.security import create_access_token
from salesdesk.dependencies import get_db
from salesdesk.main import app
from salesdesk.services.chat.engine import ChatSessionEngine
from salesdesk.services.chat.errors import StorageError
from salesdesk.services.chat.fanout import RealtimeFanout

API = "/api/v1/chat"


@pytest.fixture
def fanout() -> RealtimeFanout:
    return RealtimeFanout(send_timeout=1)


@pytest.fixture
def chat_engine(sessions, accounts, fanout, clock) -> ChatSessionEngine:
    return ChatSessionEngine(sessions, accounts, publisher=fanout, clock=clock)


@pytest.fixture
def client(chat_engine, fanout, principal_for):
    current = {"account_id": "u1"}

    async def _no_db():
        yield None

    @asynccontextmanager
    async def _scope():
        yield chat_engine

    app.dependency_overrides[get_db] = _no_db
    app.dependency_overrides[get_current_principal] = lambda: principal_for(current["account_id"])
    app.dependency_overrides[get_chat_engine] = lambda: chat_engine
    app.dependency_overrides[get_chat_engine_scope] = lambda: _scope
    app.dependency_overrides[get_realtime_fanout] = lambda: fanout

    limiter.reset()
    test_client = TestClient(app)
    test_client.act_as = lambda account_id: current.update(account_id=account_id)
    yield test_client
    app.dependency_overrides.clear()
    limiter.reset()


def test_health_endpoints(client) -> None:
    assert client.get("/health").json()["status"] == "healthy"
    assert "message" in client.get("/").json()


def test_create_session_and_send_message(client) -> None:
    created = client.post(f"{API}/session", json={"userId": "u2"})
    assert created.status_code == 200
    body = created.json()
    assert body["sessionId"] == "chat_u1_u2"
    assert body["chatSession"]["status"] == "open"
    assert body["chatSession"]["participants"][0]["accountId"] == "u1"

    sent = client.post(f"{API}/message", json={"sessionId": "chat_u1_u2", "message": "hello"})
    assert sent.status_code == 200
    assert sent.json()["message"]["senderId"] == "u1"
    assert sent.json()["chatSession"]["messageCount"] == 1

    messages = client.get(f"{API}/chat_u1_u2/messages", params={"page": 1, "limit": 10})
    assert messages.status_code == 200
    assert messages.json()["pagination"] == {"page": 1, "limit": 10, "total": 2, "pages": 1}


def test_domain_errors_map_to_status_and_kind(client) -> None:
    missing = client.post(f"{API}/message", json={"sessionId": "chat_nobody_here", "message": "hi"})
    assert missing.status_code == 404
    assert missing.json() == {"detail": "Chat session not found", "kind": "not_found"}

    self_chat = client.post(f"{API}/session", json={"userId": "u1"})
    assert self_chat.status_code == 400
    assert self_chat.json()["kind"] == "invalid_target"

    bad_page = client.get(f"{API}/chat_u1_u2/messages", params={"limit": 500})
    assert bad_page.status_code == 400
    assert bad_page.json()["kind"] == "invalid_input"

    forbidden = client.get(f"{API}/sessions")
    assert forbidden.status_code == 403
    assert forbidden.json()["kind"] == "forbidden"


def test_support_lifecycle_over_http(client) -> None:
    support = client.post(f"{API}/session", json={"isSupportChat": True}).json()
    session_id = support["sessionId"]
    assert support["chatSession"]["assignedTo"] == "admin1"

    active = client.get(f"{API}/active").json()
    assert active["hasActiveChat"] is True
    assert active["chatSession"]["sessionId"] == session_id

    client.act_as("admin1")
    resolved = client.put(f"{API}/{session_id}/resolve")
    assert resolved.json()["message"] == "Chat resolved successfully"
    assert client.put(f"{API}/{session_id}/resolve").status_code == 409

    reopened = client.put(f"{API}/{session_id}/reopen")
    assert reopened.json()["chatSession"]["status"] == "reopened"

    unassigned = client.put(f"{API}/{session_id}/assign", json={})
    assert unassigned.json()["message"] == "Chat unassigned"
    assigned = client.put(f"{API}/{session_id}/assign", json={"adminId": "admin1"})
    assert assigned.json()["chatSession"]["status"] == "assigned"

    listing = client.get(f"{API}/sessions", params={"assigned": "me"}).json()
    assert [s["sessionId"] for s in listing["chatSessions"]] == [session_id]
    assert listing["pagination"]["total"] == 1

    client.act_as("u1")
    assert client.get(f"{API}/sessions/user").json()["chatSessions"][0]["sessionId"] == session_id
    assert client.put(f"{API}/{session_id}/read").json()["chatSession"]["unreadCount"] == 0


def test_no_agents_is_service_unavailable(client, accounts) -> None:
    del accounts.accounts["admin1"]

    response = client.post(f"{API}/session", json={"isSupportChat": True})

    assert response.status_code == 503
    assert response.json()["kind"] == "service_unavailable"


def test_missing_token_is_unauthenticated(client) -> None:
    del app.dependency_overrides[get_current_principal]

    response = client.get(f"{API}/active")

    assert response.status_code == 401
    assert response.json() == {"detail": "Not authorized, no token", "kind": "unauthenticated"}
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_storage_failures_are_generic_500(client) -> None:
    class _BrokenEngine:
        async def get_active_session(self, principal):
            raise StorageError("connection refused")

    app.dependency_overrides[get_chat_engine] = lambda: _BrokenEngine()

    response = client.get(f"{API}/active")

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error", "kind": "storage_error"}


def test_sixth_session_create_in_a_minute_is_rate_limited(client) -> None:
    for _ in range(5):
        assert client.post(f"{API}/session", json={"userId": "u2"}).status_code == 200

    limited = client.post(f"{API}/session", json={"userId": "u2"})

    assert limited.status_code == 429
    assert limited.json() == {
        "detail": "Too many chat sessions created, please wait before creating more.",
        "kind": "rate_limited",
    }
    assert limited.headers["Retry-After"] == "60"
    # other chat routes keep their own budget
    assert client.get(f"{API}/active").status_code == 200


def test_message_sends_are_limited_separately(client) -> None:
    client.post(f"{API}/session", json={"userId": "u2"})
    for n in range(20):
        sent = client.post(f"{API}/message", json={"sessionId": "chat_u1_u2", "message": f"hi {n}"})
        assert sent.status_code == 200

    limited = client.post(f"{API}/message", json={"sessionId": "chat_u1_u2", "message": "one too many"})

    assert limited.status_code == 429
    assert limited.json()["detail"] == "Too many messages sent, please wait before sending more."


# -- realtime channel ------------------------------------------------------------


def _token(account_id: str) -> str:
    return create_access_token({"id": account_id})


def test_socket_rejects_bad_token(client) -> None:
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(f"{API}/ws?token=garbage"):
            pass


def test_socket_join_typing_and_send(client) -> None:
    client.post(f"{API}/session", json={"userId": "u2"})

    with client.websocket_connect(f"{API}/ws?token={_token('u1')}") as alice:
        with client.websocket_connect(f"{API}/ws?token={_token('u2')}") as bob:
            alice.send_json({"type": "join-chat", "sessionId": "chat_u1_u2"})
            assert alice.receive_json()["type"] == "joined-chat"
            bob.send_json({"type": "join-chat", "sessionId": "chat_u1_u2"})
            assert bob.receive_json()["data"] == {"sessionId": "chat_u1_u2"}

            alice.send_json({"type": "typing", "sessionId": "chat_u1_u2", "isTyping": True})
            typing = bob.receive_json()
            assert typing["type"] == "user-typing"
            assert typing["data"] == {"accountId": "u1", "isTyping": True}

            alice.send_json({"type": "send-message", "sessionId": "chat_u1_u2", "message": "over the wire"})
            for socket in (alice, bob):
                event = socket.receive_json()
                assert event["type"] == "new-message"
                assert event["data"]["message"]["message"] == "over the wire"

            bob.send_json({"type": "leave-chat", "sessionId": "chat_u1_u2"})
            assert bob.receive_json()["type"] == "left-chat"


def test_socket_errors_keep_connection_open(client) -> None:
    client.post(f"{API}/session", json={"userId": "u2"})

    with client.websocket_connect(f"{API}/ws?token={_token('u3')}") as mallory:
        mallory.send_json({"type": "join-chat", "sessionId": "chat_u1_u2"})
        error = mallory.receive_json()
        assert error["type"] == "error"
        assert error["data"]["kind"] == "forbidden"

        mallory.send_text("{not json")
        assert mallory.receive_json()["data"]["kind"] == "invalid_input"

        mallory.send_json({"type": "dance", "sessionId": "chat_u1_u2"})
        assert mallory.receive_json()["data"]["message"] == "Unknown event type 'dance'"
