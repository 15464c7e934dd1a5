# mypy: ignore-errors
"""End-to-end tests for the relay WebSocket endpoint."""

import json
from unittest.mock import patch

import pytest
from starlette.websockets import WebSocketDisconnect

from parley.api.v1.endpoints.relay import resolve_socket_identity
from parley.core.security import create_access_token
from parley.core.settings import settings
from parley.models import conversation_id_for
from parley.services.relay import RelayAuthError


def _join(user_id, target_user_id, user_name):
    return {"type": "join", "userId": user_id, "targetUserId": target_user_id, "userName": user_name}


def test_join_reports_offline_peer(client) -> None:
    with client.websocket_connect("/chat") as ws:
        ws.send_json(_join("u1", "u2", "Alice"))
        assert ws.receive_json() == {"type": "user_status", "userId": "u2", "isOnline": False}


def test_conversation_between_two_sockets(client, store, hub) -> None:
    with client.websocket_connect("/chat") as alice:
        alice.send_json(_join("u1", "u2", "Alice"))
        assert alice.receive_json()["isOnline"] is False

        with client.websocket_connect("/chat") as bob:
            bob.send_json(_join("u2", "u1", "Bob"))
            assert bob.receive_json() == {"type": "user_status", "userId": "u1", "isOnline": True}
            assert alice.receive_json() == {"type": "user_status", "userId": "u2", "isOnline": True}

            alice.send_json(
                {
                    "type": "message",
                    "text": "hi",
                    "senderId": "u1",
                    "senderName": "Alice",
                    "targetUserId": "u2",
                    "timestamp": "2024-01-01T00:00:00Z",
                }
            )
            received = bob.receive_json()
            echo = alice.receive_json()

            assert received["type"] == "message"
            assert received["text"] == "hi"
            assert echo["delivered"] is True
            assert echo["id"] == received["id"]
            assert echo["senderName"] == "Alice"

            bob.send_json({"type": "typing", "userId": "u2", "targetUserId": "u1"})
            assert alice.receive_json() == {"type": "typing", "userId": "u2"}

        assert alice.receive_json() == {"type": "user_status", "userId": "u2", "isOnline": False}
        assert hub.registry.get("u2") is None

    (stored,) = store.history(conversation_id_for("u1", "u2"))
    assert stored.delivered_at is not None


def test_rejoin_replays_missed_messages(client, store) -> None:
    with client.websocket_connect("/chat") as alice:
        alice.send_json(_join("u1", "u2", "Alice"))
        alice.receive_json()
        alice.send_json(
            {"type": "message", "text": "while you were out", "senderId": "u1",
             "senderName": "Alice", "targetUserId": "u2"}
        )
        assert alice.receive_json()["delivered"] is False

    with client.websocket_connect("/chat") as bob:
        bob.send_json(_join("u2", "u1", "Bob"))
        history = bob.receive_json()
        assert history["type"] == "history"
        assert [m["text"] for m in history["messages"]] == ["while you were out"]
        assert bob.receive_json() == {"type": "user_status", "userId": "u1", "isOnline": False}


def test_malformed_frames_keep_socket_open(client) -> None:
    with client.websocket_connect("/chat") as ws:
        ws.send_text("{not json")
        ws.send_json({"type": "dance"})
        ws.send_json(_join("u1", "u2", "Alice"))
        assert ws.receive_json() == {"type": "user_status", "userId": "u2", "isOnline": False}


def test_token_binds_join_identity(client, hub) -> None:
    token = create_access_token("u1")
    with client.websocket_connect(f"/chat?token={token}") as ws:
        ws.send_json(_join("u9", "u2", "Mallory"))
        ws.send_json(_join("u1", "u2", "Alice"))
        assert ws.receive_json() == {"type": "user_status", "userId": "u2", "isOnline": False}
        assert "u9" not in hub.registry
        assert "u1" in hub.registry


def test_invalid_token_is_refused(client) -> None:
    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect("/chat?token=garbage") as ws:
            ws.receive_json()
    assert excinfo.value.code == 1008


def test_token_can_be_required(client) -> None:
    with patch.object(settings, "relay_require_token", True):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/chat") as ws:
                ws.receive_json()


def test_resolve_socket_identity() -> None:
    assert resolve_socket_identity(None) is None
    assert resolve_socket_identity(create_access_token("u1")) == "u1"
    with pytest.raises(RelayAuthError):
        resolve_socket_identity("garbage")


def test_binary_frames_keep_socket_open(client) -> None:
    with client.websocket_connect("/chat") as ws:
        ws.send_bytes(b"\x00\x01garbage")
        ws.send_bytes(b"\xff\xfe\xfd")
        ws.send_json(_join("u1", "u2", "Alice"))
        assert ws.receive_json() == {"type": "user_status", "userId": "u2", "isOnline": False}


def test_join_sent_as_binary_frame(client, hub) -> None:
    with client.websocket_connect("/chat") as ws:
        ws.send_bytes(json.dumps(_join("u1", "u2", "Alice")).encode())
        assert ws.receive_json() == {"type": "user_status", "userId": "u2", "isOnline": False}
        assert "u1" in hub.registry
