# mypy: ignore-errors
"""Tests for the conversation REST endpoints."""

import inspect
from unittest.mock import MagicMock

from fastapi import status

from parley.api.v1.dependencies import get_relay_hub
from parley.api.v1.endpoints import chat_router
from parley.models import conversation_id_for
from parley.services.presence import MirroredPresenceRegistry, RedisPresenceMirror
from parley.services.relay import RelayHub
from tests.conftest import FakeConnection


def test_requires_bearer_token(client) -> None:
    response = client.get("/api/v1/chat/conversations")
    assert response.status_code in {status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN}


def test_rejects_invalid_token(client) -> None:
    response = client.get(
        "/api/v1/chat/conversations",
        headers={"Authorization": "Bearer not-a-jwt"},
    )
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


def test_list_conversations(client, store, alice, bob, alice_headers) -> None:
    store.append(bob.id, alice.id, "Bob", "first")
    store.append(bob.id, alice.id, "Bob", "second")

    response = client.get("/api/v1/chat/conversations", headers=alice_headers)

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["success"] is True
    (conversation,) = data["conversations"]
    assert conversation["conversationId"] == conversation_id_for(alice.id, bob.id)
    assert conversation["otherUser"]["name"] == "Bob"
    assert conversation["lastMessage"]["text"] == "second"
    assert conversation["unreadCount"] == 2


def test_get_conversation(client, store, alice, bob, bob_headers) -> None:
    store.append(alice.id, bob.id, "Alice", "one")
    store.append(bob.id, alice.id, "Bob", "two")

    response = client.get(f"/api/v1/chat/conversation/{alice.id}/{bob.id}", headers=bob_headers)

    assert response.status_code == status.HTTP_200_OK
    messages = response.json()["messages"]
    assert [m["text"] for m in messages] == ["one", "two"]
    assert set(messages[0]) == {
        "id", "text", "senderId", "senderName", "timestamp", "isRead", "delivered",
    }


def test_get_conversation_forbidden_for_outsider(client, store, alice, bob, carol_headers) -> None:
    store.append(alice.id, bob.id, "Alice", "secret")

    response = client.get(f"/api/v1/chat/conversation/{alice.id}/{bob.id}", headers=carol_headers)

    assert response.status_code == status.HTTP_403_FORBIDDEN


def test_conversation_page(client, store, alice, bob, alice_headers) -> None:
    for i in range(55):
        store.append(alice.id, bob.id, "Alice", f"m{i}")
    conversation_id = conversation_id_for(alice.id, bob.id)

    response = client.get(
        f"/api/v1/chat/conversation/{conversation_id}/messages",
        params={"page": 1, "limit": 200},
        headers=alice_headers,
    )

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["limit"] == 50
    assert data["page"] == 1
    assert data["hasMore"] is True
    assert len(data["messages"]) == 50
    assert data["messages"][-1]["text"] == "m54"

    second = client.get(
        f"/api/v1/chat/conversation/{conversation_id}/messages",
        params={"page": 2},
        headers=alice_headers,
    ).json()
    assert second["hasMore"] is False
    assert [m["text"] for m in second["messages"]] == [f"m{i}" for i in range(5)]


def test_mark_read_is_idempotent(client, store, alice, bob, bob_headers) -> None:
    store.append(alice.id, bob.id, "Alice", "ping")
    conversation_id = conversation_id_for(alice.id, bob.id)

    first = client.put(f"/api/v1/chat/conversation/{conversation_id}/read", headers=bob_headers)
    second = client.put(f"/api/v1/chat/conversation/{conversation_id}/read", headers=bob_headers)

    assert first.status_code == status.HTTP_200_OK
    assert first.json()["updated"] == 1
    assert second.status_code == status.HTTP_200_OK
    assert second.json()["updated"] == 0
    assert store.history(conversation_id)[0].is_read is True


def test_mark_read_checks_participation(client, store, alice, bob, carol_headers, alice_headers) -> None:
    store.append(alice.id, bob.id, "Alice", "ping")
    conversation_id = conversation_id_for(alice.id, bob.id)

    outsider = client.put(f"/api/v1/chat/conversation/{conversation_id}/read", headers=carol_headers)
    missing = client.put("/api/v1/chat/conversation/nobody-nowhere/read", headers=alice_headers)

    assert outsider.status_code == status.HTTP_403_FORBIDDEN
    assert missing.status_code == status.HTTP_404_NOT_FOUND


def test_delete_conversation(client, store, alice, bob, alice_headers, carol_headers) -> None:
    store.append(alice.id, bob.id, "Alice", "one")
    store.append(bob.id, alice.id, "Bob", "two")
    conversation_id = conversation_id_for(alice.id, bob.id)

    forbidden = client.delete(f"/api/v1/chat/conversation/{conversation_id}", headers=carol_headers)
    assert forbidden.status_code == status.HTTP_403_FORBIDDEN

    response = client.delete(f"/api/v1/chat/conversation/{conversation_id}", headers=alice_headers)
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"success": True, "deleted": 2}
    assert store.history(conversation_id) == []

    again = client.delete(f"/api/v1/chat/conversation/{conversation_id}", headers=alice_headers)
    assert again.status_code == status.HTTP_404_NOT_FOUND


def test_relay_status(client, hub) -> None:
    response = client.get("/api/v1/chat/status")
    assert response.json() == {"status": "online", "activeConnections": 0}

    hub.registry.set("u1", FakeConnection())

    assert client.get("/api/v1/chat/status").json()["activeConnections"] == 1
    assert client.get("/api/v1/chat/status/u1").json() == {"userId": "u1", "isOnline": True}
    assert client.get("/api/v1/chat/status/u2").json() == {"userId": "u2", "isOnline": False}


def test_user_status_falls_back_to_presence_mirror(app, client, store) -> None:
    redis_client = MagicMock()
    redis_client.exists.side_effect = lambda key: int(key == "presence:remote")
    mirrored = RelayHub(
        MirroredPresenceRegistry(RedisPresenceMirror(redis_client, ttl_seconds=30)), store
    )
    app.dependency_overrides[get_relay_hub] = lambda: mirrored

    assert client.get("/api/v1/chat/status/remote").json() == {"userId": "remote", "isOnline": True}
    assert client.get("/api/v1/chat/status/u9").json() == {"userId": "u9", "isOnline": False}


def test_store_backed_routes_run_in_threadpool() -> None:
    store_routes = [route for route in chat_router.routes if "/conversation" in route.path]

    assert store_routes
    for route in store_routes:
        assert not inspect.iscoroutinefunction(route.endpoint), route.path
