# src/parley/api/v1/endpoints/chat.py
"""Conversation endpoints for the Parley API."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Query, status

from parley.api.v1.dependencies import ConversationServiceDep, CurrentUserDep, RelayHubDep
from parley.core.settings import settings
from parley.services.conversations import ConversationAccessError, ConversationNotFoundError
from parley.services.message_store import MessageStoreError

router = APIRouter(prefix="/chat", tags=["chat"])


def _forbidden(exc: ConversationAccessError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")


def _unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Message store unavailable",
    )


@router.get("/conversations")
def list_conversations(
    current_user: CurrentUserDep,
    service: ConversationServiceDep,
) -> dict[str, Any]:
    """List the caller's conversations with last message and unread count."""
    try:
        conversations = service.list_conversations(current_user.id)
    except MessageStoreError as exc:
        raise _unavailable() from exc
    return {"success": True, "conversations": conversations}


@router.get("/conversation/{user_id}/{target_user_id}")
def get_conversation(
    user_id: str,
    target_user_id: str,
    current_user: CurrentUserDep,
    service: ConversationServiceDep,
) -> dict[str, Any]:
    """Return recent history between two users, oldest first."""
    try:
        messages = service.get_history(current_user.id, user_id, target_user_id)
    except ConversationAccessError as exc:
        raise _forbidden(exc) from exc
    except MessageStoreError as exc:
        raise _unavailable() from exc
    return {"success": True, "messages": messages}


@router.get("/conversation/{conversation_id}/messages")
def get_conversation_page(
    conversation_id: str,
    current_user: CurrentUserDep,
    service: ConversationServiceDep,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.conversation_page_max, ge=1),
) -> dict[str, Any]:
    """Return one page of a conversation; page 1 holds the newest messages."""
    try:
        result = service.get_page(current_user.id, conversation_id, page=page, limit=limit)
    except ConversationNotFoundError as exc:
        raise _not_found() from exc
    except ConversationAccessError as exc:
        raise _forbidden(exc) from exc
    except MessageStoreError as exc:
        raise _unavailable() from exc
    return {"success": True, **result}


@router.put("/conversation/{conversation_id}/read")
def mark_conversation_read(
    conversation_id: str,
    current_user: CurrentUserDep,
    service: ConversationServiceDep,
) -> dict[str, Any]:
    """Mark every message addressed to the caller in a conversation as read."""
    try:
        updated = service.mark_read(current_user.id, conversation_id)
    except ConversationNotFoundError as exc:
        raise _not_found() from exc
    except ConversationAccessError as exc:
        raise _forbidden(exc) from exc
    except MessageStoreError as exc:
        raise _unavailable() from exc
    return {"success": True, "updated": updated}


@router.delete("/conversation/{conversation_id}")
def delete_conversation(
    conversation_id: str,
    current_user: CurrentUserDep,
    service: ConversationServiceDep,
) -> dict[str, Any]:
    """Delete a conversation the caller takes part in."""
    try:
        deleted = service.delete_conversation(current_user.id, conversation_id)
    except ConversationNotFoundError as exc:
        raise _not_found() from exc
    except ConversationAccessError as exc:
        raise _forbidden(exc) from exc
    except MessageStoreError as exc:
        raise _unavailable() from exc
    return {"success": True, "deleted": deleted}


@router.get("/status")
def get_relay_status(hub: RelayHubDep) -> dict[str, Any]:
    """Report how many relay sockets this process holds."""
    return {"status": "online", "activeConnections": hub.connection_count()}


@router.get("/status/{user_id}")
def get_user_presence(user_id: str, hub: RelayHubDep) -> dict[str, Any]:
    """Report whether a user has a live relay socket here or on a mirrored instance."""
    return {"userId": user_id, "isOnline": hub.is_user_online_anywhere(user_id)}
