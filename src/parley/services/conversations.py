# src/parley/services/conversations.py
"""Read-side queries over stored conversations."""

from __future__ import annotations

from typing import Any

from parley.core.settings import settings
from parley.models import conversation_id_for
from parley.services.message_store import MessageStore
from parley.services.users import UserDirectory


class ConversationAccessError(PermissionError):
    """Raised when a caller asks for a conversation they are not part of."""


class ConversationNotFoundError(LookupError):
    """Raised when a conversation has no messages."""


class ConversationQueryService:
    """Conversation summaries, history and read receipts for one caller."""

    def __init__(
        self,
        store: MessageStore,
        users: UserDirectory,
        history_limit: int | None = None,
    ) -> None:
        self.store = store
        self.users = users
        self.history_limit = history_limit or settings.conversation_history_limit

    def list_conversations(self, user_id: str) -> list[dict[str, Any]]:
        """Summarize every conversation ``user_id`` takes part in.

        Conversations whose peer no longer resolves to a profile are skipped.
        """
        summaries = self.store.summaries_for(user_id)
        peer_ids = [
            _other_participant(row.last_message.sender_id, row.last_message.receiver_id, user_id)
            for row in summaries
        ]
        profiles = self.users.get_many(peer_ids)

        conversations: list[dict[str, Any]] = []
        for row, peer_id in zip(summaries, peer_ids, strict=True):
            other_user = profiles.get(peer_id)
            if other_user is None:
                continue
            message = row.last_message
            conversations.append(
                {
                    "conversationId": row.conversation_id,
                    "otherUser": other_user,
                    "lastMessage": {
                        "text": message.text,
                        "timestamp": message.timestamp,
                        "senderId": message.sender_id,
                    },
                    "unreadCount": row.unread_count,
                }
            )
        return conversations

    def get_history(
        self, caller_id: str, user_id: str, target_user_id: str
    ) -> list[dict[str, Any]]:
        """Return the latest messages between two users, oldest first."""
        if str(caller_id) not in (str(user_id), str(target_user_id)):
            raise ConversationAccessError("Not allowed to view this conversation")

        conversation_id = conversation_id_for(user_id, target_user_id)
        messages = self.store.history(conversation_id, limit=self.history_limit)
        return [message.to_history_row() for message in messages]

    def get_page(
        self,
        caller_id: str,
        conversation_id: str,
        page: int = 1,
        limit: int = 50,
    ) -> dict[str, Any]:
        """Return one page of a conversation the caller belongs to."""
        self._require_participant(caller_id, conversation_id)
        history = self.store.page(
            conversation_id, page=page, limit=min(limit, settings.conversation_page_max)
        )
        return {
            "messages": [message.to_history_row() for message in history.messages],
            "page": history.page,
            "limit": history.limit,
            "total": history.total,
            "hasMore": history.has_more,
        }

    def mark_read(self, caller_id: str, conversation_id: str) -> int:
        self._require_participant(caller_id, conversation_id)
        return self.store.mark_read(conversation_id, caller_id)

    def delete_conversation(self, caller_id: str, conversation_id: str) -> int:
        self._require_participant(caller_id, conversation_id)
        return self.store.delete_conversation(conversation_id)

    def _require_participant(self, caller_id: str, conversation_id: str) -> None:
        participants = self.store.participants(conversation_id)
        if participants is None:
            raise ConversationNotFoundError(conversation_id)
        if str(caller_id) not in participants:
            raise ConversationAccessError("Not a participant in this conversation")


def _other_participant(sender_id: str, receiver_id: str, user_id: str) -> str:
    return receiver_id if sender_id == str(user_id) else sender_id
