# src/parley/services/__init__.py
"""Business logic services for the Parley relay."""

from .conversations import (
    ConversationAccessError,
    ConversationNotFoundError,
    ConversationQueryService,
)
from .message_store import MessageStore, MessageStoreError, StoredMessage
from .presence import PresenceRegistry, RedisPresenceMirror
from .relay import ConnectionHandler, ConnectionState, DeliveryOutcome, RelayHub
from .users import UserDirectory

__all__ = [
    "ConnectionHandler",
    "ConnectionState",
    "ConversationAccessError",
    "ConversationNotFoundError",
    "ConversationQueryService",
    "DeliveryOutcome",
    "MessageStore",
    "MessageStoreError",
    "PresenceRegistry",
    "RedisPresenceMirror",
    "RelayHub",
    "StoredMessage",
    "UserDirectory",
]
