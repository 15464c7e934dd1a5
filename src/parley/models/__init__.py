# src/parley/models/__init__.py
"""SQLAlchemy models for the Parley application."""

from .message import Message, conversation_id_for
from .user import User

__all__ = [
    "Message",
    "User",
    "conversation_id_for",
]
