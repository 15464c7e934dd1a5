# src/parley/models/message.py
"""Models describing chat messages between two users."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from parley.db.session import Base
from parley.db.time import utcnow

CONVERSATION_SEPARATOR = "-"


def conversation_id_for(user_id: object, other_user_id: object) -> str:
    """Return the conversation identifier shared by an unordered pair of users.

    Both identifiers are compared as strings, so the result is the same
    regardless of which participant asks. User ids never contain the
    separator, which keeps the mapping one-to-one.
    """
    first, second = sorted((str(user_id), str(other_user_id)))
    return f"{first}{CONVERSATION_SEPARATOR}{second}"


class Message(Base):
    """A chat message persisted between a sender and a receiver.

    Rows are append-only apart from the read flag and the delivery stamp.
    """

    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
        Index("ix_messages_receiver_unread", "receiver_id", "is_read"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    sender_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    receiver_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # Display name captured at send time; never re-resolved.
    sender_name: Mapped[str] = mapped_column(Text, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    conversation_id: Mapped[str] = mapped_column(String(160), nullable=False, index=True)

    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    delivered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    @property
    def delivered(self) -> bool:
        """Return True once the message reached a live connection."""
        return self.delivered_at is not None
