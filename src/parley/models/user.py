# src/parley/models/user.py
"""SQLAlchemy model for the user profiles the relay reads."""

from __future__ import annotations

from typing import Any

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column, validates

from parley.db.session import Base
from parley.models.message import CONVERSATION_SEPARATOR


class User(Base):
    """Public user profile owned by the account service.

    The relay only reads these rows to resolve conversation peers and to
    authenticate bearer tokens.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    avatar: Mapped[str | None] = mapped_column(Text, nullable=True)

    @validates("id")
    def validate_id(self, key: str, value: str) -> str:
        # Conversation ids join two user ids with the separator.
        if not value or CONVERSATION_SEPARATOR in value:
            raise ValueError(
                f"User id must be non-empty and must not contain {CONVERSATION_SEPARATOR!r}"
            )
        return value

    def public_profile(self) -> dict[str, Any]:
        """Return the fields other users may see."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "avatar": self.avatar,
        }
