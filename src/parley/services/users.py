"""Read-only access to user profiles owned by the account service."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from parley.models import User
from parley.services.message_store import MessageStoreError


class UserDirectory:
    """Resolve user ids to public profiles."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def get_public_profile(self, user_id: str) -> dict[str, Any] | None:
        """Return ``{id, name, email, avatar}`` or None for unknown users."""
        return self.get_many([user_id]).get(str(user_id))

    def get_many(self, user_ids: Iterable[str]) -> dict[str, dict[str, Any]]:
        ids = {str(user_id) for user_id in user_ids}
        if not ids:
            return {}

        db = self._session_factory()
        try:
            users = db.scalars(select(User).where(User.id.in_(ids))).all()
            return {user.id: user.public_profile() for user in users}
        except SQLAlchemyError as exc:
            raise MessageStoreError(str(exc)) from exc
        finally:
            db.close()
