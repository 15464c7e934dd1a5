# src/parley/services/message_store.py
"""Durable storage for chat messages.

The store is the only component that writes message rows. Every call opens
its own short-lived session so the relay can run store calls in worker
threads without sharing a session across connections.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

from sqlalchemy import and_, case, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from parley.db.time import ensure_utc, isoformat, utcnow
from parley.models import Message, conversation_id_for

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 50


class MessageStoreError(RuntimeError):
    """Raised when the backing database rejects or cannot serve a request."""


@dataclass(frozen=True)
class StoredMessage:
    """Detached, immutable view of a persisted message."""

    id: int
    sender_id: str
    receiver_id: str
    sender_name: str
    text: str
    conversation_id: str
    is_read: bool
    delivered_at: datetime | None
    created_at: datetime

    @classmethod
    def from_row(cls, row: Message) -> StoredMessage:
        return cls(
            id=row.id,
            sender_id=row.sender_id,
            receiver_id=row.receiver_id,
            sender_name=row.sender_name,
            text=row.text,
            conversation_id=row.conversation_id,
            is_read=row.is_read,
            delivered_at=ensure_utc(row.delivered_at) if row.delivered_at else None,
            created_at=ensure_utc(row.created_at),
        )

    @property
    def delivered(self) -> bool:
        return self.delivered_at is not None

    @property
    def timestamp(self) -> str:
        return isoformat(self.created_at)

    def to_wire(self) -> dict[str, Any]:
        """Return the shape used in relay ``message`` and ``history`` frames."""
        return {
            "id": self.id,
            "text": self.text,
            "senderId": self.sender_id,
            "senderName": self.sender_name,
            "timestamp": self.timestamp,
        }

    def to_history_row(self) -> dict[str, Any]:
        """Return the shape used by the conversation REST endpoints."""
        return {
            **self.to_wire(),
            "isRead": self.is_read,
            "delivered": self.delivered,
        }


@dataclass(frozen=True)
class HistoryPage:
    """One page of a conversation, oldest-first within the page."""

    messages: list[StoredMessage]
    page: int
    limit: int
    total: int

    @property
    def has_more(self) -> bool:
        return self.total > self.page * self.limit


@dataclass(frozen=True)
class ConversationSummaryRow:
    """Latest message and unread count for one conversation of a user."""

    conversation_id: str
    last_message: StoredMessage
    unread_count: int


class MessageStore:
    """Append-only message log keyed by conversation."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as exc:
            db.rollback()
            raise MessageStoreError(str(exc)) from exc
        finally:
            db.close()

    def append(
        self,
        sender_id: str,
        receiver_id: str,
        sender_name: str,
        text: str,
    ) -> StoredMessage:
        """Persist a new message and return it with its assigned id and time."""
        body = text.strip()
        if not body:
            raise ValueError("Message text must not be empty")

        with self._session() as db:
            row = Message(
                sender_id=str(sender_id),
                receiver_id=str(receiver_id),
                sender_name=sender_name,
                text=body,
                conversation_id=conversation_id_for(sender_id, receiver_id),
                is_read=False,
                delivered_at=None,
                created_at=utcnow(),
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return StoredMessage.from_row(row)

    def history(
        self,
        conversation_id: str,
        limit: int = 50,
        order: Literal["oldest", "newest"] = "oldest",
    ) -> list[StoredMessage]:
        """Return the most recent ``limit`` messages of a conversation."""
        with self._session() as db:
            rows = db.scalars(
                select(Message)
                .where(Message.conversation_id == conversation_id)
                .order_by(Message.created_at.desc(), Message.id.desc())
                .limit(max(0, limit))
            ).all()
            messages = [StoredMessage.from_row(row) for row in rows]

        if order == "oldest":
            messages.reverse()
        return messages

    def page(self, conversation_id: str, page: int = 1, limit: int = MAX_PAGE_SIZE) -> HistoryPage:
        """Return one page of history; page 1 is the most recent window."""
        limit = min(max(1, limit), MAX_PAGE_SIZE)
        page = max(1, page)

        with self._session() as db:
            total = db.scalar(
                select(func.count())
                .select_from(Message)
                .where(Message.conversation_id == conversation_id)
            ) or 0
            rows = db.scalars(
                select(Message)
                .where(Message.conversation_id == conversation_id)
                .order_by(Message.created_at.desc(), Message.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            ).all()
            messages = [StoredMessage.from_row(row) for row in reversed(rows)]

        return HistoryPage(messages=messages, page=page, limit=limit, total=int(total))

    def mark_delivered(self, message_id: int, at: datetime | None = None) -> bool:
        """Stamp ``delivered_at`` once; later calls leave the first stamp intact."""
        with self._session() as db:
            result = db.execute(
                update(Message)
                .where(Message.id == message_id, Message.delivered_at.is_(None))
                .values(delivered_at=at or utcnow())
            )
            db.commit()
            return bool(result.rowcount)

    def mark_read(self, conversation_id: str, receiver_id: str) -> int:
        """Mark every unread message addressed to ``receiver_id`` as read."""
        with self._session() as db:
            result = db.execute(
                update(Message)
                .where(
                    Message.conversation_id == conversation_id,
                    Message.receiver_id == str(receiver_id),
                    Message.is_read.is_(False),
                )
                .values(is_read=True)
            )
            db.commit()
            return int(result.rowcount or 0)

    def delete_conversation(self, conversation_id: str) -> int:
        """Remove all messages of a conversation."""
        with self._session() as db:
            result = db.execute(delete(Message).where(Message.conversation_id == conversation_id))
            db.commit()
            deleted = int(result.rowcount or 0)

        logger.info("Deleted %d messages from conversation %s", deleted, conversation_id)
        return deleted

    def participants(self, conversation_id: str) -> tuple[str, str] | None:
        """Return the two participants of a conversation, if it has messages."""
        with self._session() as db:
            row = db.scalars(
                select(Message)
                .where(Message.conversation_id == conversation_id)
                .order_by(Message.created_at.asc(), Message.id.asc())
                .limit(1)
            ).first()
            if row is None:
                return None
            return row.sender_id, row.receiver_id

    def summaries_for(self, user_id: str) -> list[ConversationSummaryRow]:
        """Group a user's messages by conversation, newest conversation first."""
        user_id = str(user_id)
        touches_user = or_(Message.sender_id == user_id, Message.receiver_id == user_id)

        with self._session() as db:
            unread = func.sum(
                case(
                    (and_(Message.receiver_id == user_id, Message.is_read.is_(False)), 1),
                    else_=0,
                )
            )
            grouped = db.execute(
                select(Message.conversation_id, unread)
                .where(touches_user)
                .group_by(Message.conversation_id)
            ).all()

            unread_by_conversation = {
                conversation_id: int(count or 0) for conversation_id, count in grouped
            }
            latest_ids = self._latest_ids(db, list(unread_by_conversation))
            rows = db.scalars(select(Message).where(Message.id.in_(latest_ids))).all()
            latest = [StoredMessage.from_row(row) for row in rows]

        latest.sort(key=lambda message: (message.created_at, message.id), reverse=True)
        return [
            ConversationSummaryRow(
                conversation_id=message.conversation_id,
                last_message=message,
                unread_count=unread_by_conversation.get(message.conversation_id, 0),
            )
            for message in latest
        ]

    @staticmethod
    def _latest_ids(db: Session, conversation_ids: list[str]) -> list[int]:
        if not conversation_ids:
            return []
        latest_created = (
            select(
                Message.conversation_id.label("conversation_id"),
                func.max(Message.created_at).label("created_at"),
            )
            .where(Message.conversation_id.in_(conversation_ids))
            .group_by(Message.conversation_id)
            .subquery()
        )
        ids = db.execute(
            select(func.max(Message.id))
            .select_from(Message)
            .join(
                latest_created,
                and_(
                    Message.conversation_id == latest_created.c.conversation_id,
                    Message.created_at == latest_created.c.created_at,
                ),
            )
            .group_by(Message.conversation_id)
        ).scalars().all()
        return [int(message_id) for message_id in ids]
