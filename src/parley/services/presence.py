# src/parley/services/presence.py
"""Presence tracking for live relay connections.

The registry maps a user id to the one socket that user currently has open on
this process. It is authoritative only for this process's lifetime; the
optional Redis mirror publishes short-lived hints so other instances can ask
whether a user is connected somewhere.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any, Protocol, runtime_checkable

import redis

from parley.core.settings import settings

logger = logging.getLogger(__name__)

PRESENCE_KEY_PREFIX = "presence:"


@runtime_checkable
class Connection(Protocol):
    """Transport handle the relay writes frames to."""

    @property
    def is_open(self) -> bool: ...

    async def send_json(self, payload: dict[str, Any]) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class PresenceRegistry:
    """In-memory ``user_id -> connection`` map, last join wins.

    Every operation is a single synchronous step, so handlers interleaving on
    one event loop never observe a half-applied update.
    """

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}

    def set(self, user_id: str, connection: Connection) -> Connection | None:
        """Register ``connection`` for ``user_id`` and return the one it replaced."""
        previous = self._connections.get(user_id)
        self._connections[user_id] = connection
        return previous if previous is not connection else None

    def get(self, user_id: str) -> Connection | None:
        return self._connections.get(user_id)

    def remove(self, user_id: str, connection: Connection | None = None) -> bool:
        """Drop the entry for ``user_id``.

        When ``connection`` is given the entry is only removed if it still
        points at that connection; a socket replaced by a newer join must not
        evict its successor.
        """
        current = self._connections.get(user_id)
        if current is None:
            return False
        if connection is not None and current is not connection:
            return False
        del self._connections[user_id]
        return True

    @staticmethod
    def is_open(connection: Connection | None) -> bool:
        if connection is None:
            return False
        try:
            return bool(connection.is_open)
        except RuntimeError:
            return False

    def is_online(self, user_id: str) -> bool:
        return self.is_open(self._connections.get(user_id))

    def is_online_anywhere(self, user_id: str) -> bool:
        """Whether ``user_id`` is connected here or, where known, on another instance."""
        return self.is_online(user_id)

    def refresh(self, user_ids: Iterable[str]) -> int:
        """Renew presence hints for live users; returns how many were renewed."""
        return 0

    def connections(self) -> list[tuple[str, Connection]]:
        """Return a snapshot safe to iterate across ``await`` points."""
        return list(self._connections.items())

    def clear(self) -> None:
        self._connections.clear()

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._connections


class RedisPresenceMirror:
    """Publish presence hints to Redis with a TTL.

    The mirror is advisory: it never carries messages, and Redis failures are
    logged without affecting the relay.
    """

    def __init__(self, client: Any | None = None, ttl_seconds: int | None = None) -> None:
        self._redis = client if client is not None else redis.from_url(settings.redis_url)
        self.ttl_seconds = ttl_seconds or settings.presence_ttl_seconds

    @staticmethod
    def key(user_id: str) -> str:
        return f"{PRESENCE_KEY_PREFIX}{user_id}"

    def publish(self, user_id: str) -> None:
        try:
            self._redis.set(self.key(user_id), "1", ex=self.ttl_seconds)
        except redis.RedisError as exc:
            logger.warning("Failed to publish presence for %s: %s", user_id, exc)

    def retract(self, user_id: str) -> None:
        try:
            self._redis.delete(self.key(user_id))
        except redis.RedisError as exc:
            logger.warning("Failed to retract presence for %s: %s", user_id, exc)

    def is_online(self, user_id: str) -> bool:
        try:
            return bool(self._redis.exists(self.key(user_id)))
        except redis.RedisError as exc:
            logger.warning("Failed to read presence for %s: %s", user_id, exc)
            return False


class MirroredPresenceRegistry(PresenceRegistry):
    """Presence registry that also keeps a Redis mirror up to date."""

    def __init__(self, mirror: RedisPresenceMirror) -> None:
        super().__init__()
        self.mirror = mirror

    def set(self, user_id: str, connection: Connection) -> Connection | None:
        previous = super().set(user_id, connection)
        self.mirror.publish(user_id)
        return previous

    def is_online_anywhere(self, user_id: str) -> bool:
        return self.is_online(user_id) or self.mirror.is_online(user_id)

    def refresh(self, user_ids: Iterable[str]) -> int:
        renewed = 0
        for user_id in user_ids:
            self.mirror.publish(user_id)
            renewed += 1
        return renewed

    def remove(self, user_id: str, connection: Connection | None = None) -> bool:
        removed = super().remove(user_id, connection)
        if removed:
            self.mirror.retract(user_id)
        return removed

    def clear(self) -> None:
        for user_id, _ in self.connections():
            self.mirror.retract(user_id)
        super().clear()


def build_presence_registry() -> PresenceRegistry:
    """Return the registry configured for this process."""
    if settings.presence_mirror_enabled:
        return MirroredPresenceRegistry(RedisPresenceMirror())
    return PresenceRegistry()
