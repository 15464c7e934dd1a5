# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from itertools import count
from typing import Any

os.environ.setdefault("PYTEST_RUNNING", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from parley.api.v1.dependencies import get_relay_hub, get_session_factory
from parley.core.security import create_access_token
from parley.db.session import Base
from parley.db.session import get_db as app_get_session
from parley.main import app as fastapi_app
from parley.models import User
from parley.services.message_store import MessageStore
from parley.services.presence import PresenceRegistry
from parley.services.relay import RelayHub
from parley.services.users import UserDirectory

TEST_DB_URL = "sqlite://"

_USER_COUNTER = count(1)


class FakeConnection:
    """In-memory stand-in for a relay socket."""

    def __init__(self, name: str = "conn") -> None:
        self.name = name
        self.sent: list[dict[str, Any]] = []
        self.open = True
        self.fail_sends = False
        self.close_codes: list[int] = []

    @property
    def is_open(self) -> bool:
        return self.open

    async def send_json(self, payload: dict[str, Any]) -> None:
        if self.fail_sends:
            raise RuntimeError("connection reset by peer")
        self.sent.append(payload)

    async def close(self, code: int = 1000) -> None:
        self.open = False
        self.close_codes.append(code)

    def frames(self, frame_type: str) -> list[dict[str, Any]]:
        return [frame for frame in self.sent if frame.get("type") == frame_type]

    def __repr__(self) -> str:
        return f"FakeConnection({self.name!r})"


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> Callable[[], Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def db_session(session_factory: Callable[[], Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def store(session_factory: Callable[[], Session]) -> MessageStore:
    return MessageStore(session_factory)


@pytest.fixture()
def user_directory(session_factory: Callable[[], Session]) -> UserDirectory:
    return UserDirectory(session_factory)


@pytest.fixture()
def registry() -> PresenceRegistry:
    return PresenceRegistry()


@pytest.fixture()
def hub(registry: PresenceRegistry, store: MessageStore) -> RelayHub:
    return RelayHub(registry, store, history_limit=50, broadcast_scope="all")


@pytest.fixture()
def make_connection() -> Callable[[str], FakeConnection]:
    def _make(name: str = "conn") -> FakeConnection:
        return FakeConnection(name)

    return _make


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_dependencies(
    app: FastAPI,
    db_session: Session,
    session_factory: Callable[[], Session],
    hub: RelayHub,
) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_relay_hub] = lambda: hub
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)
        app.dependency_overrides.pop(get_session_factory, None)
        app.dependency_overrides.pop(get_relay_hub, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


def _create_user(db_session: Session, name: str) -> User:
    number = next(_USER_COUNTER)
    user = User(
        id=f"user{number:04d}",
        name=name,
        email=f"{name.lower()}{number}@example.com",
        avatar=f"https://example.com/avatars/{number}.png",
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture()
def alice(db_session: Session) -> User:
    """Primary test user."""
    return _create_user(db_session, "Alice")


@pytest.fixture()
def bob(db_session: Session) -> User:
    """Secondary test user."""
    return _create_user(db_session, "Bob")


@pytest.fixture()
def carol(db_session: Session) -> User:
    """User who takes part in none of alice and bob's conversations."""
    return _create_user(db_session, "Carol")


def auth_headers(user: User) -> dict[str, str]:
    token = create_access_token(user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def alice_headers(alice: User) -> dict[str, str]:
    return auth_headers(alice)


@pytest.fixture()
def bob_headers(bob: User) -> dict[str, str]:
    return auth_headers(bob)


@pytest.fixture()
def carol_headers(carol: User) -> dict[str, str]:
    return auth_headers(carol)
