"""Shared API dependencies for authentication and service wiring."""

from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.requests import HTTPConnection
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.orm import Session

from parley.core.security import decode_access_token
from parley.db.session import SessionLocal, get_db
from parley.models import User
from parley.services.conversations import ConversationQueryService
from parley.services.message_store import MessageStore
from parley.services.relay import RelayHub
from parley.services.users import UserDirectory

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def get_session_factory() -> Callable[[], Session]:
    """Return the factory services use to open their own sessions."""
    return SessionLocal


SessionFactoryDep = Annotated[Callable[[], Session], Depends(get_session_factory)]


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
    db: SessionDep,
) -> User:
    """Get the current authenticated user from JWT token.

    Args:
        credentials: HTTP Bearer token credentials
        db: Database session

    Returns:
        User object for the authenticated user

    Raises:
        HTTPException: If token is invalid or user not found
    """
    try:
        user_id = decode_access_token(credentials.credentials)
    except JWTError as err:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from err

    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return user


def get_conversation_service(session_factory: SessionFactoryDep) -> ConversationQueryService:
    """Build the conversation query service."""
    return ConversationQueryService(MessageStore(session_factory), UserDirectory(session_factory))


def get_relay_hub(connection: HTTPConnection) -> RelayHub:
    """Return the hub created at application startup."""
    hub: RelayHub = connection.app.state.relay_hub
    return hub


# Type alias for current user dependency
CurrentUserDep = Annotated[User, Depends(get_current_user)]
ConversationServiceDep = Annotated[ConversationQueryService, Depends(get_conversation_service)]
RelayHubDep = Annotated[RelayHub, Depends(get_relay_hub)]
