# src/parley/api/v1/endpoints/relay.py
"""WebSocket endpoint for the chat relay."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from jose import JWTError
from starlette.websockets import WebSocketState

from parley.api.v1.dependencies import RelayHubDep
from parley.core.security import decode_access_token
from parley.core.settings import settings
from parley.services.relay import RelayAuthError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["relay"])


class WebSocketConnection:
    """Adapt a Starlette WebSocket to the relay's connection protocol."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_json(self, payload: dict[str, Any]) -> None:
        await self.websocket.send_json(payload)

    async def close(self, code: int = status.WS_1000_NORMAL_CLOSURE) -> None:
        if self.websocket.application_state != WebSocketState.DISCONNECTED:
            await self.websocket.close(code=code)


def resolve_socket_identity(token: str | None) -> str | None:
    """Return the user id bound to a socket's token, if one was presented.

    Raises:
        RelayAuthError: If a token is presented but invalid, or a token is
            required and missing.
    """
    if token is None:
        if settings.relay_require_token:
            raise RelayAuthError("A token is required to open a relay socket")
        return None
    try:
        return decode_access_token(token)
    except JWTError as exc:
        raise RelayAuthError("Invalid relay token") from exc


@router.websocket("/chat")
async def relay_socket(
    websocket: WebSocket,
    hub: RelayHubDep,
    token: str | None = Query(None),
) -> None:
    """Serve one relay connection until the client goes away."""
    try:
        authenticated_user_id = resolve_socket_identity(token)
    except RelayAuthError as exc:
        logger.warning("Refusing relay socket: %s", exc)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    logger.info("New WebSocket connection")

    handler = hub.open(WebSocketConnection(websocket), authenticated_user_id=authenticated_user_id)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", status.WS_1000_NORMAL_CLOSURE))
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            if raw is None:
                continue
            await handler.handle_text(raw)
    except WebSocketDisconnect:
        pass
    except RuntimeError as exc:
        logger.warning("WebSocket error for %s: %s", handler.user_id or "unjoined", exc)
    finally:
        await handler.close()
