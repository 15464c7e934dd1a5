"""Pydantic schemas for frames exchanged over the relay WebSocket."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class _Frame(BaseModel):
    """Base for inbound frames; identifiers arrive as strings or numbers."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("user_id", "target_user_id", "sender_id", mode="before", check_fields=False)
    @classmethod
    def _coerce_identifier(cls, value: Any) -> Any:
        if isinstance(value, int | float) and not isinstance(value, bool):
            return str(value)
        return value


class JoinFrame(_Frame):
    """Register the sender's presence and open a conversation with a peer."""

    type: Literal["join"]
    user_id: str = Field(..., alias="userId", min_length=1)
    target_user_id: str = Field(..., alias="targetUserId", min_length=1)
    user_name: str | None = Field(None, alias="userName")


class MessageFrame(_Frame):
    """Chat message sent to the joined peer."""

    type: Literal["message"]
    text: str = Field(..., description="Message body; trimmed before storage")
    sender_id: str = Field(..., alias="senderId", min_length=1)
    sender_name: str | None = Field(None, alias="senderName")
    target_user_id: str = Field(..., alias="targetUserId", min_length=1)
    timestamp: str | None = Field(None, description="Client-side send time, echoed on failure")


class TypingFrame(_Frame):
    """Ephemeral typing indicator."""

    type: Literal["typing"]
    user_id: str = Field(..., alias="userId", min_length=1)
    target_user_id: str = Field(..., alias="targetUserId", min_length=1)


InboundFrame = Annotated[JoinFrame | MessageFrame | TypingFrame, Field(discriminator="type")]

inbound_frame_adapter: TypeAdapter[JoinFrame | MessageFrame | TypingFrame] = TypeAdapter(
    InboundFrame
)

KNOWN_FRAME_TYPES = frozenset({"join", "message", "typing"})


def user_status_frame(user_id: str, is_online: bool) -> dict[str, Any]:
    """Build a presence notification."""
    return {"type": "user_status", "userId": user_id, "isOnline": is_online}


def typing_frame(user_id: str) -> dict[str, Any]:
    """Build a typing notification."""
    return {"type": "typing", "userId": user_id}


def history_frame(messages: list[dict[str, Any]]) -> dict[str, Any]:
    """Build the history replay sent on join."""
    return {"type": "history", "messages": messages}


def send_failed_frame(reason: str, text: str, timestamp: str | None) -> dict[str, Any]:
    """Build the report sent to a sender whose message could not be saved."""
    return {
        "type": "error",
        "code": "send_failed",
        "reason": reason,
        "text": text,
        "timestamp": timestamp,
    }
