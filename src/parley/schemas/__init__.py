"""
Pydantic schemas for relay frames.

These schemas define the structure of WebSocket data for validation.
"""

from .relay import (
    JoinFrame,
    MessageFrame,
    TypingFrame,
    history_frame,
    inbound_frame_adapter,
    send_failed_frame,
    typing_frame,
    user_status_frame,
)

__all__ = [
    "JoinFrame", "MessageFrame", "TypingFrame",
    "inbound_frame_adapter",
    "history_frame", "send_failed_frame", "typing_frame", "user_status_frame",
]
