"""Pydantic records persisted by the relay.

These schemas are used by:
    - MessageStore: direct messages with pending/delivered tracking
    - GlobalMessageStore: the global broadcast log
    - UserDirectory: registered users and their ban flag
    - The WebSocket protocol, which emits them as event payloads
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


def utc_isoformat(moment: Optional[datetime] = None) -> str:
    """Format a moment the way browsers' Date.toISOString() does.

    Stored timestamps are compared as strings, so every server-generated
    timestamp uses this exact shape: ``YYYY-MM-DDTHH:MM:SS.mmmZ``.
    """
    moment = (moment or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


class MessageKind(str, Enum):
    """Kind of message payload.

    Attributes:
        TEXT: Plain text content.
        IMAGE: Content is an image reference.
    """
    TEXT = "text"
    IMAGE = "image"


class DirectMessage(BaseModel):
    """A stored one-to-one message.

    Attributes:
        id: Gateway-assigned id (None until inserted).
        sender_user_id: Sender's user id.
        recipient_user_id: Recipient's user id.
        content: Opaque payload (text or image reference).
        timestamp: Client-supplied ISO-8601 string; the ordering key.
        message_type: text or image.
        pending: True until the message has been delivered (or aged out).
    """
    id: Optional[int] = Field(None, description="Stored message id")
    sender_user_id: str = Field(..., min_length=1, description="Sender user id")
    recipient_user_id: str = Field(..., min_length=1, description="Recipient user id")
    content: str = Field(default="", description="Message payload")
    timestamp: str = Field(default_factory=utc_isoformat, description="ISO-8601 timestamp")
    message_type: MessageKind = Field(default=MessageKind.TEXT, description="text or image")
    pending: bool = Field(default=True, description="Awaiting delivery")

    def to_event(self) -> Dict[str, Any]:
        """Payload emitted to clients for `message` and `history` events."""
        data = self.model_dump(mode="json")
        data["image"] = self.message_type == MessageKind.IMAGE
        return data


class GlobalMessage(BaseModel):
    """A message in the global broadcast log (no delivery tracking)."""
    id: Optional[int] = Field(None, description="Stored message id")
    sender_user_id: str = Field(..., min_length=1, description="Sender user id")
    sender_username: Optional[str] = Field(None, description="Client-supplied display name")
    content: str = Field(default="", description="Message payload")
    timestamp: str = Field(default_factory=utc_isoformat, description="ISO-8601 timestamp")
    message_type: MessageKind = Field(default=MessageKind.TEXT, description="text or image")

    def to_event(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        data["image"] = self.message_type == MessageKind.IMAGE
        return data


class RegisteredUser(BaseModel):
    """A user known to the relay.

    Attributes:
        user_id: The user's id.
        username: Optional display name given at registration.
        registered_at: When the user (last) registered, ISO-8601 UTC.
        banned: Banned users cannot send direct or global messages.
    """
    user_id: str = Field(..., min_length=1, description="User id")
    username: Optional[str] = Field(None, description="Display name")
    registered_at: str = Field(default_factory=utc_isoformat, description="Registration time")
    banned: bool = Field(default=False, description="Ban flag")
