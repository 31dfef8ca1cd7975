"""Wire format for the relay WebSocket.

Client -> server frames:
    {"event": "<name>", "data": <payload>, "ackId": <optional correlation id>}

Server -> client frames:
    {"event": "<name>", "data": <payload>}
    {"event": "ack", "ackId": <same id>, "data": <ack payload>}

User ids are accepted as strings or numbers and always handled as strings.
Message content of any JSON type is stored as text (non-strings as JSON), and
a numeric timestamp is read as epoch milliseconds.
"""
import json
from datetime import datetime, timezone
from typing import Annotated, Any, List, Optional

from pydantic import BaseModel, BeforeValidator, Field, ValidationError

from app.storage import DirectMessage, GlobalMessage, MessageKind, utc_isoformat


def _coerce_id(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return str(int(value)) if float(value).is_integer() else str(value)
    if isinstance(value, str):
        return value.strip()
    return value


UserId = Annotated[str, BeforeValidator(_coerce_id), Field(min_length=1)]


def _coerce_content(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value)


def _coerce_timestamp(value: Any) -> Optional[str]:
    """ISO strings pass through; epoch milliseconds are converted; anything
    else falls back to server time (None)."""
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        return utc_isoformat(datetime.fromtimestamp(value / 1000, tz=timezone.utc))
    except (OverflowError, OSError, ValueError):
        return None


Content = Annotated[str, BeforeValidator(_coerce_content)]
Timestamp = Annotated[Optional[str], BeforeValidator(_coerce_timestamp)]


class ClientFrame(BaseModel):
    event: str = Field(..., min_length=1)
    data: Any = None
    ackId: Optional[Any] = None


def parse_frame(raw: str) -> Optional[ClientFrame]:
    """Decode one text frame; None if it is not a valid event object."""
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(payload, dict):
        return None
    try:
        return ClientFrame.model_validate(payload)
    except ValidationError:
        return None


def event_frame(event: str, data: Any) -> dict:
    return {"event": event, "data": data}


def ack_frame(ack_id: Any, data: Any) -> dict:
    return {"event": "ack", "ackId": ack_id, "data": data}


# =============================================================================
# Event payloads
# =============================================================================


class RegisterRequest(BaseModel):
    userId: UserId
    username: Optional[str] = None


class IdentifyRequest(BaseModel):
    userId: UserId

    @classmethod
    def from_data(cls, data: Any) -> "IdentifyRequest":
        """identify carries either a bare user id or {"userId": ...}."""
        if isinstance(data, dict):
            return cls.model_validate(data)
        return cls.model_validate({"userId": data})


class MessageInput(BaseModel):
    sender_user_id: UserId
    recipient_user_id: UserId
    content: Content = ""
    timestamp: Timestamp = None
    image: Any = None

    def to_message(self) -> DirectMessage:
        return DirectMessage(
            sender_user_id=self.sender_user_id,
            recipient_user_id=self.recipient_user_id,
            content=self.content,
            timestamp=self.timestamp or utc_isoformat(),
            message_type=MessageKind.IMAGE if self.image else MessageKind.TEXT,
        )


class FetchHistoryRequest(BaseModel):
    sender_user_id: UserId
    friend_user_id: UserId
    requestId: Optional[Any] = None
    offset: Any = 0


class RegisteredFriendsRequest(BaseModel):
    friendIds: List[UserId]


class TypingInput(BaseModel):
    sender_user_id: UserId
    recipient_user_id: UserId


class GlobalMessageInput(BaseModel):
    sender_user_id: UserId
    sender_username: Optional[str] = None
    content: Content = ""
    timestamp: Timestamp = None
    image: Any = None

    def to_message(self) -> GlobalMessage:
        return GlobalMessage(
            sender_user_id=self.sender_user_id,
            sender_username=self.sender_username,
            content=self.content,
            timestamp=self.timestamp or utc_isoformat(),
            message_type=MessageKind.IMAGE if self.image else MessageKind.TEXT,
        )
