"""Delivery channel wrapping one client WebSocket.

A Channel is the opaque handle the presence registry stores per user. It
frames every outbound event as ``{"event": <name>, "data": <payload>}`` and
turns send failures into a False return plus a dead channel, so callers never
have to catch transport errors.
"""
import logging
import uuid
from typing import Any, Optional

logger = logging.getLogger(__name__)


class Channel:
    """One client session's outbound path.

    Attributes:
        websocket: Anything with an async ``send_json(dict)`` method.
        session_id: Unique id for this connection (for logs).
        user_id: Set once the session has identified.
    """

    def __init__(self, websocket: Any, session_id: Optional[str] = None) -> None:
        self.websocket = websocket
        self.session_id = session_id or str(uuid.uuid4())
        self.user_id: Optional[str] = None
        self._closed = False

    @property
    def live(self) -> bool:
        return not self._closed

    def close(self) -> None:
        """Mark the channel dead; later emits are dropped."""
        self._closed = True

    async def emit(self, event: str, data: Any) -> bool:
        """Send one event frame.

        Returns:
            True if the frame was handed to the socket, False if the channel
            is (or just became) dead.
        """
        return await self.send_frame({"event": event, "data": data})

    async def send_frame(self, frame: dict) -> bool:
        if self._closed:
            return False
        try:
            await self.websocket.send_json(frame)
            return True
        except Exception as e:
            logger.debug(f"[Presence] Send failed on session {self.session_id}: {e}")
            self._closed = True
            return False

    def __repr__(self) -> str:
        return f"Channel(session_id={self.session_id!r}, user_id={self.user_id!r}, live={self.live})"
