"""Conversation history pages.

Storage is read newest-first with LIMIT/OFFSET, so offset 0 is always the
most recent page. Each page is reversed before it is returned so clients get
it in chronological order and can prepend older pages as they scroll back.

The first page is small (fast initial paint); every later page is larger.
"""
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.errors import PersistenceError
from app.storage import DirectMessage, MessageStore, run_blocking

logger = logging.getLogger(__name__)

FIRST_PAGE_SIZE = 10
PAGE_SIZE = 50


def normalize_offset(value: Any) -> int:
    """Coerce a client-supplied offset to a non-negative int (bad input -> 0)."""
    if isinstance(value, bool):
        return 0
    try:
        offset = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(offset, 0)


class HistoryPage(BaseModel):
    """One page of a conversation, oldest message first.

    Attributes:
        friend_user_id: The other participant, echoed for the client.
        history: Messages on this page in ascending timestamp order.
        requestId: Client correlation id, echoed unchanged.
        offset: The offset this page was read from.
        totalMessages: Total messages in the conversation.
    """
    friend_user_id: str
    history: List[DirectMessage] = Field(default_factory=list)
    requestId: Optional[Any] = None
    offset: int = 0
    totalMessages: int = 0

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.history) < self.totalMessages

    def to_event(self) -> Dict[str, Any]:
        return {
            "friend_user_id": self.friend_user_id,
            "history": [m.to_event() for m in self.history],
            "requestId": self.requestId,
            "offset": self.offset,
            "totalMessages": self.totalMessages,
        }


class HistoryReconstructor:
    """Builds forward-chronological pages from reverse-paginated storage."""

    def __init__(
        self,
        messages: MessageStore,
        first_page_size: int = FIRST_PAGE_SIZE,
        page_size: int = PAGE_SIZE,
    ) -> None:
        self._messages = messages
        self.first_page_size = first_page_size
        self.page_size = page_size

    def page_limit(self, offset: int) -> int:
        return self.first_page_size if offset == 0 else self.page_size

    async def fetch_page(
        self,
        user_id: str,
        friend_user_id: str,
        offset: Any = 0,
        request_id: Optional[Any] = None,
    ) -> HistoryPage:
        """Read one page of the conversation between two users.

        An offset at or past the end yields an empty page with the correct
        total without reading any rows.

        Raises:
            PersistenceError: The count or the page could not be read. When
                only the page failed, details["totalMessages"] holds the count.
        """
        offset = normalize_offset(offset)
        limit = self.page_limit(offset)
        logger.info(
            f"[History] Fetching history (sender: {user_id}, friend: {friend_user_id}, "
            f"requestId: {request_id}) offset={offset}, limit={limit}"
        )

        total = await run_blocking(self._messages.count, user_id, friend_user_id)
        if offset >= total:
            return HistoryPage(
                friend_user_id=friend_user_id,
                requestId=request_id,
                offset=offset,
                totalMessages=total,
            )

        try:
            rows = await run_blocking(
                self._messages.query_range,
                user_id, friend_user_id, descending=True, limit=limit, offset=offset,
            )
        except PersistenceError as exc:
            raise PersistenceError(exc.message, {"totalMessages": total}) from exc
        rows.reverse()

        return HistoryPage(
            friend_user_id=friend_user_id,
            history=rows,
            requestId=request_id,
            offset=offset,
            totalMessages=total,
        )
