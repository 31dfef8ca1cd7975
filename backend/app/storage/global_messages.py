"""Global broadcast log persistence."""
import logging
from typing import Any, Dict, List

from .database import Database
from .schemas import GlobalMessage, MessageKind

logger = logging.getLogger(__name__)

_COLUMNS = "id, sender_user_id, sender_username, content, timestamp, message_type"


class GlobalMessageStore:
    """Append-only log of global messages with age-based deletion."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def append(self, message: GlobalMessage) -> GlobalMessage:
        """Store a global message and return it with its assigned id."""
        row = self._db.fetchone(
            """
            INSERT INTO global_messages
              (sender_user_id, sender_username, content, timestamp, message_type)
            VALUES (?, ?, ?, ?, ?)
            RETURNING id
            """,
            [
                message.sender_user_id,
                message.sender_username,
                message.content,
                message.timestamp,
                message.message_type.value,
            ],
        )
        return message.model_copy(update={"id": int(row["id"])})

    def recent(self, limit: int = 50) -> List[GlobalMessage]:
        """The newest `limit` global messages, oldest first."""
        rows = self._db.fetchall(
            f"""
            SELECT {_COLUMNS} FROM global_messages
            ORDER BY timestamp DESC, id DESC
            LIMIT ?
            """,
            [limit],
        )
        rows.reverse()
        return [self._row_to_message(r) for r in rows]

    def purge_older_than(self, cutoff: str) -> int:
        """Delete global messages whose timestamp sorts before `cutoff`."""
        rows = self._db.fetchall(
            "DELETE FROM global_messages WHERE timestamp < ? RETURNING id",
            [cutoff],
        )
        return len(rows)

    @staticmethod
    def _row_to_message(row: Dict[str, Any]) -> GlobalMessage:
        return GlobalMessage(
            id=row["id"],
            sender_user_id=row["sender_user_id"],
            sender_username=row["sender_username"],
            content=row["content"] or "",
            timestamp=row["timestamp"] or "",
            message_type=MessageKind(row["message_type"] or MessageKind.TEXT.value),
        )
