"""Direct message persistence gateway.

Durable mapping from message id to DirectMessage with the operations the
delivery engine and history reconstructor rely on:

    insert(message) -> id
    mark_delivered(id) -> bool
    query_pending(recipient) -> rows in timestamp order
    query_range(a, b, descending, limit, offset) -> rows
    count(a, b) -> int
    purge_older_than(cutoff) -> int

All orderings use the client timestamp first and the id second, so messages
with identical timestamps still come back in a stable order.
"""
import logging
from typing import Any, Dict, List, Optional

from .database import Database
from .schemas import DirectMessage, MessageKind

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, sender_user_id, recipient_user_id, content, timestamp, "
    "message_type, pending"
)

_PAIR_FILTER = """
    (sender_user_id = ? AND recipient_user_id = ?)
    OR (sender_user_id = ? AND recipient_user_id = ?)
"""


class MessageStore:
    """Reads and writes the messages table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def insert(self, message: DirectMessage) -> int:
        """Persist a message as pending and return its assigned id."""
        row = self._db.fetchone(
            """
            INSERT INTO messages
              (sender_user_id, recipient_user_id, content, timestamp, message_type, pending)
            VALUES (?, ?, ?, ?, ?, TRUE)
            RETURNING id
            """,
            [
                message.sender_user_id,
                message.recipient_user_id,
                message.content,
                message.timestamp,
                message.message_type.value,
            ],
        )
        message_id = int(row["id"])
        logger.debug("[Storage] Message saved with id %d", message_id)
        return message_id

    def mark_delivered(self, message_id: int) -> bool:
        """Flip one message from pending to delivered.

        Returns:
            True if the row was pending and is now delivered, False if it was
            already delivered or does not exist.
        """
        rows = self._db.fetchall(
            "UPDATE messages SET pending = FALSE WHERE id = ? AND pending = TRUE RETURNING id",
            [message_id],
        )
        return len(rows) == 1

    def get(self, message_id: int) -> Optional[DirectMessage]:
        row = self._db.fetchone(
            f"SELECT {_COLUMNS} FROM messages WHERE id = ?", [message_id]
        )
        return self._row_to_message(row) if row else None

    def query_pending(self, recipient_user_id: str) -> List[DirectMessage]:
        """All undelivered messages for a recipient, oldest first."""
        rows = self._db.fetchall(
            f"""
            SELECT {_COLUMNS} FROM messages
            WHERE recipient_user_id = ? AND pending = TRUE
            ORDER BY timestamp ASC, id ASC
            """,
            [recipient_user_id],
        )
        return [self._row_to_message(r) for r in rows]

    def query_range(
        self,
        user_a: str,
        user_b: str,
        descending: bool = True,
        limit: int = 50,
        offset: int = 0,
    ) -> List[DirectMessage]:
        """Messages exchanged between an unordered pair of users.

        Args:
            user_a: One participant.
            user_b: The other participant.
            descending: Newest first when True, oldest first otherwise.
            limit: Maximum rows to return.
            offset: Rows to skip in the chosen order.
        """
        direction = "DESC" if descending else "ASC"
        rows = self._db.fetchall(
            f"""
            SELECT {_COLUMNS} FROM messages
            WHERE {_PAIR_FILTER}
            ORDER BY timestamp {direction}, id {direction}
            LIMIT ? OFFSET ?
            """,
            [user_a, user_b, user_b, user_a, limit, offset],
        )
        return [self._row_to_message(r) for r in rows]

    def count(self, user_a: str, user_b: str) -> int:
        row = self._db.fetchone(
            f"SELECT COUNT(*) AS n FROM messages WHERE {_PAIR_FILTER}",
            [user_a, user_b, user_b, user_a],
        )
        return int(row["n"]) if row else 0

    def purge_older_than(self, cutoff: str) -> int:
        """Retire pending messages whose timestamp sorts before `cutoff`.

        Purged messages stay in history but are never replayed. Rows that were
        already delivered are left untouched.

        Returns:
            Number of messages retired.
        """
        rows = self._db.fetchall(
            """
            UPDATE messages SET pending = FALSE
            WHERE pending = TRUE AND timestamp < ?
            RETURNING id
            """,
            [cutoff],
        )
        return len(rows)

    @staticmethod
    def _row_to_message(row: Dict[str, Any]) -> DirectMessage:
        return DirectMessage(
            id=row["id"],
            sender_user_id=row["sender_user_id"],
            recipient_user_id=row["recipient_user_id"],
            content=row["content"] or "",
            timestamp=row["timestamp"] or "",
            message_type=MessageKind(row["message_type"] or MessageKind.TEXT.value),
            pending=bool(row["pending"]),
        )
