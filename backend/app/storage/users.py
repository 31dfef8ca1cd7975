"""Registered user directory.

The relay itself only needs two things from it: whether a sender is banned,
and which of a list of ids belong to registered users.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

from .database import Database
from .schemas import RegisteredUser, utc_isoformat

logger = logging.getLogger(__name__)


class UserDirectory:
    """Reads and writes the registered_users table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def register(self, user_id: str, username: Optional[str] = None) -> RegisteredUser:
        """Insert or refresh a registration.

        Re-registering updates the username and registration time but keeps
        an existing ban in place.
        """
        registered_at = utc_isoformat()
        row = self._db.fetchone(
            """
            INSERT INTO registered_users (user_id, username, registered_at, banned)
            VALUES (?, ?, ?, FALSE)
            ON CONFLICT (user_id) DO UPDATE SET
                username = COALESCE(excluded.username, username),
                registered_at = excluded.registered_at
            RETURNING user_id, username, registered_at, banned
            """,
            [user_id, username, registered_at],
        )
        logger.info("[Users] Registered user %s", user_id)
        return self._row_to_user(row)

    def get(self, user_id: str) -> Optional[RegisteredUser]:
        row = self._db.fetchone(
            """
            SELECT user_id, username, registered_at, banned
            FROM registered_users WHERE user_id = ?
            """,
            [user_id],
        )
        return self._row_to_user(row) if row else None

    def is_banned(self, user_id: str) -> bool:
        row = self._db.fetchone(
            "SELECT banned FROM registered_users WHERE user_id = ?", [user_id]
        )
        return bool(row and row["banned"])

    def set_banned(self, user_id: str, banned: bool) -> Optional[RegisteredUser]:
        """Set the ban flag. Returns None if the user is not registered."""
        row = self._db.fetchone(
            """
            UPDATE registered_users SET banned = ? WHERE user_id = ?
            RETURNING user_id, username, registered_at, banned
            """,
            [banned, user_id],
        )
        if row:
            logger.info("[Users] User %s banned=%s", user_id, banned)
        return self._row_to_user(row) if row else None

    def filter_registered(self, user_ids: Sequence[str]) -> List[str]:
        """Return the subset of `user_ids` that are registered, in input order."""
        if not user_ids:
            return []
        placeholders = ", ".join("?" for _ in user_ids)
        rows = self._db.fetchall(
            f"SELECT user_id FROM registered_users WHERE user_id IN ({placeholders})",
            list(user_ids),
        )
        found = {r["user_id"] for r in rows}
        return [uid for uid in dict.fromkeys(user_ids) if uid in found]

    @staticmethod
    def _row_to_user(row: Dict[str, Any]) -> RegisteredUser:
        return RegisteredUser(
            user_id=row["user_id"],
            username=row["username"],
            registered_at=row["registered_at"],
            banned=bool(row["banned"]),
        )
