"""Process-wide presence registry.

Maps each user id to the channel of its most recent session. Entries exist
only in memory; after a restart every user is offline until they identify
again.

Thread Safety:
    Designed for use from a single asyncio event loop. It is NOT thread-safe.
"""
import logging
from typing import Dict, Iterator, List, Optional, Tuple

from .channel import Channel

logger = logging.getLogger(__name__)


class PresenceRegistry:
    """user id -> Channel, last writer wins."""

    def __init__(self) -> None:
        self._entries: Dict[str, Channel] = {}

    def register(self, user_id: str, channel: Channel) -> Optional[Channel]:
        """Make `channel` the user's current channel.

        Any previous channel is replaced, not closed.

        Returns:
            The replaced channel, if there was one.
        """
        previous = self._entries.get(user_id)
        self._entries[user_id] = channel
        channel.user_id = user_id
        if previous is not None and previous is not channel:
            logger.info(f"[Presence] User {user_id} re-identified; previous session orphaned")
        else:
            logger.info(f"[Presence] User {user_id} identified and online")
        return previous

    def lookup(self, user_id: str) -> Optional[Channel]:
        return self._entries.get(user_id)

    def unregister(self, user_id: str, channel: Channel) -> bool:
        """Remove the entry only if `channel` is still the registered one.

        A disconnect from a session that has since been replaced must not
        evict the newer session.

        Returns:
            True if the entry was removed.
        """
        current = self._entries.get(user_id)
        if current is not channel:
            if current is not None:
                logger.debug(f"[Presence] Ignoring stale disconnect for user {user_id}")
            return False
        del self._entries[user_id]
        logger.info(f"[Presence] User {user_id} disconnected")
        return True

    def entries(self) -> List[Tuple[str, Channel]]:
        """Snapshot of every (user_id, channel) pair."""
        return list(self._entries.items())

    def online_user_ids(self) -> List[str]:
        return list(self._entries.keys())

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Tuple[str, Channel]]:
        return iter(self.entries())
