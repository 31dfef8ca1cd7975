"""Global broadcast channel.

Fire-and-forget fan-out of global messages to every connected session, backed
by a bounded-retention log. There is no per-recipient tracking: a user who is
offline when a message is published only sees it through fetch_history().
"""
import asyncio
import logging
from typing import List, Optional

from app.errors import PersistenceError
from app.presence import PresenceRegistry
from app.storage import GlobalMessage, GlobalMessageStore, run_blocking

from .engine import DeliveryEngine
from .reporting import FailureReporter

logger = logging.getLogger(__name__)

GLOBAL_HISTORY_LIMIT = 50


class BroadcastChannel:
    """Publishes global messages and serves their recent history."""

    def __init__(
        self,
        store: GlobalMessageStore,
        engine: DeliveryEngine,
        presence: PresenceRegistry,
        reporter: Optional[FailureReporter] = None,
        history_limit: int = GLOBAL_HISTORY_LIMIT,
    ) -> None:
        self._store = store
        self._engine = engine
        self._presence = presence
        self._reporter = reporter or FailureReporter()
        self.history_limit = history_limit

    async def publish(self, message: GlobalMessage) -> GlobalMessage:
        """Store a global message, then push it to everyone online.

        Raises:
            SenderBannedError: The sender is banned; nothing was stored.
            PersistenceError: The message could not be stored.
        """
        await self._engine.ensure_not_banned(message.sender_user_id, "global_message")
        try:
            stored = await run_blocking(self._store.append, message)
        except PersistenceError as exc:
            self._reporter.report("global_message.append", exc, user_id=message.sender_user_id)
            raise

        channels = [channel for _, channel in self._presence.entries()]
        if channels:
            payload = stored.to_event()
            results = await asyncio.gather(
                *[channel.emit("global_message", payload) for channel in channels],
                return_exceptions=True
            )
            reached = sum(1 for r in results if r is True)
        else:
            reached = 0
        logger.info(
            f"[Broadcast] Global message {stored.id} from {stored.sender_user_id} "
            f"reached {reached}/{len(channels)} sessions"
        )
        return stored

    async def fetch_history(self) -> List[GlobalMessage]:
        """Most recent global messages, oldest first.

        Raises:
            PersistenceError: The log could not be read.
        """
        try:
            return await run_blocking(self._store.recent, self.history_limit)
        except PersistenceError as exc:
            self._reporter.report("global_history.fetch", exc)
            raise
