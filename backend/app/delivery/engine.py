"""Direct message delivery engine.

Decides, for every inbound direct message, whether it is delivered live or
left pending in storage, and replays pending messages when their recipient
identifies.

Message lifecycle:
    Created -> DeliveredImmediate            (recipient online at submit)
    Created -> QueuedPending                 (recipient offline)
    QueuedPending -> DeliveredOnReconnect    (drained on identify)

The durable `pending` flag is the only record of undelivered messages; there
is no in-memory fallback queue.

Exactly-once between the two delivery paths:
    submit() and drain_on_identify() serialise on a per-recipient asyncio lock.
    Under that lock submit() re-reads the pending flag of the message it just
    inserted, so a message that a concurrent drain already delivered is not
    pushed a second time, and a message inserted after the drain's query is
    delivered by submit() instead. Ids a drain pushed but could not mark stay
    pending; submit() skips those too.

Every storage call is awaited through run_blocking(), so a slow statement
suspends only the session that issued it. The recipient lock stays held
across those awaits.
"""
import asyncio
import logging
from collections import Counter
from contextlib import asynccontextmanager
from enum import Enum
from typing import AsyncIterator, Dict, List, Optional, Set

from pydantic import BaseModel, Field

from app.errors import PersistenceError, SenderBannedError
from app.presence import Channel, PresenceRegistry
from app.storage import DirectMessage, MessageStore, UserDirectory, run_blocking

from .reporting import FailureReporter

logger = logging.getLogger(__name__)


class DeliveryOutcome(str, Enum):
    """Where a message ended up after a delivery attempt."""
    DELIVERED_IMMEDIATE = "delivered_immediate"
    QUEUED_PENDING = "queued_pending"
    DELIVERED_ON_RECONNECT = "delivered_on_reconnect"


class SubmitResult(BaseModel):
    message: DirectMessage = Field(..., description="Stored message")
    outcome: DeliveryOutcome = Field(..., description="Delivery outcome")


class DrainResult(BaseModel):
    """Summary of one drain-on-identify pass.

    Attributes:
        user_id: The identifying user.
        pending: Number of messages pending when the drain started.
        delivered: Ids pushed to the channel, in delivery order.
        mark_failures: Ids pushed but whose delivered mark failed.
        interrupted: True if the channel died or was replaced mid-drain.
    """
    user_id: str
    pending: int = 0
    delivered: List[int] = Field(default_factory=list)
    mark_failures: List[int] = Field(default_factory=list)
    interrupted: bool = False


class DeliveryEngine:
    """Live delivery plus store-and-forward replay for direct messages."""

    def __init__(
        self,
        messages: MessageStore,
        users: UserDirectory,
        presence: PresenceRegistry,
        reporter: Optional[FailureReporter] = None,
    ) -> None:
        self._messages = messages
        self._users = users
        self._presence = presence
        self._reporter = reporter or FailureReporter()
        self._recipient_locks: Dict[str, asyncio.Lock] = {}
        self._lock_holders: Counter = Counter()
        # recipient -> ids pushed by the current drain whose mark failed
        self._unmarked: Dict[str, Set[int]] = {}

    @asynccontextmanager
    async def _recipient_lock(self, user_id: str) -> AsyncIterator[None]:
        lock = self._recipient_locks.setdefault(user_id, asyncio.Lock())
        self._lock_holders[user_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_holders[user_id] -= 1
            if self._lock_holders[user_id] <= 0:
                del self._lock_holders[user_id]
                self._recipient_locks.pop(user_id, None)

    async def ensure_not_banned(self, user_id: str, operation: str) -> None:
        """Raise SenderBannedError if `user_id` is banned.

        Raises:
            SenderBannedError: The sender is banned.
            PersistenceError: The ban flag could not be read.
        """
        try:
            banned = await run_blocking(self._users.is_banned, user_id)
        except PersistenceError as exc:
            self._reporter.report(f"{operation}.ban_check", exc, user_id=user_id)
            raise
        if banned:
            logger.warning(f"[Relay] Rejected {operation} from banned user {user_id}")
            raise SenderBannedError(user_id)

    async def submit(self, message: DirectMessage) -> SubmitResult:
        """Persist a direct message and deliver it now if the recipient is online.

        Args:
            message: The inbound message (its id and pending flag are ignored).

        Returns:
            SubmitResult with the stored message and its outcome.

        Raises:
            SenderBannedError: The sender is banned; nothing was stored.
            PersistenceError: The message could not be stored.
        """
        sender = message.sender_user_id
        recipient = message.recipient_user_id
        await self.ensure_not_banned(sender, "submit")

        try:
            message_id = await run_blocking(self._messages.insert, message)
        except PersistenceError as exc:
            self._reporter.report("submit.insert", exc, user_id=sender)
            raise
        stored = message.model_copy(update={"id": message_id, "pending": True})
        logger.info(f"[Relay] Message {message_id} saved ({sender} -> {recipient})")

        async with self._recipient_lock(recipient):
            channel = self._presence.lookup(recipient)
            if channel is None or not channel.live:
                logger.info(f"[Relay] User {recipient} is not online. Message {message_id} remains pending.")
                return SubmitResult(message=stored, outcome=DeliveryOutcome.QUEUED_PENDING)

            if message_id in self._unmarked.get(recipient, ()):
                logger.debug(f"[Relay] Message {message_id} already pushed by drain (mark failed)")
                return SubmitResult(message=stored, outcome=DeliveryOutcome.DELIVERED_ON_RECONNECT)

            try:
                current = await run_blocking(self._messages.get, message_id)
            except PersistenceError as exc:
                self._reporter.report("submit.recheck", exc, user_id=recipient, message_id=message_id)
                return SubmitResult(message=stored, outcome=DeliveryOutcome.QUEUED_PENDING)
            if current is not None and not current.pending:
                # A drain that started before we took the lock already pushed it.
                logger.debug(f"[Relay] Message {message_id} already delivered by drain")
                return SubmitResult(message=current, outcome=DeliveryOutcome.DELIVERED_ON_RECONNECT)

            delivered_view = stored.model_copy(update={"pending": False})
            if not await channel.emit("message", delivered_view.to_event()):
                logger.info(f"[Relay] Live delivery of message {message_id} to {recipient} failed; left pending")
                return SubmitResult(message=stored, outcome=DeliveryOutcome.QUEUED_PENDING)
            logger.info(f"[Relay] Delivered message {message_id} to online user {recipient}")

            try:
                await run_blocking(self._messages.mark_delivered, message_id)
            except PersistenceError as exc:
                self._reporter.report(
                    "submit.mark_delivered", exc, user_id=recipient, message_id=message_id
                )
                return SubmitResult(message=stored, outcome=DeliveryOutcome.DELIVERED_IMMEDIATE)

        return SubmitResult(message=delivered_view, outcome=DeliveryOutcome.DELIVERED_IMMEDIATE)

    async def drain_on_identify(self, user_id: str, channel: Channel) -> DrainResult:
        """Push every pending message for `user_id` to `channel`, oldest first.

        Each message is emitted and then marked delivered by its own id. A
        failed mark is reported and the drain moves on. If the channel dies,
        or a newer session replaces it, the drain stops and the remaining
        messages stay pending for the next identify.
        """
        result = DrainResult(user_id=user_id)
        async with self._recipient_lock(user_id):
            # A new drain replays everything still pending.
            self._unmarked.pop(user_id, None)
            try:
                pending = await run_blocking(self._messages.query_pending, user_id)
            except PersistenceError as exc:
                self._reporter.report("drain.query", exc, user_id=user_id)
                result.interrupted = True
                return result
            result.pending = len(pending)

            for message in pending:
                if self._presence.lookup(user_id) is not channel:
                    logger.info(f"[Relay] Drain for {user_id} superseded by a newer session")
                    result.interrupted = True
                    break

                delivered_view = message.model_copy(update={"pending": False})
                if not await channel.emit("message", delivered_view.to_event()):
                    logger.info(f"[Relay] Channel for {user_id} closed mid-drain")
                    result.interrupted = True
                    break
                result.delivered.append(message.id)
                logger.info(f"[Relay] Delivered pending message (id: {message.id}) to user {user_id}")

                try:
                    await run_blocking(self._messages.mark_delivered, message.id)
                except PersistenceError as exc:
                    self._reporter.report("drain.mark_delivered", exc, user_id=user_id, message_id=message.id)
                    result.mark_failures.append(message.id)
                    self._unmarked.setdefault(user_id, set()).add(message.id)

        if result.pending:
            logger.info(
                f"[Relay] Drain for {user_id}: {len(result.delivered)}/{result.pending} delivered"
            )
        return result

    async def forward_typing(self, sender_user_id: str, recipient_user_id: str) -> bool:
        """Forward a typing indicator if the recipient is online.

        Returns:
            True if the indicator was sent; False if it was dropped.
        """
        channel = self._presence.lookup(recipient_user_id)
        if channel is None:
            return False
        return await channel.emit("typing", {"sender_user_id": sender_user_id})
