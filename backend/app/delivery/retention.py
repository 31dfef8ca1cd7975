"""Periodic retention job.

Every interval (hourly by default):
    - pending direct messages older than 14 days are retired: their pending
      flag is cleared so they are never replayed, but they stay in history.
    - global messages older than 30 days are deleted.

Stored timestamps are client ISO-8601 strings, so cutoffs are compared as
strings in the same ``YYYY-MM-DDTHH:MM:SS.mmmZ`` shape.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel

from app.errors import PersistenceError
from app.storage import GlobalMessageStore, MessageStore, run_blocking, utc_isoformat

from .reporting import FailureReporter

logger = logging.getLogger(__name__)


class RetentionResult(BaseModel):
    retired_pending: int = 0
    deleted_global: int = 0


class RetentionJob:
    """Ages out pending direct messages and old global messages."""

    def __init__(
        self,
        messages: MessageStore,
        global_messages: GlobalMessageStore,
        reporter: Optional[FailureReporter] = None,
        direct_message_days: int = 14,
        global_message_days: int = 30,
        interval_seconds: float = 3600,
    ) -> None:
        self._messages = messages
        self._global_messages = global_messages
        self._reporter = reporter or FailureReporter()
        self.direct_message_days = direct_message_days
        self.global_message_days = global_message_days
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    def cutoffs(self, now: Optional[datetime] = None) -> tuple:
        """(direct cutoff, global cutoff) as timestamp strings."""
        now = now or datetime.now(timezone.utc)
        return (
            utc_isoformat(now - timedelta(days=self.direct_message_days)),
            utc_isoformat(now - timedelta(days=self.global_message_days)),
        )

    async def run_once(self, now: Optional[datetime] = None) -> RetentionResult:
        """Apply both retention rules once. Failures are reported, not raised."""
        direct_cutoff, global_cutoff = self.cutoffs(now)
        result = RetentionResult()

        try:
            result.retired_pending = await run_blocking(self._messages.purge_older_than, direct_cutoff)
            logger.info(
                f"[Retention] Retired {result.retired_pending} pending messages older than {direct_cutoff}"
            )
        except PersistenceError as exc:
            self._reporter.report("retention.direct", exc)

        try:
            result.deleted_global = await run_blocking(
                self._global_messages.purge_older_than, global_cutoff
            )
            logger.info(
                f"[Retention] Deleted {result.deleted_global} global messages older than {global_cutoff}"
            )
        except PersistenceError as exc:
            self._reporter.report("retention.global", exc)

        return result

    async def run_forever(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.run_once()

    def start(self) -> asyncio.Task:
        """Schedule run_forever() on the running loop (idempotent)."""
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run_forever())
            logger.info(f"[Retention] Started (every {self.interval_seconds}s)")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("[Retention] Stopped")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
