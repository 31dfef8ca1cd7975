"""Structured failure reporting for fire-and-forget relay operations.

Message submits, drains, typing forwards and the retention job never return
errors to a caller that waits for them. Instead of only printing to the
console, each failure is recorded as a FailureReport in a bounded ring and
logged, so operators can inspect recent failures through GET /health/failures.
"""
import logging
from collections import Counter, deque
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional, Union

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_MAX_FAILURES = 200


class FailureReport(BaseModel):
    """A single failed relay operation.

    Attributes:
        operation: Name of the failing step (e.g. "submit.insert", "drain.mark").
        error: Human-readable error text.
        user_id: User the operation was acting for, if known.
        message_id: Stored message id involved, if one had been assigned.
        occurred_at: When the failure was recorded (UTC).
    """
    operation: str = Field(..., description="Failing operation")
    error: str = Field(..., description="Error description")
    user_id: Optional[str] = Field(None, description="Affected user")
    message_id: Optional[int] = Field(None, description="Affected message id")
    occurred_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the failure happened (UTC)"
    )


class FailureReporter:
    """Bounded in-memory record of recent relay failures."""

    def __init__(self, max_failures: int = DEFAULT_MAX_FAILURES) -> None:
        self._failures: Deque[FailureReport] = deque(maxlen=max_failures)
        self._counts: Counter = Counter()

    def report(
        self,
        operation: str,
        error: Union[BaseException, str],
        *,
        user_id: Optional[str] = None,
        message_id: Optional[int] = None,
    ) -> FailureReport:
        entry = FailureReport(
            operation=operation,
            error=str(error),
            user_id=user_id,
            message_id=message_id,
        )
        self._failures.append(entry)
        self._counts[operation] += 1
        logger.error(
            "[Relay] %s failed (user=%s, message=%s): %s",
            operation, user_id, message_id, entry.error,
        )
        return entry

    def recent(self, limit: Optional[int] = None) -> List[FailureReport]:
        """Return recorded failures, newest last."""
        failures = list(self._failures)
        if limit is not None:
            return failures[-limit:] if limit > 0 else []
        return failures

    def counts(self) -> Dict[str, int]:
        return dict(self._counts)

    def clear(self) -> None:
        self._failures.clear()
        self._counts.clear()
