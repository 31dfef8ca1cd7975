"""Direct message delivery, history pages, global broadcast and retention."""

from .broadcast import BroadcastChannel
from .engine import DeliveryEngine, DeliveryOutcome, DrainResult, SubmitResult
from .history import HistoryPage, HistoryReconstructor, normalize_offset
from .relay import Relay, get_relay, set_relay
from .reporting import FailureReport, FailureReporter
from .retention import RetentionJob, RetentionResult

__all__ = [
    "BroadcastChannel",
    "DeliveryEngine",
    "DeliveryOutcome",
    "DrainResult",
    "FailureReport",
    "FailureReporter",
    "HistoryPage",
    "HistoryReconstructor",
    "Relay",
    "RetentionJob",
    "RetentionResult",
    "SubmitResult",
    "get_relay",
    "normalize_offset",
    "set_relay",
]
