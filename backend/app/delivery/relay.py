"""Relay wiring: one object holding every relay component.

The WebSocket and HTTP routers reach the relay through get_relay(). The
application lifespan builds it from the loaded settings; tests install their
own with set_relay().
"""
import logging
from typing import Optional

from app.config import AppSettings, get_config
from app.presence import PresenceRegistry
from app.storage import Database, GlobalMessageStore, MessageStore, UserDirectory

from .broadcast import BroadcastChannel
from .engine import DeliveryEngine
from .history import HistoryReconstructor
from .reporting import FailureReporter
from .retention import RetentionJob

logger = logging.getLogger(__name__)


class Relay:
    """Container for the storage gateway, presence registry and services."""

    def __init__(self, db: Database, config: Optional[AppSettings] = None) -> None:
        config = config or AppSettings()
        self.db = db
        self.config = config

        self.reporter = FailureReporter(config.reporting.max_failures)
        self.presence = PresenceRegistry()
        self.messages = MessageStore(db)
        self.global_messages = GlobalMessageStore(db)
        self.users = UserDirectory(db)

        self.engine = DeliveryEngine(self.messages, self.users, self.presence, self.reporter)
        self.history = HistoryReconstructor(
            self.messages,
            first_page_size=config.history.first_page_size,
            page_size=config.history.page_size,
        )
        self.broadcast = BroadcastChannel(
            self.global_messages,
            self.engine,
            self.presence,
            self.reporter,
            history_limit=config.history.global_history_limit,
        )
        self.retention = RetentionJob(
            self.messages,
            self.global_messages,
            self.reporter,
            direct_message_days=config.retention.direct_message_days,
            global_message_days=config.retention.global_message_days,
            interval_seconds=config.retention.purge_interval_seconds,
        )


_relay: Optional[Relay] = None


def get_relay() -> Relay:
    """Return the process-wide relay, building it from settings on first use."""
    global _relay
    if _relay is None:
        config = get_config()
        _relay = Relay(Database.get_instance(config.database.path), config)
        logger.info(f"[Relay] Initialized with db={config.database.path}")
    return _relay


def set_relay(relay: Optional[Relay]) -> None:
    global _relay
    _relay = relay
