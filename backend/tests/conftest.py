"""Shared test fixtures and configuration for backend tests."""
from typing import Any, List

import pytest
from fastapi.testclient import TestClient

from app.config import AppSettings
from app.delivery import Relay, set_relay
from app.main import app
from app.presence import Channel
from app.storage import Database


class FakeWebSocket:
    """Stands in for a WebSocket: records every JSON frame sent to it."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: List[dict] = []
        self.fail = fail

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    def events(self, name: str) -> List[Any]:
        return [f["data"] for f in self.sent if f.get("event") == name]


@pytest.fixture
def make_channel():
    """Factory for channels over FakeWebSockets (channel.websocket.sent holds frames)."""
    def _make(fail: bool = False) -> Channel:
        return Channel(FakeWebSocket(fail=fail))
    return _make


@pytest.fixture
def db():
    """A fresh in-memory database with the full schema."""
    database = Database(db_path=":memory:")
    yield database
    database.close()


@pytest.fixture
def relay(db):
    """A relay over the in-memory database, installed as the app's relay."""
    instance = Relay(db, AppSettings())
    set_relay(instance)
    yield instance
    set_relay(None)


@pytest.fixture
def api_client(relay):
    """Provide a TestClient for the main FastAPI app.

    Named api_client (not client) to avoid shadowing the module-level
    `client = TestClient(app)` pattern used in existing test files.
    """
    return TestClient(app)
