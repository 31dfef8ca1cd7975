"""Unit tests for the DuckDB storage gateway."""
import pytest

from app.errors import PersistenceError
from app.storage import (
    SCHEMA_VERSION,
    Database,
    DirectMessage,
    GlobalMessage,
    GlobalMessageStore,
    MessageKind,
    MessageStore,
    UserDirectory,
)


def _msg(sender, recipient, ts, content="hi", kind=MessageKind.TEXT):
    return DirectMessage(
        sender_user_id=sender,
        recipient_user_id=recipient,
        content=content,
        timestamp=ts,
        message_type=kind,
    )


@pytest.fixture
def store(db):
    return MessageStore(db)


@pytest.fixture
def users(db):
    return UserDirectory(db)


class TestSchema:
    """Tests for versioned schema initialization."""

    def test_fresh_database_is_at_latest_version(self, db):
        assert db.schema_version() == SCHEMA_VERSION

    def test_migrate_is_idempotent(self, db):
        assert db.migrate() == SCHEMA_VERSION
        rows = db.fetchall("SELECT version FROM schema_version ORDER BY version")
        assert [r["version"] for r in rows] == list(range(1, SCHEMA_VERSION + 1))

    def test_expected_columns_exist(self, db):
        for column in ("id", "sender_user_id", "recipient_user_id", "content",
                       "timestamp", "message_type", "pending"):
            assert db.column_exists("messages", column)
        assert db.column_exists("registered_users", "banned")
        assert db.column_exists("global_messages", "sender_username")

    def test_add_column_if_missing_checks_before_altering(self, db):
        db.execute("CREATE TABLE scratch (a INTEGER)")

        assert db.add_column_if_missing("scratch", "b", "VARCHAR") is True
        assert db.add_column_if_missing("scratch", "b", "VARCHAR") is False
        assert db.column_exists("scratch", "b")

    def test_errors_are_wrapped(self, db):
        with pytest.raises(PersistenceError):
            db.fetchall("SELECT * FROM no_such_table")

    def test_file_database_survives_reopen(self, tmp_path):
        path = str(tmp_path / "relay.duckdb")
        first = Database(db_path=path)
        MessageStore(first).insert(_msg("a", "b", "2026-01-01T00:00:00.000Z"))
        first.close()

        second = Database(db_path=path)
        try:
            assert second.schema_version() == SCHEMA_VERSION
            assert MessageStore(second).count("a", "b") == 1
        finally:
            second.close()

    def test_singleton_reset(self):
        Database.reset_instance()
        instance = Database.get_instance(":memory:")
        assert Database.get_instance() is instance
        Database.reset_instance()
        assert Database._instance is None


class TestMessageStore:
    """Tests for the direct message gateway."""

    def test_insert_assigns_increasing_ids(self, store):
        first = store.insert(_msg("a", "b", "2026-01-01T00:00:00.000Z"))
        second = store.insert(_msg("a", "b", "2026-01-01T00:00:01.000Z"))
        assert second > first

    def test_insert_stores_pending(self, store):
        message_id = store.insert(_msg("a", "b", "2026-01-01T00:00:00.000Z", kind=MessageKind.IMAGE))
        stored = store.get(message_id)

        assert stored.pending is True
        assert stored.message_type == MessageKind.IMAGE
        assert stored.sender_user_id == "a"

    def test_mark_delivered_targets_only_that_id(self, store):
        first = store.insert(_msg("a", "b", "2026-01-01T00:00:00.000Z"))
        second = store.insert(_msg("c", "d", "2026-01-01T00:00:01.000Z"))

        assert store.mark_delivered(first) is True
        assert store.get(first).pending is False
        assert store.get(second).pending is True

    def test_mark_delivered_twice_reports_no_change(self, store):
        message_id = store.insert(_msg("a", "b", "2026-01-01T00:00:00.000Z"))
        assert store.mark_delivered(message_id) is True
        assert store.mark_delivered(message_id) is False
        assert store.mark_delivered(999999) is False

    def test_query_pending_orders_by_timestamp_not_insertion(self, store):
        store.insert(_msg("a", "b", "2026-01-01T00:00:03.000Z", content="third"))
        store.insert(_msg("a", "b", "2026-01-01T00:00:01.000Z", content="first"))
        store.insert(_msg("c", "b", "2026-01-01T00:00:02.000Z", content="second"))
        store.insert(_msg("a", "z", "2026-01-01T00:00:00.000Z", content="other recipient"))

        pending = store.query_pending("b")
        assert [m.content for m in pending] == ["first", "second", "third"]

    def test_query_pending_skips_delivered(self, store):
        delivered = store.insert(_msg("a", "b", "2026-01-01T00:00:00.000Z"))
        store.insert(_msg("a", "b", "2026-01-01T00:00:01.000Z"))
        store.mark_delivered(delivered)

        assert len(store.query_pending("b")) == 1

    def test_count_and_range_cover_both_directions(self, store):
        store.insert(_msg("a", "b", "2026-01-01T00:00:00.000Z"))
        store.insert(_msg("b", "a", "2026-01-01T00:00:01.000Z"))
        store.insert(_msg("a", "c", "2026-01-01T00:00:02.000Z"))

        assert store.count("a", "b") == 2
        assert store.count("b", "a") == 2
        newest_first = store.query_range("a", "b", descending=True, limit=10, offset=0)
        assert [m.sender_user_id for m in newest_first] == ["b", "a"]
        oldest_first = store.query_range("a", "b", descending=False, limit=1, offset=1)
        assert [m.sender_user_id for m in oldest_first] == ["b"]

    def test_equal_timestamps_break_ties_by_id(self, store):
        ids = [store.insert(_msg("a", "b", "2026-01-01T00:00:00.000Z", content=str(i))) for i in range(3)]
        rows = store.query_range("a", "b", descending=True, limit=10, offset=0)
        assert [m.id for m in rows] == list(reversed(ids))

    def test_purge_retires_only_old_pending(self, store):
        old_pending = store.insert(_msg("a", "b", "2025-01-01T00:00:00.000Z"))
        old_delivered = store.insert(_msg("a", "b", "2025-01-02T00:00:00.000Z"))
        recent = store.insert(_msg("a", "b", "2026-06-01T00:00:00.000Z"))
        store.mark_delivered(old_delivered)

        assert store.purge_older_than("2026-01-01T00:00:00.000Z") == 1
        assert store.get(old_pending).pending is False
        assert store.get(recent).pending is True
        # Purged rows remain in history.
        assert store.count("a", "b") == 3
        assert store.purge_older_than("2026-01-01T00:00:00.000Z") == 0


class TestGlobalMessageStore:
    """Tests for the global broadcast log."""

    def test_append_assigns_id(self, db):
        store = GlobalMessageStore(db)
        stored = store.append(GlobalMessage(
            sender_user_id="a", sender_username="Alice", content="hello",
            timestamp="2026-01-01T00:00:00.000Z",
        ))
        assert stored.id is not None
        assert stored.sender_username == "Alice"

    def test_recent_returns_newest_in_ascending_order(self, db):
        store = GlobalMessageStore(db)
        for i in range(5):
            store.append(GlobalMessage(
                sender_user_id="a", content=str(i),
                timestamp=f"2026-01-01T00:00:0{i}.000Z",
            ))

        recent = store.recent(3)
        assert [m.content for m in recent] == ["2", "3", "4"]

    def test_purge_deletes_old_rows(self, db):
        store = GlobalMessageStore(db)
        store.append(GlobalMessage(sender_user_id="a", content="old", timestamp="2025-01-01T00:00:00.000Z"))
        store.append(GlobalMessage(sender_user_id="a", content="new", timestamp="2026-06-01T00:00:00.000Z"))

        assert store.purge_older_than("2026-01-01T00:00:00.000Z") == 1
        assert [m.content for m in store.recent(10)] == ["new"]


class TestUserDirectory:
    """Tests for registered users and the ban flag."""

    def test_register_and_get(self, users):
        user = users.register("42", "builder")

        assert user.user_id == "42"
        assert user.username == "builder"
        assert user.banned is False
        assert user.registered_at.endswith("Z")
        assert users.get("42") == user

    def test_reregister_keeps_ban_and_username(self, users):
        users.register("42", "builder")
        users.set_banned("42", True)

        again = users.register("42")
        assert again.banned is True
        assert again.username == "builder"

    def test_unknown_user_is_not_banned(self, users):
        assert users.is_banned("nobody") is False
        assert users.get("nobody") is None

    def test_set_banned_unknown_user(self, users):
        assert users.set_banned("nobody", True) is None

    def test_set_banned_round_trip(self, users):
        users.register("42")
        assert users.set_banned("42", True).banned is True
        assert users.is_banned("42") is True
        assert users.set_banned("42", False).banned is False
        assert users.is_banned("42") is False

    def test_filter_registered_keeps_input_order(self, users):
        users.register("1")
        users.register("3")

        assert users.filter_registered(["3", "2", "1", "3"]) == ["3", "1"]
        assert users.filter_registered([]) == []
