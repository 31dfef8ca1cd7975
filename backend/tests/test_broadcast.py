"""Tests for the global broadcast channel."""
from unittest.mock import patch

import pytest

from app.errors import PersistenceError, SenderBannedError
from app.storage import GlobalMessage, MessageKind


def _global(sender="a", content="hello", ts="2026-01-01T00:00:00.000Z", **kwargs):
    return GlobalMessage(sender_user_id=sender, content=content, timestamp=ts, **kwargs)


class TestPublish:
    """Tests for BroadcastChannel.publish."""

    @pytest.mark.asyncio
    async def test_publish_reaches_every_online_session(self, relay, make_channel):
        channels = [make_channel() for _ in range(3)]
        for i, channel in enumerate(channels):
            relay.presence.register(str(i), channel)

        stored = await relay.broadcast.publish(_global(sender="0", sender_username="Zero"))

        assert stored.id is not None
        for channel in channels:
            [event] = channel.websocket.events("global_message")
            assert event["id"] == stored.id
            assert event["sender_username"] == "Zero"

    @pytest.mark.asyncio
    async def test_one_dead_session_does_not_block_others(self, relay, make_channel):
        dead, alive = make_channel(fail=True), make_channel()
        relay.presence.register("dead", dead)
        relay.presence.register("alive", alive)

        await relay.broadcast.publish(_global())

        assert len(alive.websocket.events("global_message")) == 1

    @pytest.mark.asyncio
    async def test_publish_with_nobody_online_is_still_stored(self, relay):
        await relay.broadcast.publish(_global())

        assert len(await relay.broadcast.fetch_history()) == 1

    @pytest.mark.asyncio
    async def test_banned_sender_is_rejected(self, relay, make_channel):
        relay.users.register("a")
        relay.users.set_banned("a", True)
        listener = make_channel()
        relay.presence.register("b", listener)

        with pytest.raises(SenderBannedError):
            await relay.broadcast.publish(_global())

        assert listener.websocket.sent == []
        assert await relay.broadcast.fetch_history() == []

    @pytest.mark.asyncio
    async def test_append_failure_is_reported(self, relay):
        with patch.object(relay.global_messages, "append", side_effect=PersistenceError("full")):
            with pytest.raises(PersistenceError):
                await relay.broadcast.publish(_global())

        assert relay.reporter.counts() == {"global_message.append": 1}


class TestGlobalHistory:
    """Tests for BroadcastChannel.fetch_history."""

    @pytest.mark.asyncio
    async def test_history_is_bounded_and_ascending(self, relay):
        relay.broadcast.history_limit = 3
        for i in range(5):
            await relay.broadcast.publish(_global(content=str(i), ts=f"2026-01-01T00:00:0{i}.000Z"))

        history = await relay.broadcast.fetch_history()

        assert [m.content for m in history] == ["2", "3", "4"]

    @pytest.mark.asyncio
    async def test_image_flag_round_trips(self, relay):
        await relay.broadcast.publish(_global(message_type=MessageKind.IMAGE))

        [message] = await relay.broadcast.fetch_history()
        assert message.to_event()["image"] is True
