"""Relay WebSocket endpoint.

This module provides:
    - WebSocket /ws/relay: the session protocol for direct messages,
      history, typing indicators and the global channel

Protocol events (client -> server):
    - register: Upsert a registered user (acked)
    - identify: Bind this session to a user id and drain pending messages
    - message: Send a direct message (fire-and-forget)
    - fetch_history: Request one page of a conversation (answered by `history`)
    - get_registered_friends: Filter a friend list to registered users (acked)
    - typing: Typing indicator, forwarded only if the recipient is online
    - global_message: Publish to everyone online
    - fetch_global_history: Recent global messages (acked)

Server -> client events:
    - message, history, typing, global_message, error, ack

Client identity is trusted as sent; there is no authentication step.
"""
import logging
from typing import Awaitable, Callable, Dict

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from app.delivery import HistoryPage, Relay, get_relay, normalize_offset
from app.errors import PersistenceError, SenderBannedError
from app.presence import Channel
from app.storage import run_blocking

from .protocol import (
    ClientFrame,
    FetchHistoryRequest,
    GlobalMessageInput,
    IdentifyRequest,
    MessageInput,
    RegisterRequest,
    RegisteredFriendsRequest,
    TypingInput,
    ack_frame,
    parse_frame,
)

logger = logging.getLogger(__name__)

router = APIRouter()

Handler = Callable[[Relay, Channel, ClientFrame], Awaitable[None]]


async def _ack(channel: Channel, frame: ClientFrame, data: dict) -> None:
    await channel.send_frame(ack_frame(frame.ackId, data))


async def _error(channel: Channel, message: str) -> None:
    await channel.emit("error", {"message": message})


# =============================================================================
# Event handlers
# =============================================================================


async def on_register(relay: Relay, channel: Channel, frame: ClientFrame) -> None:
    try:
        request = RegisterRequest.model_validate(frame.data or {})
    except ValidationError:
        await _ack(channel, frame, {"error": "Invalid userId"})
        return

    try:
        user = await run_blocking(relay.users.register, request.userId, request.username)
    except PersistenceError as exc:
        relay.reporter.report("register", exc, user_id=request.userId)
        await _ack(channel, frame, {"error": "Database error"})
        return

    await _ack(channel, frame, {
        "status": "registered",
        "userId": user.user_id,
        "registeredAt": user.registered_at,
    })


async def on_identify(relay: Relay, channel: Channel, frame: ClientFrame) -> None:
    try:
        request = IdentifyRequest.from_data(frame.data)
    except ValidationError:
        await _error(channel, "Invalid userId")
        return

    user_id = request.userId
    if channel.user_id is not None and channel.user_id != user_id:
        relay.presence.unregister(channel.user_id, channel)
    relay.presence.register(user_id, channel)
    await relay.engine.drain_on_identify(user_id, channel)


async def on_message(relay: Relay, channel: Channel, frame: ClientFrame) -> None:
    try:
        message = MessageInput.model_validate(frame.data or {}).to_message()
    except ValidationError:
        await _error(channel, "Invalid message")
        return

    try:
        await relay.engine.submit(message)
    except SenderBannedError as exc:
        await _error(channel, exc.message)
    except PersistenceError:
        # Already reported by the engine; `message` has no error reply.
        pass


async def on_fetch_history(relay: Relay, channel: Channel, frame: ClientFrame) -> None:
    try:
        request = FetchHistoryRequest.model_validate(frame.data or {})
    except ValidationError:
        await _error(channel, "Invalid history request")
        return

    try:
        page = await relay.history.fetch_page(
            request.sender_user_id,
            request.friend_user_id,
            request.offset,
            request_id=request.requestId,
        )
    except PersistenceError as exc:
        relay.reporter.report("fetch_history", exc, user_id=request.sender_user_id)
        page = HistoryPage(
            friend_user_id=request.friend_user_id,
            requestId=request.requestId,
            offset=normalize_offset(request.offset),
            totalMessages=(exc.details or {}).get("totalMessages", 0),
        )
    await channel.emit("history", page.to_event())


async def on_get_registered_friends(relay: Relay, channel: Channel, frame: ClientFrame) -> None:
    try:
        request = RegisteredFriendsRequest.model_validate(frame.data or {})
    except ValidationError:
        await _ack(channel, frame, {"error": "Invalid friendIds"})
        return

    try:
        registered = await run_blocking(relay.users.filter_registered, request.friendIds)
    except PersistenceError as exc:
        relay.reporter.report("get_registered_friends", exc)
        await _ack(channel, frame, {"error": "Database error"})
        return

    await _ack(channel, frame, {"registeredFriendIds": registered})


async def on_typing(relay: Relay, channel: Channel, frame: ClientFrame) -> None:
    try:
        request = TypingInput.model_validate(frame.data or {})
    except ValidationError:
        return
    await relay.engine.forward_typing(request.sender_user_id, request.recipient_user_id)


async def on_global_message(relay: Relay, channel: Channel, frame: ClientFrame) -> None:
    try:
        message = GlobalMessageInput.model_validate(frame.data or {}).to_message()
    except ValidationError:
        await _error(channel, "Invalid message")
        return

    try:
        await relay.broadcast.publish(message)
    except SenderBannedError as exc:
        await _error(channel, exc.message)
    except PersistenceError:
        pass


async def on_fetch_global_history(relay: Relay, channel: Channel, frame: ClientFrame) -> None:
    try:
        messages = await relay.broadcast.fetch_history()
    except PersistenceError:
        await _ack(channel, frame, {"messages": [], "error": "Database error"})
        return
    await _ack(channel, frame, {"messages": [m.to_event() for m in messages]})


HANDLERS: Dict[str, Handler] = {
    "register": on_register,
    "identify": on_identify,
    "message": on_message,
    "fetch_history": on_fetch_history,
    "get_registered_friends": on_get_registered_friends,
    "typing": on_typing,
    "global_message": on_global_message,
    "fetch_global_history": on_fetch_global_history,
}


# =============================================================================
# Endpoint
# =============================================================================


@router.websocket("/ws/relay")
async def relay_websocket_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for one relay session.

    Protocol Flow:
        1. Client connects (no handshake payload).
        2. Client sends: {event: "identify", data: userId}
           → Server pushes every pending message as {event: "message", ...}
        3. Client sends messages, history requests, typing, global messages.
        4. On disconnect → the session's presence entry is removed, unless a
           newer session for the same user has replaced it.

    Args:
        websocket: The WebSocket connection.
    """
    await websocket.accept()
    relay = get_relay()
    channel = Channel(websocket)
    logger.info(f"[WS] New connection established (session={channel.session_id})")

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            # Binary frames carry no text and are rejected like bad JSON.
            raw = message.get("text")
            frame = parse_frame(raw) if raw is not None else None
            if frame is None:
                await _error(channel, "Malformed frame")
                continue

            logger.debug("[WS] Session %s received: event=%s", channel.session_id, frame.event)
            handler = HANDLERS.get(frame.event)
            if handler is None:
                await _error(channel, f"Unknown event: {frame.event}")
                continue
            await handler(relay, channel, frame)

    except WebSocketDisconnect:
        logger.info(f"[WS] Session {channel.session_id} disconnected (user={channel.user_id})")
    finally:
        channel.close()
        if channel.user_id is not None:
            relay.presence.unregister(channel.user_id, channel)
