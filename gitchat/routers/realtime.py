"""
Live channel: presence and best-effort fan-out of chat events over WebSocket.

Frames in both directions are ``{"event": <name>, "data": <payload>}``.
Persistence always happens over REST first; this channel only notifies.
"""

import json
import logging
from typing import Any

from fastapi import APIRouter, WebSocket

from gitchat.db import async_session_maker
from gitchat.deps import Presence, get_session_user
from gitchat.models.base import utcnow
from gitchat.models.conversation import Conversation
from gitchat.models.user import User

logger = logging.getLogger(__name__)
router = APIRouter(tags=["realtime"])

WS_UNAUTHORIZED = 4401


class FrameError(Exception):
    """Inbound frame that cannot be handled; reported back as an ``error`` frame."""


async def authenticate_websocket(websocket: WebSocket) -> User | None:
    """Resolve the ``session_token`` cookie to a user."""
    session_token = websocket.cookies.get("session_token")
    if not session_token:
        return None

    async with async_session_maker() as db:
        user, _ = await get_session_user(db, session_token)
        return user


async def get_peer(conversation_id: Any, username: str) -> str:
    """The other participant of a conversation ``username`` belongs to."""
    if not isinstance(conversation_id, int) or isinstance(conversation_id, bool):
        raise FrameError("conversationId must be an integer")

    async with async_session_maker() as db:
        conversation = await db.get(Conversation, conversation_id)
    if not conversation:
        raise FrameError("Conversation not found")
    if not conversation.has_participant(username):
        raise FrameError("Access denied")
    return conversation.other_participant(username)


def _require_dict(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise FrameError("Payload must be an object")
    return data


# -------------------------------------------------------------------------
# Event handlers
# -------------------------------------------------------------------------

async def handle_join(websocket: WebSocket, user: User, data: Any, presence) -> None:
    username = data.get("username") if isinstance(data, dict) else data
    if username != user.username:
        raise FrameError("Cannot join as another user")

    await presence.join(user.username, websocket)
    await presence.broadcast_online_users()


async def handle_send_message(websocket: WebSocket, user: User, data: Any, presence) -> None:
    payload = _require_dict(data)
    receiver = payload.get("receiver")
    if not receiver or payload.get("messageId") is None:
        raise FrameError("receiver and messageId are required")
    if await get_peer(payload.get("conversationId"), user.username) != receiver:
        raise FrameError("Receiver is not part of this conversation")

    outbound = {
        **payload,
        "sender": user.username,
        "_id": payload["messageId"],
        "createdAt": utcnow().isoformat(),
    }
    if await presence.send(receiver, "receiveMessage", outbound):
        await presence.send_to(websocket, "messageDelivered", payload["messageId"])
    else:
        logger.debug("%s is offline; message %s not pushed", receiver, payload["messageId"])


async def handle_delete_for_everyone(websocket: WebSocket, user: User, data: Any, presence) -> None:
    payload = _require_dict(data)
    peer = await get_peer(payload.get("conversationId"), user.username)
    await presence.send(peer, "messageDeleted", {
        "messageId": payload.get("messageId"),
        "conversationId": payload["conversationId"],
        "deletedBy": user.username,
    })


async def handle_reaction(websocket: WebSocket, user: User, data: Any, presence) -> None:
    payload = _require_dict(data)
    peer = await get_peer(payload.get("conversationId"), user.username)
    await presence.send(peer, "messageReaction", {
        "messageId": payload.get("messageId"),
        "conversationId": payload["conversationId"],
        "reaction": payload.get("reaction"),
        "username": user.username,
    })


async def handle_forwarded(websocket: WebSocket, user: User, data: Any, presence) -> None:
    payload = _require_dict(data)
    receiver = payload.get("receiver")
    if not receiver:
        raise FrameError("receiver is required")
    await presence.send(receiver, "messageForwarded", {
        "conversationId": payload.get("conversationId"),
        "receiver": receiver,
        "sender": user.username,
    })


async def handle_ping(websocket: WebSocket, user: User, data: Any, presence) -> None:
    await presence.send_to(websocket, "pong", None)


HANDLERS = {
    "join": handle_join,
    "sendMessage": handle_send_message,
    "deleteMessageForEveryone": handle_delete_for_everyone,
    "messageReaction": handle_reaction,
    "messageForwarded": handle_forwarded,
    "ping": handle_ping,
}


def parse_frame(raw: str | None) -> tuple[str, Any]:
    if raw is None:
        raise FrameError("Binary frames are not supported")
    try:
        message = json.loads(raw)
    except json.JSONDecodeError:
        raise FrameError("Malformed JSON")
    if not isinstance(message, dict) or not isinstance(message.get("event"), str):
        raise FrameError("Frame must be an object with an event name")
    return message["event"], message.get("data")


@router.websocket("/ws")
async def websocket_chat(websocket: WebSocket, presence: Presence):
    """Live channel for the authenticated user."""
    user = await authenticate_websocket(websocket)
    if not user:
        await websocket.close(code=WS_UNAUTHORIZED)
        return

    await websocket.accept()
    await presence.attach(websocket)
    logger.info("WebSocket connected for %s", user.username)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break

            try:
                event, data = parse_frame(message.get("text"))
                handler = HANDLERS.get(event)
                if handler is None:
                    raise FrameError(f"Unknown event: {event}")
                await handler(websocket, user, data, presence)
            except FrameError as e:
                await presence.send_to(websocket, "error", {"detail": str(e)})
    finally:
        if await presence.leave(websocket):
            await presence.broadcast_online_users()
        logger.info("WebSocket disconnected for %s", user.username)
