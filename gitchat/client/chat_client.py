"""
Async chat client: REST for persistence, the live channel for notification.

Every write goes over REST first; the matching live event is only emitted
once the server has accepted it.
"""

import asyncio
import json
import logging
from collections import defaultdict
from typing import Any, Callable

import httpx
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from gitchat.client.timeline import MessageTimeline
from gitchat.settings import settings

logger = logging.getLogger(__name__)


class ChatClient:
    """One signed-in user's view of their conversations."""

    def __init__(
        self,
        base_url: str,
        username: str,
        session_token: str,
        transport: httpx.AsyncBaseTransport | None = None,
        connect: Callable = websockets.connect,
        reconnect_attempts: int | None = None,
        reconnect_delay: float | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.username = username
        self.session_token = session_token
        self.http = httpx.AsyncClient(
            base_url=self.base_url,
            transport=transport,
            cookies={"session_token": session_token},
            headers={"Accept": "application/json"},
            timeout=10.0,
        )
        self._connect = connect
        self.reconnect_attempts = (
            settings.realtime_reconnect_attempts if reconnect_attempts is None else reconnect_attempts
        )
        self.reconnect_delay = (
            settings.realtime_reconnect_delay_seconds if reconnect_delay is None else reconnect_delay
        )
        self.timelines: dict[int, MessageTimeline] = defaultdict(MessageTimeline)
        self.online_users: list[str] = []
        self._ws = None

    @property
    def ws_url(self) -> str:
        if self.base_url.startswith("https://"):
            return "wss://" + self.base_url[len("https://"):] + "/ws"
        return "ws://" + self.base_url.removeprefix("http://") + "/ws"

    @property
    def connected(self) -> bool:
        return self._ws is not None

    def timeline(self, conversation_id: int) -> MessageTimeline:
        return self.timelines[conversation_id]

    # ---------------------------------------------------------------------
    # Live channel
    # ---------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the live channel and join, retrying with a fixed delay."""
        for attempt in range(1, self.reconnect_attempts + 1):
            try:
                self._ws = await self._connect(
                    self.ws_url,
                    additional_headers={"Cookie": f"session_token={self.session_token}"},
                )
            except (OSError, WebSocketException) as e:
                logger.warning("Connect attempt %s/%s failed: %s", attempt, self.reconnect_attempts, e)
                if attempt < self.reconnect_attempts:
                    await asyncio.sleep(self.reconnect_delay)
                continue

            logger.info("Live channel connected as %s", self.username)
            await self.emit("join", self.username)
            return

        raise ConnectionError(f"Could not connect to {self.ws_url} after {self.reconnect_attempts} attempts")

    async def emit(self, event: str, data: Any) -> bool:
        """Send one frame; returns False when the channel is down."""
        if self._ws is None:
            logger.debug("Not connected; dropping %s", event)
            return False
        try:
            await self._ws.send(json.dumps({"event": event, "data": data}))
        except ConnectionClosed:
            logger.info("Live channel closed while sending %s", event)
            self._ws = None
            return False
        return True

    async def listen(self) -> None:
        """Dispatch frames until the channel closes, reconnecting as needed.

        After a reconnect every open timeline is refetched so events missed
        while offline are reconciled. Gives up (raising ``ConnectionError``)
        once a reconnect exhausts its attempts.
        """
        reconnecting = False
        while True:
            if self._ws is None:
                await self.connect()
                if reconnecting:
                    await self.resync()
            try:
                async for raw in self._ws:
                    self.receive(raw)
                return
            except ConnectionClosed:
                logger.info("Live channel dropped; reconnecting")
                self._ws = None
                reconnecting = True

    async def resync(self) -> None:
        """Reload history for every timeline the client holds."""
        for conversation_id in list(self.timelines):
            try:
                await self.load_history(conversation_id)
            except httpx.HTTPError as e:
                logger.warning("History refetch failed for conversation %s: %s", conversation_id, e)

    def receive(self, raw: str | bytes) -> bool:
        """Decode and dispatch one raw frame; malformed frames are logged and skipped."""
        try:
            message = json.loads(raw)
            if not isinstance(message, dict):
                raise ValueError("frame is not an object")
            return self.dispatch(message)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Skipping bad frame %r: %s", raw, e)
            return False

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        await self.http.aclose()

    def dispatch(self, frame: dict[str, Any]) -> bool:
        """Apply one server event to local state; returns False if unhandled."""
        event = frame.get("event")
        data = frame.get("data")

        if event == "receiveMessage":
            self.timeline(data["conversationId"]).receive_live(data)
        elif event == "messageDelivered":
            for timeline in self.timelines.values():
                if timeline.mark_delivered(data):
                    break
        elif event == "messageDeleted":
            self.timeline(data["conversationId"]).remove(data["messageId"])
        elif event == "messageReaction":
            self.timeline(data["conversationId"]).apply_reaction(
                data["messageId"], data["username"], data["reaction"]
            )
        elif event == "onlineUsers":
            self.online_users = list(data)
        elif event == "error":
            logger.warning("Server rejected a frame: %s", data)
        elif event in ("pong", "messageForwarded"):
            logger.debug("Received %s", event)
        else:
            logger.debug("Unhandled event %s", event)
            return False
        return True

    # ---------------------------------------------------------------------
    # Messages
    # ---------------------------------------------------------------------

    async def load_history(self, conversation_id: int) -> MessageTimeline:
        response = await self.http.get(f"/api/chat/messages/{conversation_id}")
        response.raise_for_status()
        timeline = self.timeline(conversation_id)
        timeline.load_history(response.json())
        return timeline

    async def send_text(self, conversation_id: int, receiver: str, body: str) -> str:
        """Optimistically append, persist, then notify; returns the temp id."""
        draft = {
            "sender": self.username,
            "receiver": receiver,
            "message": body,
            "messageType": "text",
            "conversationId": conversation_id,
        }
        temp_id = self.timeline(conversation_id).append_pending(draft)
        await self._deliver(conversation_id, temp_id, draft)
        return temp_id

    async def retry(self, conversation_id: int, temp_id: str) -> None:
        draft = self.timeline(conversation_id).retry(temp_id)
        await self._deliver(conversation_id, temp_id, draft)

    async def _deliver(self, conversation_id: int, temp_id: str, draft: dict[str, Any]) -> None:
        timeline = self.timeline(conversation_id)
        try:
            response = await self.http.post("/api/chat/messages", json=draft)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Send failed for %s: %s", temp_id, e)
            timeline.fail(temp_id, str(e))
            return

        record = response.json()
        timeline.confirm(temp_id, record)
        await self.emit("sendMessage", {
            "sender": record["sender"],
            "receiver": record["receiver"],
            "message": record["message"],
            "conversationId": record["conversationId"],
            "messageId": record["_id"],
            "messageType": record["messageType"],
            "imageUrl": record.get("imageUrl"),
            "replyTo": record.get("replyTo"),
            "forwardedFrom": record.get("forwardedFrom"),
        })

    async def delete_for_everyone(self, conversation_id: int, message_id: int) -> None:
        response = await self.http.delete(f"/api/chat/messages/{message_id}")
        response.raise_for_status()
        self.timeline(conversation_id).remove(message_id)
        await self.emit("deleteMessageForEveryone", {
            "messageId": message_id,
            "conversationId": conversation_id,
        })

    async def delete_for_me(self, conversation_id: int, message_id: int) -> None:
        response = await self.http.delete(f"/api/chat/messages/{message_id}/me")
        response.raise_for_status()
        self.timeline(conversation_id).hide_for_me(message_id)

    async def react(self, conversation_id: int, message_id: int, reaction: str) -> None:
        response = await self.http.post(
            f"/api/chat/messages/{message_id}/react",
            json={"reaction": reaction},
        )
        response.raise_for_status()
        self.timeline(conversation_id).apply_reaction(message_id, self.username, reaction)
        await self.emit("messageReaction", {
            "messageId": message_id,
            "conversationId": conversation_id,
            "reaction": reaction,
        })

    async def forward(self, message_id: int, conversation_id: int, receiver: str) -> dict[str, Any]:
        response = await self.http.post(
            "/api/chat/messages/forward",
            json={"messageId": message_id, "conversationId": conversation_id, "receiver": receiver},
        )
        response.raise_for_status()
        record = response.json()
        self.timeline(conversation_id).add_confirmed(record)
        await self.emit("messageForwarded", {
            "conversationId": conversation_id,
            "receiver": receiver,
            "sender": self.username,
        })
        return record
