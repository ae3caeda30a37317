"""
Presence registry: which user is reachable on which live connection.

The registry is process-local and lost on restart. A user maps to one
connection; a newer join replaces the older handle (last-connect-wins), so a
user with two tabs open only receives pushes on the most recent one.
"""

import asyncio
import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """Anything that can push a JSON frame; FastAPI's WebSocket satisfies this."""

    async def send_json(self, data: Any) -> None: ...


def frame(event: str, data: Any) -> dict[str, Any]:
    return {"event": event, "data": data}


class PresenceRegistry:
    """Owned presence state guarded by an asyncio lock.

    Tracks every open connection (broadcast audience) and the
    username -> connection map filled in by ``join``.
    """

    def __init__(self):
        self._sockets: list[Connection] = []
        self._connections: dict[str, Connection] = {}
        self._lock = asyncio.Lock()

    async def attach(self, connection: Connection) -> None:
        """Record an open connection that has not joined yet."""
        async with self._lock:
            if connection not in self._sockets:
                self._sockets.append(connection)

    async def join(self, username: str, connection: Connection) -> Connection | None:
        """Register ``connection`` for ``username``; returns the handle it replaced."""
        async with self._lock:
            if connection not in self._sockets:
                self._sockets.append(connection)
            previous = self._connections.get(username)
            self._connections[username] = connection
        if previous is connection:
            previous = None
        if previous is not None:
            logger.info("%s reconnected; newest connection wins", username)
        logger.info("%s joined the chat", username)
        return previous

    async def lookup(self, username: str) -> Connection | None:
        async with self._lock:
            return self._connections.get(username)

    async def leave(self, connection: Connection) -> str | None:
        """Forget ``connection``; returns the username whose entry it held, if any."""
        async with self._lock:
            if connection in self._sockets:
                self._sockets.remove(connection)
            username = next(
                (name for name, conn in self._connections.items() if conn is connection),
                None,
            )
            if username is not None:
                del self._connections[username]
        if username is not None:
            logger.info("%s left the chat", username)
        return username

    async def online_users(self) -> list[str]:
        async with self._lock:
            return sorted(self._connections)

    async def connections(self) -> list[Connection]:
        async with self._lock:
            return list(self._sockets)

    async def send(self, username: str, event: str, data: Any) -> bool:
        """Push one frame to ``username`` if online; returns whether it was sent."""
        connection = await self.lookup(username)
        if connection is None:
            return False
        return await self.send_to(connection, event, data)

    async def _push(self, connection: Connection, event: str, data: Any) -> bool:
        try:
            await connection.send_json(frame(event, data))
            return True
        except Exception as e:
            logger.warning("Failed to push %s: %s", event, e)
            return False

    async def send_to(self, connection: Connection, event: str, data: Any) -> bool:
        """Push to one connection; a dead one is dropped and the new snapshot broadcast."""
        if await self._push(connection, event, data):
            return True
        if await self.leave(connection) is not None:
            await self.broadcast_online_users()
        return False

    async def broadcast(self, event: str, data: Any, exclude: Connection | None = None) -> None:
        """Push a frame to every open connection except ``exclude``."""
        dropped = False
        for connection in await self.connections():
            if connection is exclude:
                continue
            if not await self._push(connection, event, data):
                if await self.leave(connection) is not None:
                    dropped = True
        if dropped:
            await self.broadcast_online_users()

    async def broadcast_online_users(self) -> None:
        await self.broadcast("onlineUsers", await self.online_users())
