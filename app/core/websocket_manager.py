# app/core/websocket_manager.py
# Registry of live WebSocket connections: user id -> connection, room -> member user ids.
# One instance lives on app.state for the lifetime of the server and is injected
# into handlers; nothing here is persisted.

import logging
from typing import Any, Dict, List, Optional, Set

from starlette.requests import HTTPConnection

logger = logging.getLogger(__name__)

class ConnectionRegistry:
    """
    Connections are anything with an async send_json(dict), normally a FastAPI WebSocket.
    Every frame is an envelope {"event": <name>, "data": {...}}.
    Presence read from here is best effort; a connection may drop at any await.
    """

    def __init__(self):
        # {user_id: connection}，每人一條連線 (新的取代舊的)
        self.active_connections: Dict[str, Any] = {}
        # {room: {user_id, ...}}
        self.rooms: Dict[str, Set[str]] = {}

    def register(self, user_id: str, connection: Any) -> Optional[Any]:
        """Bind user_id to connection. Returns the connection it replaced, if any."""
        previous = self.active_connections.get(user_id)
        self.active_connections[user_id] = connection
        logger.info(f"User {user_id} connected. Online users: {len(self.active_connections)}")
        return previous

    def unregister(self, user_id: str, connection: Any) -> bool:
        """
        Drop the user only if `connection` is still the registered one, so a stale
        socket closing late cannot evict a newer connection.
        """
        if self.active_connections.get(user_id) is not connection:
            return False
        del self.active_connections[user_id]
        for room in list(self.rooms):
            self.leave_room(room, user_id)
        logger.info(f"User {user_id} disconnected. Online users: {len(self.active_connections)}")
        return True

    def join_room(self, room: str, user_id: str) -> None:
        self.rooms.setdefault(room, set()).add(user_id)

    def leave_room(self, room: str, user_id: str) -> None:
        members = self.rooms.get(room)
        if members is None:
            return
        members.discard(user_id)
        if not members:
            del self.rooms[room]

    def room_members(self, room: str) -> Set[str]:
        return set(self.rooms.get(room, ()))

    def is_user_online(self, user_id: str) -> bool:
        return user_id in self.active_connections

    def online_user_ids(self) -> List[str]:
        return list(self.active_connections)

    async def _send(self, user_id: str, connection: Any, event: str, data: dict) -> bool:
        try:
            await connection.send_json({"event": event, "data": data})
            return True
        except Exception as e:
            logger.warning(f"Dropping dead connection of user {user_id} ({event}): {e}")
            self.unregister(user_id, connection)
            return False

    async def notify(self, user_id: str, event: str, data: dict) -> bool:
        """Point-to-point delivery. False when the user has no live connection."""
        connection = self.active_connections.get(user_id)
        if connection is None:
            return False
        return await self._send(user_id, connection, event, data)

    async def broadcast(self, room: str, event: str, data: dict, exclude_user_id: Optional[str] = None) -> int:
        """Send to every connected member of room. Returns the number of deliveries."""
        delivered = 0
        for user_id in self.room_members(room):
            if user_id == exclude_user_id:
                continue
            if await self.notify(user_id, event, data):
                delivered += 1
        return delivered

    async def broadcast_all(self, event: str, data: dict, exclude_user_id: Optional[str] = None) -> int:
        delivered = 0
        for user_id in self.online_user_ids():
            if user_id == exclude_user_id:
                continue
            if await self.notify(user_id, event, data):
                delivered += 1
        return delivered


def get_connections(conn: HTTPConnection) -> ConnectionRegistry:
    """FastAPI dependency: the registry created in the app lifespan"""
    return conn.app.state.connections
