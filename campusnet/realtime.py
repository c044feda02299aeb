"""
In-process websocket presence map.

A user may hold several sockets at once (tabs, devices).  The manager only
knows about sockets connected to this process; in a multi-process
deployment a push to a user connected elsewhere is silently skipped, and
clients fall back to polling the REST endpoints.
"""
import logging
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    def __init__(self, name: str) -> None:
        self.name = name
        self._sockets: dict[int, set[WebSocket]] = {}

    async def connect(self, user_id: int, websocket: WebSocket) -> bool:
        """Accept *websocket* and register it.  Returns True on the user's first socket."""
        await websocket.accept()
        sockets = self._sockets.setdefault(user_id, set())
        first = not sockets
        sockets.add(websocket)
        logger.debug("[%s] user %s connected (%d socket(s))", self.name, user_id, len(sockets))
        return first

    def disconnect(self, user_id: int, websocket: WebSocket) -> bool:
        """Forget *websocket*.  Returns True when the user has no sockets left."""
        sockets = self._sockets.get(user_id)
        if not sockets:
            return False
        sockets.discard(websocket)
        if sockets:
            return False
        del self._sockets[user_id]
        logger.debug("[%s] user %s offline", self.name, user_id)
        return True

    def is_online(self, user_id: int) -> bool:
        return bool(self._sockets.get(user_id))

    @property
    def online_users(self) -> list[int]:
        return list(self._sockets)

    async def send_to_user(self, user_id: int, event: str, data: Any) -> int:
        """Send one event to every socket of *user_id*; returns how many received it."""
        delivered = 0
        for websocket in list(self._sockets.get(user_id, ())):
            try:
                await websocket.send_json({"event": event, "data": data})
                delivered += 1
            except Exception as e:
                # Socket died between receive loops; drop it so later sends skip it.
                logger.debug("[%s] dropping socket for user %s: %s", self.name, user_id, e)
                self.disconnect(user_id, websocket)
        return delivered

    async def broadcast(self, event: str, data: Any, exclude: int | None = None) -> None:
        for user_id in list(self._sockets):
            if user_id != exclude:
                await self.send_to_user(user_id, event, data)


message_hub = ConnectionManager("messages")
notification_hub = ConnectionManager("notifications")
