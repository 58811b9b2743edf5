import logging
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)

DRIVERS_ROOM = "drivers"
ADMIN_ROOM = "admin"


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


class WSManager:
    def __init__(self):
        self.rooms: Dict[str, Set[WebSocket]] = {}

    def join(self, room: str, ws: WebSocket):
        self.rooms.setdefault(room, set()).add(ws)

    def leave(self, room: str, ws: WebSocket):
        if room in self.rooms:
            self.rooms[room].discard(ws)
            if not self.rooms[room]:
                self.rooms.pop(room, None)

    def disconnect(self, ws: WebSocket):
        for room in list(self.rooms):
            self.leave(room, ws)

    async def send(self, ws: WebSocket, event: str, data: Any = None):
        await ws.send_json({"event": event, "data": data})

    async def broadcast(self, room: str, event: str, data: Any = None, exclude_user: Optional[str] = None) -> int:
        skip = self.rooms.get(user_room(exclude_user), set()) if exclude_user else set()
        sent = 0
        for ws in list(self.rooms.get(room, set())):
            if ws in skip:
                continue
            try:
                await self.send(ws, event, data)
                sent += 1
            except Exception:
                logger.warning(f"[SANDBOX] Dropping dead socket from {room}")
                self.disconnect(ws)
        return sent


manager = WSManager()
