import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from jose import JWTError

from deliverycast.auth.deps import ADMIN_ROLES, decode_token
from deliverycast.db.memory import store
from deliverycast.realtime.manager import ADMIN_ROOM, DRIVERS_ROOM, manager, user_room

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/drivers")
async def drivers_ws(ws: WebSocket, token: str = ""):
    try:
        user = decode_token(token)
    except JWTError:
        await ws.close(code=4401)
        return

    await ws.accept()
    rooms = [user_room(user["sub"])]
    rooms.append(ADMIN_ROOM if user["role"] in ADMIN_ROLES else DRIVERS_ROOM)
    for room in rooms:
        manager.join(room, ws)
    await manager.send(ws, "connection-status", {"connected": True})

    try:
        while True:
            raw = await ws.receive_text()
            try:
                frame = json.loads(raw)
            except ValueError:
                continue
            if not isinstance(frame, dict):
                continue
            event, data = frame.get("event"), frame.get("data")

            if event == "authenticate":
                await manager.send(
                    ws,
                    "authentication-confirmed",
                    {"userId": user["sub"], "userType": user["role"], "rooms": rooms},
                )
            elif event == "ping":
                await manager.send(ws, "pong")
            elif event == "driver:location" and isinstance(data, dict):
                store().update_driver(user["sub"], location={"lat": data.get("lat"), "lng": data.get("lng")})
    except WebSocketDisconnect:
        manager.disconnect(ws)
