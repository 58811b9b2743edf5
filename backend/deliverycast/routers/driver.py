from fastapi import APIRouter, Depends

from deliverycast.auth.deps import require_driver
from deliverycast.db.memory import store
from deliverycast.realtime.manager import manager, user_room
from deliverycast.schemas.delivery import DriverStatusUpdate

router = APIRouter(prefix="/api/driver", tags=["driver"])


def profile_payload(doc: dict) -> dict:
    return {
        "driverId": doc["driver_id"],
        "isActive": doc["is_active"],
        "isOnline": doc["is_online"],
        "location": doc["location"],
    }


@router.get("/profile")
async def driver_profile(user=Depends(require_driver)):
    return {"success": True, "data": profile_payload(store().driver(user["sub"]))}


@router.patch("/status")
async def update_status(body: DriverStatusUpdate, user=Depends(require_driver)):
    doc = store().update_driver(user["sub"], is_active=body.is_active, is_online=body.is_online)
    payload = profile_payload(doc)
    await manager.broadcast(user_room(user["sub"]), "driver-status-updated", payload)
    return {"success": True, "data": payload}
