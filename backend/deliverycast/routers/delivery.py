import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from deliverycast.auth.deps import get_current_user, require_driver
from deliverycast.core.config import DISPATCH_RADIUS_KM
from deliverycast.db.memory import broadcast_payload, status_payload, store
from deliverycast.realtime.manager import DRIVERS_ROOM, manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/delivery", tags=["delivery"])


@router.get("/broadcast/active")
async def active_broadcasts(
    lat: float = Query(ge=-90, le=90),
    lng: float = Query(ge=-180, le=180),
    user=Depends(require_driver),
):
    docs = store().active_near(lat, lng, DISPATCH_RADIUS_KM)
    return {"success": True, "data": {"broadcasts": [broadcast_payload(d) for d in docs]}}


@router.post("/{delivery_id}/accept")
async def accept_delivery(delivery_id: str, user=Depends(require_driver)):
    if store().get(delivery_id) is None:
        raise HTTPException(status_code=404, detail="Delivery not found")

    # ATOMIC: only one driver can flip broadcasting -> accepted
    doc = store().claim(delivery_id, user["sub"])
    if not doc:
        raise HTTPException(status_code=409, detail="Delivery is no longer available")

    logger.info(f"[SANDBOX] Delivery {delivery_id} accepted by {user['sub']}")

    removal = {"deliveryId": delivery_id, "acceptedBy": user["sub"]}
    await manager.broadcast(DRIVERS_ROOM, "delivery-accepted-by-other", removal, exclude_user=user["sub"])
    await manager.broadcast(
        DRIVERS_ROOM,
        "delivery-status-changed",
        {"deliveryId": delivery_id, "status": "assigned", "assignedTo": user["sub"]},
    )
    return {"success": True, "message": "Delivery accepted successfully"}


@router.get("/{delivery_id}/broadcast-status")
async def broadcast_status(delivery_id: str, user=Depends(get_current_user)):
    doc = store().get(delivery_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Delivery not found")
    return {"success": True, "data": status_payload(doc, store().clock.now_ms())}


async def sweep_expired_broadcasts() -> int:
    expired = store().expire_due()
    for doc in expired:
        logger.info(f"[SANDBOX] Broadcast {doc['delivery_id']} expired")
        await manager.broadcast(DRIVERS_ROOM, "broadcast-expired", {"deliveryId": doc["delivery_id"]})
    return len(expired)
