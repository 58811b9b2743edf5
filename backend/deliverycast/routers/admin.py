import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from deliverycast.auth.deps import require_admin
from deliverycast.db.memory import broadcast_payload, store
from deliverycast.realtime.manager import DRIVERS_ROOM, manager
from deliverycast.schemas.delivery import DeliveryCreate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


class AssignIn(BaseModel):
    driver_id: str


@router.post("/deliveries")
async def create_delivery(body: DeliveryCreate, broadcast: bool = True, user=Depends(require_admin)):
    doc = store().create_delivery(body, broadcast=broadcast)
    payload = broadcast_payload(doc)
    if broadcast:
        sent = await manager.broadcast(DRIVERS_ROOM, "delivery-broadcast", payload)
        logger.info(f"[SANDBOX] Delivery {doc['delivery_id']} broadcast to {sent} drivers")
    return {"success": True, "data": payload}


@router.post("/deliveries/{delivery_id}/assign")
async def assign_delivery(delivery_id: str, body: AssignIn, user=Depends(require_admin)):
    if store().get(delivery_id) is None:
        raise HTTPException(status_code=404, detail="Delivery not found")

    doc = store().assign_manual(delivery_id, body.driver_id)
    if not doc:
        raise HTTPException(status_code=409, detail="Delivery already assigned")

    await manager.broadcast(
        DRIVERS_ROOM,
        "delivery-status-changed",
        {"deliveryId": delivery_id, "status": "assigned", "assignedTo": body.driver_id},
    )
    return {"success": True, "data": {"deliveryId": delivery_id, "assignedTo": body.driver_id}}
