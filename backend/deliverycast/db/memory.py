import math
import secrets
from typing import Dict, List, Optional
from uuid import uuid4

from deliverycast.core.clock import Clock, iso_from_ms
from deliverycast.schemas.delivery import DeliveryCreate

# driver share of the fee when the request does not set one
DRIVER_SHARE = 0.40


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    r = 6371.0
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return r * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


class DeliveryStore:
    """
    Sandbox persistence: deliveries and driver profiles kept in dicts.

    Resets on restart. `claim` is the single place a broadcast changes hands.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or Clock()
        self.deliveries: Dict[str, dict] = {}
        self.drivers: Dict[str, dict] = {}

    # -----------------------------
    # Deliveries
    # -----------------------------
    def create_delivery(self, body: DeliveryCreate, broadcast: bool = True) -> dict:
        now = self.clock.now_ms()
        delivery_id = f"dl-{uuid4().hex[:10]}"
        fee = round(body.fee, 2)
        doc = {
            "delivery_id": delivery_id,
            "delivery_code": body.delivery_code or f"DEL-{secrets.randbelow(1000000):06d}",
            "pickup_location": body.pickup_location,
            "delivery_location": body.delivery_location,
            "customer_name": body.customer_name,
            "customer_phone": body.customer_phone,
            "fee": fee,
            "driver_earning": body.driver_earning if body.driver_earning is not None else round(fee * DRIVER_SHARE, 2),
            "payment_method": body.payment_method,
            "priority": body.priority,
            "notes": body.notes,
            "pickup_coordinates": body.pickup_coordinates.model_dump() if body.pickup_coordinates else None,
            "delivery_coordinates": body.delivery_coordinates.model_dump() if body.delivery_coordinates else None,
            "broadcast_duration": body.broadcast_duration,
            "broadcast_status": "not_started",
            "broadcast_start_ms": None,
            "broadcast_end_ms": None,
            "status": "pending",
            "assigned_to": None,
            "created_at_ms": now,
        }
        if broadcast:
            doc["broadcast_status"] = "broadcasting"
            doc["broadcast_start_ms"] = now
            doc["broadcast_end_ms"] = now + body.broadcast_duration * 1000
        self.deliveries[delivery_id] = doc
        return doc

    def get(self, delivery_id: str) -> Optional[dict]:
        return self.deliveries.get(delivery_id)

    def is_open(self, doc: dict, now_ms: int) -> bool:
        return (
            doc["broadcast_status"] == "broadcasting"
            and doc["assigned_to"] is None
            and doc["broadcast_end_ms"] is not None
            and now_ms < doc["broadcast_end_ms"]
        )

    def active_near(self, lat: float, lng: float, radius_km: float) -> List[dict]:
        now = self.clock.now_ms()
        found = []
        for doc in self.deliveries.values():
            if not self.is_open(doc, now):
                continue
            coords = doc["pickup_coordinates"]
            if coords:
                distance = haversine_km(lat, lng, coords["lat"], coords["lng"])
                if distance > radius_km:
                    continue
                found.append({**doc, "distance_km": round(distance, 1)})
            else:
                found.append(doc)
        return sorted(found, key=lambda d: d["created_at_ms"])

    def claim(self, delivery_id: str, driver_id: str) -> Optional[dict]:
        """
        Flip an open broadcast to accepted, first caller wins. None if it was not open.

        Check and update run with no await in between, so no other claim can interleave.
        """
        doc = self.deliveries.get(delivery_id)
        now = self.clock.now_ms()
        if doc is None or not self.is_open(doc, now):
            return None
        doc.update(
            broadcast_status="accepted",
            status="assigned",
            assigned_to=driver_id,
            assigned_at_ms=now,
        )
        return doc

    def assign_manual(self, delivery_id: str, driver_id: str) -> Optional[dict]:
        doc = self.deliveries.get(delivery_id)
        if doc is None or doc["assigned_to"] is not None:
            return None
        doc.update(
            broadcast_status="manual_assignment",
            status="assigned",
            assigned_to=driver_id,
            assigned_at_ms=self.clock.now_ms(),
        )
        return doc

    def expire_due(self) -> List[dict]:
        now = self.clock.now_ms()
        expired = []
        for doc in self.deliveries.values():
            if (
                doc["broadcast_status"] == "broadcasting"
                and doc["broadcast_end_ms"] is not None
                and now >= doc["broadcast_end_ms"]
            ):
                doc["broadcast_status"] = "expired"
                expired.append(doc)
        return expired

    # -----------------------------
    # Drivers
    # -----------------------------
    def driver(self, driver_id: str) -> dict:
        return self.drivers.setdefault(
            driver_id,
            {"driver_id": driver_id, "is_active": True, "is_online": True, "location": None},
        )

    def update_driver(self, driver_id: str, **fields) -> dict:
        doc = self.driver(driver_id)
        doc.update({k: v for k, v in fields.items() if v is not None})
        return doc


# -----------------------------
# Wire shapes
# -----------------------------
def broadcast_payload(doc: dict) -> dict:
    payload = {
        "deliveryId": doc["delivery_id"],
        "deliveryCode": doc["delivery_code"],
        "pickupLocation": doc["pickup_location"],
        "deliveryLocation": doc["delivery_location"],
        "customerName": doc["customer_name"],
        "customerPhone": doc["customer_phone"],
        "fee": doc["fee"],
        "driverEarning": doc["driver_earning"],
        "paymentMethod": doc["payment_method"],
        "priority": doc["priority"],
        "notes": doc["notes"],
        "pickupCoordinates": doc["pickup_coordinates"],
        "deliveryCoordinates": doc["delivery_coordinates"],
        "broadcastDuration": doc["broadcast_duration"],
        "broadcastStartTime": iso_from_ms(doc["broadcast_start_ms"]) if doc["broadcast_start_ms"] else None,
        "broadcastEndTime": iso_from_ms(doc["broadcast_end_ms"]) if doc["broadcast_end_ms"] else None,
        "createdAt": iso_from_ms(doc["created_at_ms"]),
    }
    if "distance_km" in doc:
        payload["distance"] = f"{doc['distance_km']} km"
    return payload


def status_payload(doc: dict, now_ms: int) -> dict:
    end = doc["broadcast_end_ms"]
    is_expired = doc["broadcast_status"] == "expired" or (end is not None and now_ms >= end)
    return {
        "deliveryId": doc["delivery_id"],
        "broadcastStatus": doc["broadcast_status"],
        "broadcastStartTime": iso_from_ms(doc["broadcast_start_ms"]) if doc["broadcast_start_ms"] else None,
        "broadcastEndTime": iso_from_ms(end) if end else None,
        "isExpired": is_expired,
        "assignedTo": doc["assigned_to"],
        "status": doc["status"],
        "canBeAccepted": doc["broadcast_status"] == "broadcasting" and doc["assigned_to"] is None and not is_expired,
    }


_store: Optional[DeliveryStore] = None


def store() -> DeliveryStore:
    global _store
    if _store is None:
        _store = DeliveryStore()
    return _store
