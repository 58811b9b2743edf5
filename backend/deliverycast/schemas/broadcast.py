import logging
import math
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError
from pydantic.alias_generators import to_camel

from deliverycast.core.clock import to_epoch_ms
from deliverycast.core.config import BROADCAST_DEFAULT_DURATION_S

logger = logging.getLogger(__name__)

Priority = Literal["low", "normal", "high", "urgent"]
PRIORITIES = ("low", "normal", "high", "urgent")

BroadcastStatusName = Literal["not_started", "broadcasting", "accepted", "expired", "manual_assignment"]

PLACEHOLDER = "Unknown"
NO_VALUE = "N/A"

ID_KEYS = ("deliveryId", "id", "_id", "broadcastId")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Location(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class Broadcast(CamelModel):
    """A delivery open for acceptance. Times are epoch milliseconds."""

    delivery_id: str
    delivery_code: str = NO_VALUE
    pickup_location: Union[str, dict] = PLACEHOLDER
    delivery_location: Union[str, dict] = PLACEHOLDER
    customer_name: str = PLACEHOLDER
    customer_phone: str = NO_VALUE
    fee: float = Field(default=0.0, ge=0)
    driver_earning: float = 0.0
    company_earning: float = 0.0
    payment_method: str = "cash"
    priority: Priority = "normal"
    notes: str = ""
    estimated_time: Optional[str] = None
    pickup_coordinates: Optional[dict] = None
    delivery_coordinates: Optional[dict] = None
    distance: Union[float, str] = PLACEHOLDER
    broadcast_duration: int = BROADCAST_DEFAULT_DURATION_S
    broadcast_start_time: Optional[int] = None
    broadcast_end_time: int
    created_at: int

    # server-issued lifecycle instant, when the payload carried one
    _stamp: Optional[int] = PrivateAttr(default=None)

    @property
    def lifecycle_stamp(self) -> Optional[int]:
        return self._stamp

    def remaining_s(self, now_ms: int) -> int:
        return max(0, math.floor((self.broadcast_end_time - now_ms) / 1000))

    def is_expired(self, now_ms: int) -> bool:
        return now_ms >= self.broadcast_end_time


class BroadcastStatus(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    delivery_id: Optional[str] = None
    broadcast_status: str = "not_started"
    broadcast_start_time: Optional[str] = None
    broadcast_end_time: Optional[str] = None
    is_expired: bool = False
    assigned_to: Optional[str] = None
    status: Optional[str] = None
    can_be_accepted: bool = False


class AcceptResult(BaseModel):
    success: bool
    message: Optional[str] = None


# -----------------------------
# Payload normalization
# -----------------------------
def extract_delivery_id(payload: Any) -> Optional[str]:
    if isinstance(payload, str):
        return payload.strip() or None
    if isinstance(payload, dict):
        for key in ID_KEYS:
            value = payload.get(key)
            if value is not None and str(value).strip():
                return str(value).strip()
    return None


def _text(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return default


def _place(value: Any) -> Union[str, dict]:
    if isinstance(value, dict) and value:
        return value
    return _text(value, PLACEHOLDER)


def _amount(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    return amount if math.isfinite(amount) else None


def _duration(value: Any, default: int) -> int:
    amount = _amount(value)
    if amount is None or amount <= 0:
        return default
    return int(amount)


def _coordinates(value: Any) -> Optional[dict]:
    return value if isinstance(value, dict) and value else None


def normalize_broadcast(
    payload: Any,
    now_ms: int,
    default_duration_s: int = BROADCAST_DEFAULT_DURATION_S,
) -> Optional[Broadcast]:
    """
    Turn a REST or push payload into a Broadcast, filling safe defaults.

    Returns None when no delivery id can be found. Never raises: a field
    that cannot be used falls back to its default.
    """
    if isinstance(payload, Broadcast):
        return payload
    delivery_id = extract_delivery_id(payload)
    if delivery_id is None or not isinstance(payload, dict):
        return None

    duration = _duration(payload.get("broadcastDuration"), default_duration_s)
    start = to_epoch_ms(payload.get("broadcastStartTime"))
    created = to_epoch_ms(payload.get("createdAt"))
    end = to_epoch_ms(payload.get("broadcastEndTime"))
    if end is None:
        end = now_ms + duration * 1000

    fee = max(0.0, _amount(payload.get("fee")) or 0.0)
    driver_earning = _amount(payload.get("driverEarning"))
    priority = payload.get("priority")
    distance = payload.get("distance")
    if isinstance(distance, bool) or not isinstance(distance, (int, float, str)) or distance == "":
        distance = PLACEHOLDER
    estimated = payload.get("estimatedTime")

    try:
        broadcast = Broadcast(
            delivery_id=delivery_id,
            delivery_code=_text(payload.get("deliveryCode"), NO_VALUE),
            pickup_location=_place(payload.get("pickupLocation")),
            delivery_location=_place(payload.get("deliveryLocation")),
            customer_name=_text(payload.get("customerName"), PLACEHOLDER),
            customer_phone=_text(payload.get("customerPhone"), NO_VALUE),
            fee=fee,
            driver_earning=driver_earning if driver_earning is not None else fee,
            company_earning=_amount(payload.get("companyEarning")) or 0.0,
            payment_method=_text(payload.get("paymentMethod"), "cash"),
            priority=priority if priority in PRIORITIES else "normal",
            notes=_text(payload.get("notes"), ""),
            estimated_time=str(estimated) if estimated not in (None, "") else None,
            pickup_coordinates=_coordinates(payload.get("pickupCoordinates")),
            delivery_coordinates=_coordinates(payload.get("deliveryCoordinates")),
            distance=distance,
            broadcast_duration=duration,
            broadcast_start_time=start,
            broadcast_end_time=end,
            created_at=created if created is not None else now_ms,
        )
    except ValidationError:
        logger.exception(f"[BROADCAST] Unusable payload for delivery {delivery_id}")
        return None

    broadcast._stamp = start if start is not None else created
    return broadcast
