from typing import Optional

from pydantic import Field

from deliverycast.core.config import BROADCAST_DEFAULT_DURATION_S
from deliverycast.schemas.broadcast import CamelModel, Location, Priority


class DeliveryCreate(CamelModel):
    delivery_code: Optional[str] = None
    pickup_location: str = Field(min_length=1)
    delivery_location: str = Field(min_length=1)
    customer_name: str = Field(min_length=1)
    customer_phone: str = Field(min_length=6)
    fee: float = Field(ge=0)
    driver_earning: Optional[float] = Field(default=None, ge=0)
    payment_method: str = "cash"
    priority: Priority = "normal"
    notes: str = ""
    broadcast_duration: int = Field(default=BROADCAST_DEFAULT_DURATION_S, gt=0, le=3600)
    pickup_coordinates: Optional[Location] = None
    delivery_coordinates: Optional[Location] = None


class DriverStatusUpdate(CamelModel):
    is_active: Optional[bool] = None
    is_online: Optional[bool] = None
