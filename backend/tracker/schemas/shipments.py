from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from tracker.models.enums import ShipmentStatusEnum
from tracker.schemas.couriers import VoucherStr


class ShipmentCreate(BaseModel):
    voucher: VoucherStr
    courier_id: Optional[str] = None
    order_id: Optional[int] = None


class ShipmentStatusEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: str
    location: Optional[str] = None
    description: Optional[str] = None
    happened_at: datetime


class ShipmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    voucher: str
    courier_id: str
    order_id: Optional[int] = None
    status: ShipmentStatusEnum
    status_message: Optional[str] = None
    last_polled_at: Optional[datetime] = None
    actual_delivery_at: Optional[datetime] = None
    created_at: datetime


class ShipmentDetailRead(ShipmentRead):
    status_history: list[ShipmentStatusEventRead] = []
