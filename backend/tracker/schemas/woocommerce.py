from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from tracker.schemas.shipments import ShipmentRead


class WooAddress(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class WooMetaItem(BaseModel):
    key: str
    value: Any = None


class WooOrderIn(BaseModel):
    id: int
    number: Optional[str] = None
    billing: WooAddress = Field(default_factory=WooAddress)
    shipping: WooAddress = Field(default_factory=WooAddress)
    meta_data: list[WooMetaItem] = []
    customer_note: Optional[str] = None

    @field_validator("number", mode="before")
    @classmethod
    def _number_as_text(cls, value):
        return str(value) if value is not None else None

    def meta_dict(self) -> dict[str, Any]:
        return {item.key: item.value for item in self.meta_data if item.key}


class RejectedVoucher(BaseModel):
    meta_key: str
    courier_id: Optional[str] = None
    reason: str


class WooOrderResult(BaseModel):
    order_id: int
    shipments: list[ShipmentRead] = []
    rejected: list[RejectedVoucher] = []
