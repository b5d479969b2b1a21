from typing import Optional

from pydantic import BaseModel, constr, field_validator


VoucherStr = constr(min_length=1, max_length=64, strip_whitespace=True)


class CourierRead(BaseModel):
    id: str
    label: str
    tracking_configured: bool


class OrderContextIn(BaseModel):
    order_id: Optional[str] = None
    order_number: Optional[str] = None
    billing_phone: Optional[str] = None
    shipping_phone: Optional[str] = None


class VoucherResolveRequest(BaseModel):
    voucher: VoucherStr
    claimed_courier: Optional[str] = None
    order: Optional[OrderContextIn] = None

    @field_validator("claimed_courier")
    @classmethod
    def _blank_claim_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None


class VoucherResolveResponse(BaseModel):
    courier_id: Optional[str] = None
    voucher: Optional[str] = None
    valid: bool
    reason: str
    matched_by: Optional[str] = None
    api_payload: Optional[dict] = None
