from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from tracker.couriers.errors import CourierApiError
from tracker.couriers.http import CourierHttpClient



_NON_DIGITS = re.compile(r"\D")
_LETTERS = re.compile(r"[A-Za-z]")

REASON_PHONE = "Looks like phone number"
REASON_ORDER = "Looks like order number"
REASON_SEQUENTIAL = "Sequential or zero pattern detected"

INTERNAL_STATUSES = (
    "pending",
    "picked_up",
    "in_transit",
    "out_for_delivery",
    "delivered",
    "failed",
    "returned",
)


def digits_only(value: Optional[str]) -> str:
    return _NON_DIGITS.sub("", value or "")


@dataclass(frozen=True)
class OrderContext:
    """The parts of an order a voucher is checked against."""

    order_id: Optional[str] = None
    order_number: Optional[str] = None
    billing_phone: Optional[str] = None
    shipping_phone: Optional[str] = None

    @classmethod
    def from_order(cls, order) -> "OrderContext":
        order_id = getattr(order, "external_id", None) or getattr(order, "id", None)
        return cls(
            order_id=str(order_id) if order_id is not None else None,
            order_number=getattr(order, "order_number", None),
            billing_phone=getattr(order, "billing_phone", None),
            shipping_phone=getattr(order, "shipping_phone", None),
        )


@dataclass(frozen=True)
class TrackingEvent:
    happened_at: datetime
    status: str
    action: str = ""
    location: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class TrackingStatus:
    status: str
    events: tuple[TrackingEvent, ...] = ()
    message: Optional[str] = None
    raw: Optional[dict[str, Any]] = field(default=None, compare=False)

    @property
    def latest_event(self) -> Optional[TrackingEvent]:
        if not self.events:
            return None
        return max(self.events, key=lambda event: event.happened_at)


def parse_event_time(value) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc).replace(tzinfo=None) if value.tzinfo else value
    if not value:
        return None
    raw = str(value).strip().replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def looks_like_phone(voucher: str, order: Optional[OrderContext]) -> bool:
    if order is None or not voucher:
        return False
    for phone in (order.billing_phone, order.shipping_phone):
        if not phone:
            continue
        if voucher in phone or voucher in digits_only(phone):
            return True
    return False


def looks_like_order_number(voucher: str, order: Optional[OrderContext]) -> bool:
    if order is None or not voucher:
        return False
    if order.order_id is not None and voucher == str(order.order_id):
        return True
    return bool(order.order_number) and voucher == order.order_number


class CourierProvider:
    """
    One courier integration. Providers know nothing about each other:
    adding a courier is one subclass plus one `register()` call.
    """

    id: str = ""
    label: str = ""
    # Name used in validation reasons, e.g. "Invalid ACS voucher format".
    format_label: str = ""

    def __init__(
        self,
        *,
        http_client: CourierHttpClient | None = None,
        endpoint: Optional[str] = None,
        api_key: Optional[str] = None,
        credentials: Optional[dict[str, str]] = None,
    ) -> None:
        self.http_client = http_client or CourierHttpClient()
        self.endpoint = endpoint
        self.api_key = api_key
        self.credentials = dict(credentials or {})

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id!r}>"

    def looks_like(self, voucher: str) -> bool:
        raise NotImplementedError

    def normalize(self, voucher: str) -> str:
        raise NotImplementedError

    def validate(self, voucher: str, order: Optional[OrderContext] = None) -> tuple[bool, str]:
        raise NotImplementedError

    def build_api_payload(self, base: dict[str, Any]) -> dict[str, Any]:
        return {**base, "courier": self.id, "api_endpoint": f"{self.id}_tracking"}

    @property
    def tracking_configured(self) -> bool:
        return bool(self.endpoint)

    def not_configured_status(self) -> TrackingStatus:
        return TrackingStatus(status="pending", message=f"{self.label} tracking not configured")

    def fetch_tracking_status(self, voucher: str) -> TrackingStatus:
        """
        Query the courier's JSON tracking endpoint.

        Expects `{"status": ..., "message": ..., "events": [{"datetime",
        "status", "action", "location", "description"}]}`.
        """
        if not self.tracking_configured:
            return self.not_configured_status()
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else None
        data = self.http_client.get_json(
            self.id,
            self.endpoint,
            params={"voucher": voucher},
            headers=headers,
        )
        if not isinstance(data, dict):
            raise CourierApiError(self.id, f"{self.id} API returned an unexpected payload")
        events = []
        for item in data.get("events") or []:
            happened_at = parse_event_time(item.get("datetime"))
            if happened_at is None:
                continue
            status = item.get("status") if item.get("status") in INTERNAL_STATUSES else "in_transit"
            events.append(
                TrackingEvent(
                    happened_at=happened_at,
                    status=status,
                    action=item.get("action") or "",
                    location=item.get("location"),
                    description=item.get("description"),
                )
            )
        events.sort(key=lambda event: event.happened_at)
        status = data.get("status")
        if status not in INTERNAL_STATUSES:
            status = events[-1].status if events else "pending"
        return TrackingStatus(status=status, events=tuple(events), message=data.get("message"), raw=data)


class NumericCourierProvider(CourierProvider):
    """
    Couriers whose vouchers are plain digit strings.

    `shape` is matched against the digits-only form. `blocked` rejects
    placeholder values; with `block_in_shape` it is also applied by
    `looks_like`, otherwise only by `validate`.
    """

    shape: re.Pattern = re.compile(r"\d+")
    blocked: Optional[re.Pattern] = None
    block_in_shape: bool = False

    def looks_like(self, voucher: str) -> bool:
        if not voucher or _LETTERS.search(voucher):
            return False
        clean = digits_only(voucher)
        if not self.shape.fullmatch(clean):
            return False
        if self.block_in_shape and self.blocked is not None and self.blocked.fullmatch(clean):
            return False
        return True

    def normalize(self, voucher: str) -> str:
        return digits_only(voucher)

    def validate(self, voucher: str, order: Optional[OrderContext] = None) -> tuple[bool, str]:
        if not self.shape.fullmatch(voucher or ""):
            return False, f"Invalid {self.format_label} voucher format"
        if self.blocked is not None and self.blocked.fullmatch(voucher):
            return False, REASON_SEQUENTIAL
        if looks_like_phone(voucher, order):
            return False, REASON_PHONE
        if looks_like_order_number(voucher, order):
            return False, REASON_ORDER
        return True, f"Valid {self.format_label} voucher"
