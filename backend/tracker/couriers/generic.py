import re
from typing import Optional

from tracker.couriers.base import CourierProvider, OrderContext

_WHITESPACE = re.compile(r"\s+")
_SHAPE = re.compile(r"[A-Za-z0-9-]{8,20}")

MIN_LENGTH = 8
MAX_LENGTH = 20


class GenericProvider(CourierProvider):
    """
    Catch-all for alphanumeric references. Length and charset only: no
    phone or order-number heuristics.
    """

    id = "generic"
    label = "Generic"
    format_label = "generic"

    def looks_like(self, voucher: str) -> bool:
        return bool(_SHAPE.fullmatch(_WHITESPACE.sub("", voucher or "")))

    def normalize(self, voucher: str) -> str:
        return (voucher or "").strip()

    def validate(self, voucher: str, order: Optional[OrderContext] = None) -> tuple[bool, str]:
        if len(voucher) < MIN_LENGTH:
            return False, "Voucher too short"
        if len(voucher) > MAX_LENGTH:
            return False, "Voucher too long"
        if not _SHAPE.fullmatch(voucher):
            return False, "Invalid generic voucher format"
        return True, "Valid generic voucher"
