"""
Exceptions raised by courier providers and voucher resolution.
"""

from typing import Optional


class CourierApiUnavailable(Exception):
    """Transient courier API failure (timeout, connection error, 5xx). Safe to retry."""

    def __init__(self, courier_id: str, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.courier_id = courier_id
        self.status_code = status_code


class CourierApiError(Exception):
    """Permanent courier API failure (4xx, bad payload, courier-reported error). Never retried."""

    def __init__(self, courier_id: str, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.courier_id = courier_id
        self.status_code = status_code


class VoucherFormatUnrecognized(Exception):
    """Raised when no registered provider recognises a voucher."""


class VoucherRejected(Exception):
    """Raised when a voucher matched a provider's shape but failed its validation."""

    def __init__(self, reason: str, *, provider_id: Optional[str] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.provider_id = provider_id
