from tracker.couriers.base import CourierProvider, OrderContext, TrackingEvent, TrackingStatus
from tracker.couriers.errors import (
    CourierApiError,
    CourierApiUnavailable,
    VoucherFormatUnrecognized,
    VoucherRejected,
)
from tracker.couriers.registry import (
    CourierProviderRegistry,
    build_default_registry,
    get_courier_registry,
)
from tracker.couriers.resolver import CourierMatchResult, VoucherResolver
