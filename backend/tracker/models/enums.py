from enum import Enum

# Stored as strings with DB check constraints (native enums disabled for easier evolution).


class ShipmentStatusEnum(str, Enum):
    PENDING = "pending"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    FAILED = "failed"
    RETURNED = "returned"


# The poller stops asking couriers about these.
TERMINAL_SHIPMENT_STATUSES = frozenset(
    {ShipmentStatusEnum.DELIVERED, ShipmentStatusEnum.RETURNED}
)


class OrderSourceEnum(str, Enum):
    MANUAL = "manual"
    WOOCOMMERCE = "woocommerce"
