from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from tracker.core.db import Base
from tracker.models.enums import ShipmentStatusEnum
from tracker.models.mixins import TenantOwnedMixin, TimestampMixin

JSON_TYPE = JSONB().with_variant(JSON, "sqlite")


class Shipment(TenantOwnedMixin, TimestampMixin, Base):
    __tablename__ = "shipments"
    __table_args__ = (
        UniqueConstraint("tenant_id", "courier_id", "voucher", name="uq_shipments_tenant_courier_voucher"),
        Index("ix_shipments_status_updated", "status", "updated_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)
    # Normalised voucher as returned by the courier provider.
    voucher = Column(String, nullable=False)
    courier_id = Column(String(32), nullable=False, index=True)
    status = Column(
        Enum(
            ShipmentStatusEnum,
            name="shipment_status_enum",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default=ShipmentStatusEnum.PENDING,
    )
    status_message = Column(String, nullable=True)
    last_polled_at = Column(DateTime, nullable=True)
    actual_delivery_at = Column(DateTime, nullable=True)
    courier_response = Column(JSON_TYPE, nullable=True)

    order = relationship("Order", lazy="select")
    status_history = relationship(
        "ShipmentStatusHistory",
        back_populates="shipment",
        order_by="ShipmentStatusHistory.happened_at",
        lazy="select",
    )


class ShipmentStatusHistory(TenantOwnedMixin, Base):
    __tablename__ = "shipment_status_history"
    __table_args__ = (
        UniqueConstraint(
            "shipment_id",
            "happened_at",
            "status",
            name="uq_shipment_history_event",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    shipment_id = Column(Integer, ForeignKey("shipments.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(32), nullable=False)
    location = Column(String, nullable=True)
    description = Column(String, nullable=True)
    happened_at = Column(DateTime, nullable=False)

    shipment = relationship("Shipment", back_populates="status_history")
