from sqlalchemy import Column, Enum, ForeignKey, Index, Integer, JSON, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from tracker.core.db import Base
from tracker.models.enums import OrderSourceEnum
from tracker.models.mixins import TenantOwnedMixin, TimestampMixin

JSON_TYPE = JSONB().with_variant(JSON, "sqlite")


class Order(TenantOwnedMixin, TimestampMixin, Base):
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("tenant_id", "source", "external_id", name="uq_orders_tenant_source_external"),
        Index("ix_orders_tenant_order_number", "tenant_id", "order_number"),
    )

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id", ondelete="SET NULL"), nullable=True)
    source = Column(
        Enum(
            OrderSourceEnum,
            name="order_source_enum",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default=OrderSourceEnum.MANUAL,
    )
    external_id = Column(String, nullable=True)
    order_number = Column(String, nullable=True)
    billing_phone = Column(String, nullable=True)
    shipping_phone = Column(String, nullable=True)
    meta = Column(JSON_TYPE, nullable=True)
    notes = Column(String, nullable=True)

    customer = relationship("Customer", lazy="select")
