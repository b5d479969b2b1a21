from sqlalchemy import Column, Integer, String, UniqueConstraint

from tracker.core.db import Base
from tracker.models.mixins import TenantOwnedMixin, TimestampMixin


class Customer(TenantOwnedMixin, TimestampMixin, Base):
    __tablename__ = "customers"
    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_customers_tenant_email"),
    )

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, nullable=False)
    full_name = Column(String, nullable=True)
    phone = Column(String, nullable=True)
