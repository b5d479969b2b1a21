from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, JSON, String
from sqlalchemy.dialects.postgresql import JSONB

from tracker.core.db import Base
from tracker.models.mixins import TimestampMixin

JSON_TYPE = JSONB().with_variant(JSON, "sqlite")


def _new_tenant_id() -> str:
    return str(uuid4())


class Tenant(TimestampMixin, Base):
    __tablename__ = "tenants"

    id = Column(String(36), primary_key=True, default=_new_tenant_id)
    name = Column(String, nullable=False)
    # Always stored lower-cased; lookups compare against the normalised value.
    subdomain = Column(String(63), unique=True, nullable=False, index=True)
    primary_domain = Column(String(253), unique=True, nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    suspended_at = Column(DateTime, nullable=True)
    deleted_at = Column(DateTime, nullable=True)
    # Ordered courier ids overriding COURIER_PRIORITY for this tenant.
    courier_priority = Column(JSON_TYPE, nullable=True)
