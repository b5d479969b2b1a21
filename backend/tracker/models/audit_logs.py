from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, JSON, String
from sqlalchemy.dialects.postgresql import JSONB

from tracker.core.db import Base
from tracker.core.time import utcnow

JSON_TYPE = JSONB().with_variant(JSON, "sqlite")


class AuditLog(Base):
    # Platform-level, append-only. Not tenant-owned: override and
    # scope-bypass events have to be recorded across tenants.
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_tenant_time", "tenant_id", "timestamp"),
        Index("ix_audit_event_time", "event", "timestamp"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="SET NULL"), nullable=True)
    actor_user_id = Column(Integer, nullable=True)
    actor_email = Column(String, nullable=True)
    event = Column(String, nullable=False)
    details = Column(JSON_TYPE, nullable=True)
    client_ip = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    timestamp = Column(DateTime, default=utcnow, nullable=False)
