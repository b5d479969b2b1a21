# Audit logs record security-sensitive platform events: super-admin
# tenant overrides, lookups of inactive tenants and every use of the
# tenant-scope escape hatch. Rows are append-only.

import logging
from sqlalchemy.orm import Session

from tracker.models.audit_logs import AuditLog

logger = logging.getLogger(__name__)


# Insert a new audit log entry and commit it straight away. The
# caller owns the session; DatabaseAuditSink opens a fresh one per event.
def create_audit_log(
    db: Session,
    event: str,
    *,
    tenant_id: str | None = None,
    actor_user_id: int | None = None,
    actor_email: str | None = None,
    client_ip: str | None = None,
    user_agent: str | None = None,
    details: dict | None = None,
) -> AuditLog:
    log = AuditLog(
        tenant_id=tenant_id,
        actor_user_id=actor_user_id,
        actor_email=actor_email,
        event=event,
        details=details or None,
        client_ip=client_ip,
        user_agent=user_agent,
    )
    db.add(log)
    db.commit()
    db.refresh(log)
    logger.debug(
        "audit.logged",
        extra={"event": event, "audit_tenant_id": tenant_id, "actor_user_id": actor_user_id},
    )
    return log


def get_audit_logs(
    db: Session,
    *,
    tenant_id: str | None = None,
    event: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[AuditLog]:
    query = db.query(AuditLog)
    if tenant_id is not None:
        query = query.filter(AuditLog.tenant_id == tenant_id)
    if event is not None:
        query = query.filter(AuditLog.event == event)
    return query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).offset(offset).limit(limit).all()
