from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tracker.core.cache import CacheService
from tracker.core.config import settings
from tracker.core.time import utcnow
from tracker.models.shipments import Shipment
from tracker.models.tenants import Tenant
from tracker.tenancy.constants import LOOKUP_FIELDS, SUBDOMAIN_PATTERN
from tracker.tenancy.context import without_tenant_scope
from tracker.tenancy.lookup import invalidate_tenant_cache
from tracker.tenancy.records import TenantRecord


def normalize_subdomain(value: str) -> str:
    return (value or "").strip().lower()


def normalize_domain(value: str | None) -> str | None:
    if value is None:
        return None
    domain = value.strip().lower().rstrip(".")
    return domain or None


def validate_subdomain(value: str) -> str:
    subdomain = normalize_subdomain(value)
    if not SUBDOMAIN_PATTERN.fullmatch(subdomain):
        raise ValueError("Subdomain must be 1-63 lowercase letters, digits or hyphens.")
    reserved = {name.lower() for name in settings.TENANCY_RESERVED_SUBDOMAINS}
    if subdomain in reserved:
        raise ValueError(f"Subdomain '{subdomain}' is reserved.")
    return subdomain


def create_tenant(
    db: Session,
    name: str,
    subdomain: str,
    *,
    primary_domain: str | None = None,
    courier_priority: list[str] | None = None,
    is_active: bool = True,
) -> Tenant:
    tenant = Tenant(
        name=name,
        subdomain=validate_subdomain(subdomain),
        primary_domain=normalize_domain(primary_domain),
        courier_priority=list(courier_priority) if courier_priority else None,
        is_active=is_active,
    )
    db.add(tenant)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ValueError("Tenant subdomain or primary domain already exists.") from exc
    db.refresh(tenant)
    return tenant


def get_tenant_by_id(db: Session, tenant_id: str) -> Tenant | None:
    return db.query(Tenant).filter(Tenant.id == tenant_id).first()


def get_tenant_by_subdomain(db: Session, subdomain: str) -> Tenant | None:
    return db.query(Tenant).filter(Tenant.subdomain == normalize_subdomain(subdomain)).first()


def active_tenants(db: Session):
    return db.query(Tenant).filter(
        Tenant.is_active.is_(True),
        Tenant.suspended_at.is_(None),
        Tenant.deleted_at.is_(None),
    )


# Lookup used by tenant resolution. Inactive, suspended and deleted
# tenants never come back from here, even when addressed by id.
def get_active_tenant_by_field(db: Session, field: str, value: str) -> Tenant | None:
    if field not in LOOKUP_FIELDS:
        raise ValueError(f"Unsupported tenant lookup field: {field}")
    column = getattr(Tenant, field)
    return active_tenants(db).filter(column == value).first()


def _mutate(db: Session, tenant: Tenant, cache: CacheService | None, **changes) -> Tenant:
    before = TenantRecord.from_model(tenant)
    for key, value in changes.items():
        setattr(tenant, key, value)
    db.commit()
    db.refresh(tenant)
    invalidate_tenant_cache(before, cache=cache)
    invalidate_tenant_cache(TenantRecord.from_model(tenant), cache=cache)
    return tenant


def update_tenant_domains(
    db: Session,
    tenant: Tenant,
    *,
    subdomain: str | None = None,
    primary_domain: str | None = None,
    cache: CacheService | None = None,
) -> Tenant:
    changes = {}
    if subdomain is not None:
        changes["subdomain"] = validate_subdomain(subdomain)
    if primary_domain is not None:
        changes["primary_domain"] = normalize_domain(primary_domain)
    try:
        return _mutate(db, tenant, cache, **changes)
    except IntegrityError as exc:
        db.rollback()
        raise ValueError("Tenant subdomain or primary domain already exists.") from exc


def set_courier_priority(
    db: Session,
    tenant: Tenant,
    priority: list[str] | None,
    *,
    cache: CacheService | None = None,
) -> Tenant:
    cleaned = [str(item).strip().lower() for item in (priority or []) if str(item).strip()]
    return _mutate(db, tenant, cache, courier_priority=cleaned or None)


def deactivate_tenant(db: Session, tenant: Tenant, *, cache: CacheService | None = None) -> Tenant:
    return _mutate(db, tenant, cache, is_active=False)


def suspend_tenant(db: Session, tenant: Tenant, *, cache: CacheService | None = None) -> Tenant:
    return _mutate(db, tenant, cache, suspended_at=utcnow())


def reactivate_tenant(db: Session, tenant: Tenant, *, cache: CacheService | None = None) -> Tenant:
    if tenant.deleted_at is not None:
        raise ValueError("Deleted tenants cannot be reactivated.")
    return _mutate(db, tenant, cache, is_active=True, suspended_at=None)


def count_tenant_shipments(db: Session, tenant_id: str, *, actor: str | None = None) -> int:
    with without_tenant_scope("count shipments referencing a tenant", actor=actor):
        return (
            db.query(func.count(Shipment.id))
            .filter(Shipment.tenant_id == tenant_id)
            .scalar()
        ) or 0


def soft_delete_tenant(
    db: Session,
    tenant: Tenant,
    *,
    actor: str | None = None,
    cache: CacheService | None = None,
) -> Tenant:
    if count_tenant_shipments(db, tenant.id, actor=actor):
        raise ValueError("Tenant still has shipments and cannot be deleted.")
    return _mutate(db, tenant, cache, is_active=False, deleted_at=utcnow())
