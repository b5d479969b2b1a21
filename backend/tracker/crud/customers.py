from sqlalchemy.orm import Session

from tracker.models.customers import Customer
from tracker.tenancy.scoping import TenantScopedRepository


def normalize_email(value: str) -> str:
    return (value or "").strip().lower()


def get_customer_by_email(db: Session, tenant_id: str, email: str) -> Customer | None:
    repo = TenantScopedRepository(db, Customer, tenant_id)
    return repo.query().filter(Customer.email == normalize_email(email)).first()


def get_or_create_customer(
    db: Session,
    tenant_id: str,
    email: str,
    *,
    full_name: str | None = None,
    phone: str | None = None,
) -> Customer:
    """
    Find the tenant's customer by email, filling in missing details, or
    add a new one. Flushes but leaves the commit to the caller.
    """
    normalized = normalize_email(email)
    if not normalized:
        raise ValueError("Customer email is required.")
    customer = get_customer_by_email(db, tenant_id, normalized)
    if customer is None:
        customer = TenantScopedRepository(db, Customer, tenant_id).add(
            Customer(email=normalized, full_name=full_name, phone=phone)
        )
    else:
        if full_name and not customer.full_name:
            customer.full_name = full_name
        if phone and not customer.phone:
            customer.phone = phone
    db.flush()
    return customer
