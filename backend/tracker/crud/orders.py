from sqlalchemy.orm import Session

from tracker.models.enums import OrderSourceEnum
from tracker.models.orders import Order
from tracker.tenancy.scoping import TenantScopedRepository


def _normalize_source(source: OrderSourceEnum | str) -> OrderSourceEnum:
    if isinstance(source, OrderSourceEnum):
        return source
    try:
        return OrderSourceEnum(source)
    except ValueError as exc:
        raise ValueError("Invalid order source.") from exc


def get_order(db: Session, tenant_id: str, order_id: int) -> Order:
    return TenantScopedRepository(db, Order, tenant_id).get_or_404(order_id)


def get_order_by_external_id(
    db: Session,
    tenant_id: str,
    source: OrderSourceEnum | str,
    external_id: str,
) -> Order | None:
    repo = TenantScopedRepository(db, Order, tenant_id)
    return (
        repo.query()
        .filter(Order.source == _normalize_source(source), Order.external_id == str(external_id))
        .first()
    )


def upsert_order(
    db: Session,
    tenant_id: str,
    *,
    source: OrderSourceEnum | str = OrderSourceEnum.MANUAL,
    external_id: str | None = None,
    order_number: str | None = None,
    billing_phone: str | None = None,
    shipping_phone: str | None = None,
    meta: dict | None = None,
    notes: str | None = None,
    customer_id: int | None = None,
) -> Order:
    """
    Create the order, or refresh it when the same upstream order
    (source + external id) arrives again. Flushes; the caller commits.
    """
    source = _normalize_source(source)
    order = None
    if external_id is not None:
        order = get_order_by_external_id(db, tenant_id, source, external_id)
    if order is None:
        order = TenantScopedRepository(db, Order, tenant_id).add(
            Order(source=source, external_id=str(external_id) if external_id is not None else None)
        )
    order.order_number = order_number or order.order_number
    order.billing_phone = billing_phone or order.billing_phone
    order.shipping_phone = shipping_phone or order.shipping_phone
    if meta is not None:
        order.meta = dict(meta)
    if notes is not None:
        order.notes = notes
    if customer_id is not None:
        order.customer_id = customer_id
    db.flush()
    return order
