from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tracker.couriers.base import TrackingStatus
from tracker.models.enums import TERMINAL_SHIPMENT_STATUSES, ShipmentStatusEnum
from tracker.models.shipments import Shipment, ShipmentStatusHistory
from tracker.tenancy.scoping import TenantScopedRepository, scoped_query


def _normalize_status(status: ShipmentStatusEnum | str) -> ShipmentStatusEnum:
    if isinstance(status, ShipmentStatusEnum):
        return status
    try:
        return ShipmentStatusEnum(status)
    except ValueError as exc:
        raise ValueError("Invalid shipment status.") from exc


def create_shipment(
    db: Session,
    tenant_id: str,
    *,
    voucher: str,
    courier_id: str,
    order_id: int | None = None,
) -> Shipment:
    repo = TenantScopedRepository(db, Shipment, tenant_id)
    existing = get_shipment_by_voucher(db, tenant_id, courier_id, voucher)
    if existing:
        raise ValueError("Shipment already exists for this voucher.")
    shipment = repo.add(
        Shipment(
            voucher=voucher,
            courier_id=courier_id,
            order_id=order_id,
            status=ShipmentStatusEnum.PENDING,
        )
    )
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ValueError("Shipment already exists for this voucher.") from exc
    db.refresh(shipment)
    return shipment


def get_shipment(db: Session, tenant_id: str, shipment_id: int) -> Shipment:
    return TenantScopedRepository(db, Shipment, tenant_id).get_or_404(shipment_id)


def get_shipment_by_voucher(
    db: Session,
    tenant_id: str,
    courier_id: str,
    voucher: str,
) -> Shipment | None:
    return (
        scoped_query(db, Shipment, tenant_id)
        .filter(Shipment.courier_id == courier_id, Shipment.voucher == voucher)
        .first()
    )


def list_shipments(
    db: Session,
    tenant_id: str,
    *,
    status: ShipmentStatusEnum | str | None = None,
    courier_id: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Shipment]:
    query = scoped_query(db, Shipment, tenant_id)
    if status is not None:
        query = query.filter(Shipment.status == _normalize_status(status))
    if courier_id:
        query = query.filter(Shipment.courier_id == courier_id)
    return query.order_by(Shipment.id.desc()).offset(offset).limit(limit).all()


def list_pollable_shipments(
    db: Session,
    *,
    now: datetime,
    lookback_days: int,
    limit: int,
) -> list[Shipment]:
    """
    Non-terminal shipments touched within the lookback window, across all
    tenants. Callers must be inside `without_tenant_scope`.
    """
    since = now - timedelta(days=lookback_days)
    return (
        db.query(Shipment)
        .filter(
            Shipment.status.notin_(list(TERMINAL_SHIPMENT_STATUSES)),
            Shipment.updated_at >= since,
        )
        .order_by(Shipment.last_polled_at.is_(None).desc(), Shipment.last_polled_at, Shipment.id)
        .limit(limit)
        .all()
    )


def apply_tracking_status(
    db: Session,
    shipment: Shipment,
    tracking: TrackingStatus,
    *,
    polled_at: datetime,
) -> list[ShipmentStatusHistory]:
    """
    Copy a courier's answer onto the shipment and append events not seen
    before. Flushes; the caller owns the transaction.
    """
    seen = {
        (row.happened_at, row.status)
        for row in db.query(ShipmentStatusHistory).filter(
            ShipmentStatusHistory.shipment_id == shipment.id
        )
    }
    added = []
    for event in tracking.events:
        key = (event.happened_at, event.status)
        if key in seen:
            continue
        seen.add(key)
        row = ShipmentStatusHistory(
            tenant_id=shipment.tenant_id,
            shipment_id=shipment.id,
            status=event.status,
            location=event.location,
            description=event.description or event.action or None,
            happened_at=event.happened_at,
        )
        db.add(row)
        added.append(row)

    status = _normalize_status(tracking.status)
    shipment.status = status
    shipment.status_message = tracking.message
    shipment.courier_response = tracking.raw
    shipment.last_polled_at = polled_at
    if status == ShipmentStatusEnum.DELIVERED and shipment.actual_delivery_at is None:
        delivered = [e.happened_at for e in tracking.events if e.status == ShipmentStatusEnum.DELIVERED.value]
        shipment.actual_delivery_at = max(delivered) if delivered else polled_at
    db.flush()
    return added
