from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from tracker.api.couriers import get_voucher_resolver
from tracker.core.db import get_db
from tracker.couriers.base import OrderContext
from tracker.couriers.resolver import VoucherResolver
from tracker.crud.audit import create_audit_log
from tracker.crud.orders import get_order
from tracker.crud.shipments import create_shipment, get_shipment, list_shipments
from tracker.models.enums import ShipmentStatusEnum
from tracker.schemas.shipments import ShipmentCreate, ShipmentDetailRead, ShipmentRead
from tracker.tenancy.context import RequestContext
from tracker.tenancy.dependencies import enforce_api_rate_limit, require_tenant


router = APIRouter(tags=["shipments"])


@router.get("/shipments", response_model=list[ShipmentRead])
def list_shipments_endpoint(
    status_filter: Optional[ShipmentStatusEnum] = Query(default=None, alias="status"),
    courier_id: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_tenant),
    _limit=Depends(enforce_api_rate_limit),
):
    shipments = list_shipments(
        db,
        ctx.tenant_id,
        status=status_filter,
        courier_id=courier_id,
        limit=limit,
        offset=offset,
    )
    return [ShipmentRead.model_validate(item) for item in shipments]


@router.post("/shipments", response_model=ShipmentRead, status_code=status.HTTP_201_CREATED)
def create_shipment_endpoint(
    payload: ShipmentCreate,
    request: Request,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_tenant),
    _limit=Depends(enforce_api_rate_limit),
    resolver: VoucherResolver = Depends(get_voucher_resolver),
):
    order = get_order(db, ctx.tenant_id, payload.order_id) if payload.order_id is not None else None
    result = resolver.resolve(
        payload.voucher,
        OrderContext.from_order(order) if order is not None else None,
        claimed=payload.courier_id,
        priority=ctx.tenant.courier_priority,
    ).raise_for_rejection()
    try:
        shipment = create_shipment(
            db,
            ctx.tenant_id,
            voucher=result.normalized_voucher,
            courier_id=result.provider_id,
            order_id=order.id if order is not None else None,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    create_audit_log(
        db,
        "shipment.created",
        tenant_id=ctx.tenant_id,
        actor_user_id=ctx.user_id,
        actor_email=ctx.email,
        client_ip=getattr(request.state, "client_ip", None),
        user_agent=request.headers.get("User-Agent"),
        details={"shipment_id": shipment.id, "courier_id": shipment.courier_id},
    )
    return ShipmentRead.model_validate(shipment)


@router.get("/shipments/{shipment_id}", response_model=ShipmentDetailRead)
def read_shipment(
    shipment_id: int,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_tenant),
    _limit=Depends(enforce_api_rate_limit),
):
    return ShipmentDetailRead.model_validate(get_shipment(db, ctx.tenant_id, shipment_id))
