"""
WooCommerce order ingestion.

The store plugin posts each order as WooCommerce serialises it. Vouchers
are read from order meta; a courier-specific meta key is taken as the
courier's claim, generic keys ("tracking_number", ...) fall back to
format detection.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from tracker.api.couriers import get_voucher_resolver
from tracker.core.db import get_db
from tracker.couriers.base import OrderContext
from tracker.couriers.mapping import extract_meta_vouchers
from tracker.couriers.resolver import VoucherResolver
from tracker.crud.customers import get_or_create_customer
from tracker.crud.orders import upsert_order
from tracker.crud.shipments import create_shipment, get_shipment_by_voucher
from tracker.models.enums import OrderSourceEnum
from tracker.schemas.shipments import ShipmentRead
from tracker.schemas.woocommerce import RejectedVoucher, WooOrderIn, WooOrderResult
from tracker.tenancy.context import RequestContext
from tracker.tenancy.dependencies import enforce_woocommerce_rate_limit, require_tenant


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/woocommerce", tags=["woocommerce"])


def _full_name(address) -> str | None:
    name = " ".join(part for part in (address.first_name, address.last_name) if part)
    return name or None


@router.post("/orders", response_model=WooOrderResult)
def ingest_order(
    payload: WooOrderIn,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_tenant),
    _limit=Depends(enforce_woocommerce_rate_limit),
    resolver: VoucherResolver = Depends(get_voucher_resolver),
):
    customer_id = None
    if payload.billing.email:
        customer = get_or_create_customer(
            db,
            ctx.tenant_id,
            payload.billing.email,
            full_name=_full_name(payload.billing),
            phone=payload.billing.phone,
        )
        customer_id = customer.id
    meta = payload.meta_dict()
    order = upsert_order(
        db,
        ctx.tenant_id,
        source=OrderSourceEnum.WOOCOMMERCE,
        external_id=str(payload.id),
        order_number=payload.number,
        billing_phone=payload.billing.phone,
        shipping_phone=payload.shipping.phone,
        meta=meta,
        notes=payload.customer_note,
        customer_id=customer_id,
    )
    db.commit()

    order_context = OrderContext.from_order(order)
    candidates = extract_meta_vouchers(meta)
    # Courier-specific keys first so they win over generic ones.
    candidates.sort(key=lambda item: item[1] == "generic")

    shipments, rejected, seen = [], [], set()
    for meta_key, courier_id, voucher in candidates:
        result = resolver.resolve(
            voucher,
            order_context,
            claimed=meta_key if courier_id != "generic" else None,
            priority=ctx.tenant.courier_priority,
        )
        if not result.valid:
            rejected.append(
                RejectedVoucher(meta_key=meta_key, courier_id=result.provider_id, reason=result.reason)
            )
            continue
        key = (result.provider_id, result.normalized_voucher)
        if key in seen:
            continue
        seen.add(key)
        shipment = get_shipment_by_voucher(db, ctx.tenant_id, *key)
        if shipment is None:
            shipment = create_shipment(
                db,
                ctx.tenant_id,
                voucher=result.normalized_voucher,
                courier_id=result.provider_id,
                order_id=order.id,
            )
        shipments.append(ShipmentRead.model_validate(shipment))

    logger.info(
        "woocommerce.order_ingested",
        extra={"order_id": order.id, "shipments": len(shipments), "rejected": len(rejected)},
    )
    return WooOrderResult(order_id=order.id, shipments=shipments, rejected=rejected)
