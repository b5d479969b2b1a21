from fastapi import APIRouter, Depends

from tracker.couriers.base import OrderContext
from tracker.couriers.registry import get_courier_registry
from tracker.couriers.resolver import VoucherResolver
from tracker.schemas.couriers import CourierRead, VoucherResolveRequest, VoucherResolveResponse
from tracker.tenancy.context import RequestContext
from tracker.tenancy.dependencies import enforce_api_rate_limit, require_tenant


router = APIRouter(tags=["couriers"])


def get_voucher_resolver() -> VoucherResolver:
    return VoucherResolver(get_courier_registry())


@router.get("/couriers", response_model=list[CourierRead])
def list_couriers(
    ctx: RequestContext = Depends(require_tenant),
    _limit=Depends(enforce_api_rate_limit),
    resolver: VoucherResolver = Depends(get_voucher_resolver),
):
    # In the order this tenant's vouchers are matched.
    providers = [resolver.registry.get(cid) for cid in resolver.priority_for(ctx.tenant.courier_priority)]
    return [
        CourierRead(id=p.id, label=p.label, tracking_configured=p.tracking_configured)
        for p in providers
    ]


@router.post("/vouchers/resolve", response_model=VoucherResolveResponse)
def resolve_voucher(
    payload: VoucherResolveRequest,
    ctx: RequestContext = Depends(require_tenant),
    _limit=Depends(enforce_api_rate_limit),
    resolver: VoucherResolver = Depends(get_voucher_resolver),
):
    order = OrderContext(**payload.order.model_dump()) if payload.order else None
    result = resolver.resolve(
        payload.voucher,
        order,
        claimed=payload.claimed_courier,
        priority=ctx.tenant.courier_priority,
    )
    api_payload = None
    if result.valid:
        api_payload = resolver.build_payload(result, {"tenant_id": ctx.tenant_id})
    return VoucherResolveResponse(
        courier_id=result.provider_id,
        voucher=result.normalized_voucher,
        valid=result.valid,
        reason=result.reason,
        matched_by=result.matched_by,
        api_payload=api_payload,
    )
