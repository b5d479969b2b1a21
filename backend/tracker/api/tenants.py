from fastapi import APIRouter, Depends

from tracker.core.time import utcnow
from tracker.schemas.tenants import TenantContextRead, TenantRead
from tracker.tenancy.context import RequestContext
from tracker.tenancy.dependencies import enforce_api_rate_limit, require_tenant
from tracker.tenancy.records import TenantRecord


router = APIRouter(tags=["tenant"])


def tenant_read(tenant: TenantRecord) -> TenantRead:
    return TenantRead(
        id=tenant.id,
        name=tenant.name,
        subdomain=tenant.subdomain,
        primary_domain=tenant.primary_domain,
        courier_priority=list(tenant.courier_priority or ()),
    )


@router.get("/tenant", response_model=TenantContextRead)
def read_current_tenant(
    ctx: RequestContext = Depends(require_tenant),
    _limit=Depends(enforce_api_rate_limit),
):
    return TenantContextRead(
        tenant=tenant_read(ctx.tenant),
        source=ctx.source,
        request_id=ctx.request_id,
        resolved_at=utcnow(),
    )
