"""
FastAPI dependency helpers for tenant resolution, binding and rate limits.
"""

from typing import AsyncIterator, Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from tracker.api.dependencies import get_current_principal, require_principal
from tracker.core.cache import get_cache_service
from tracker.core.config import settings
from tracker.core.db import get_db
from tracker.core.logging import bind_log_context
from tracker.core.security import Principal
from tracker.tenancy.audit import get_audit_sink
from tracker.tenancy.constants import TENANT_HEADER, TENANT_QUERY_PARAM
from tracker.tenancy.context import RequestContext, bind_tenant, clear_tenant, get_current_tenant_id
from tracker.tenancy.errors import TenantNotResolved
from tracker.tenancy.lookup import CachedTenantLookup, SqlTenantStore
from tracker.tenancy.rate_limit import (
    check_api_rate_limit,
    check_woocommerce_rate_limit,
    normalize_tenant_hint,
    rate_limit_headers,
)
from tracker.tenancy.resolver import (
    TenantResolution,
    TenantResolutionContext,
    TenantRequestSignals,
    TenantResolver,
)


def build_tenant_resolver(db: Session) -> TenantResolver:
    lookup = CachedTenantLookup(SqlTenantStore(session=db), get_cache_service())
    return TenantResolver(lookup, audit_sink=get_audit_sink())


def get_tenant_resolver(db: Session = Depends(get_db)) -> TenantResolver:
    return build_tenant_resolver(db)


def resolve_request_tenant(
    request: Request,
    principal: Optional[Principal] = Depends(get_current_principal),
    resolver: TenantResolver = Depends(get_tenant_resolver),
) -> TenantResolution:
    """
    Resolve once per request; later callers get the memoised result.
    """
    ctx = getattr(request.state, "tenant_resolution", None)
    if ctx is None:
        ctx = TenantResolutionContext(resolver, TenantRequestSignals.from_request(request, principal))
        request.state.tenant_resolution = ctx
    return ctx.get()


async def require_tenant(
    request: Request,
    principal: Principal = Depends(require_principal),
    resolution: TenantResolution = Depends(resolve_request_tenant),
) -> AsyncIterator[RequestContext]:
    """
    Fail closed without a tenant, otherwise bind it for the rest of the
    request. Must stay an async generator: the binding is made in the
    request's own context so the endpoint (and its threadpool) sees it.
    """
    if not resolution.resolved:
        raise TenantNotResolved("No active tenant for this request")
    # Only super admins act outside their home tenant.
    if not principal.is_super_admin and principal.tenant_id != resolution.tenant.id:
        raise TenantNotResolved("Tenant is not the caller's home tenant")
    bind_tenant(resolution.tenant)
    bind_log_context(user_id=principal.user_id)
    try:
        yield RequestContext(
            request_id=getattr(request.state, "request_id", ""),
            tenant=resolution.tenant,
            user_id=principal.user_id,
            email=principal.email,
            source=resolution.source,
        )
    finally:
        clear_tenant()


def _reject(decision) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail="Rate limit exceeded",
        headers=rate_limit_headers(decision),
    )


def enforce_api_rate_limit(
    request: Request,
    principal: Optional[Principal] = Depends(get_current_principal),
) -> None:
    ctx = getattr(request.state, "tenant_resolution", None)
    tenant_id = (ctx.tenant.id if ctx is not None and ctx.tenant else None) or get_current_tenant_id()
    decision = check_api_rate_limit(
        tenant_id=tenant_id,
        user_id=principal.user_id if principal else None,
        client_ip=getattr(request.state, "client_ip", None),
    )
    request.state.rate_limit = decision
    if not decision.allowed:
        raise _reject(decision)


def enforce_woocommerce_rate_limit(request: Request) -> None:
    header_name = settings.TENANT_HEADER_NAME or TENANT_HEADER
    query_name = settings.TENANT_QUERY_PARAM or TENANT_QUERY_PARAM
    tenant_hint = normalize_tenant_hint(
        request.headers.get(header_name),
        request.query_params.get(query_name),
        get_current_tenant_id(),
    )
    decision = check_woocommerce_rate_limit(
        tenant_hint=tenant_hint,
        client_ip=getattr(request.state, "client_ip", None),
    )
    request.state.rate_limit = decision
    if not decision.allowed:
        raise _reject(decision)
