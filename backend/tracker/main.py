# This file bootstraps the FastAPI app: middlewares for request context,
# logging and rate-limit headers, the error mapping for tenancy and
# voucher failures, and the versioned routers.

import os

from fastapi import APIRouter, FastAPI, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from tracker.core.config import settings
from tracker.core.db import Base, SessionLocal, engine
from tracker.core.logging import APILoggingMiddleware, configure_logging
from tracker.couriers.errors import VoucherFormatUnrecognized, VoucherRejected
from tracker.tenancy.audit import DatabaseAuditSink, configure_audit_sink
from tracker.tenancy.constants import INVALID_TENANT_PAYLOAD
from tracker.tenancy.errors import (
    TenantInactive,
    TenantNotFound,
    TenantNotResolved,
    TenantScopeViolation,
)
from tracker.tenancy.middleware import RateLimitHeadersMiddleware, RequestContextMiddleware

import tracker.models  # noqa: F401  registers models and the tenant scope hooks
from tracker.api.couriers import router as couriers_router
from tracker.api.shipments import router as shipments_router
from tracker.api.tenants import router as tenant_router
from tracker.api.woocommerce import router as woocommerce_router


API_V1_PREFIX = "/api/v1"

configure_logging(settings.LOG_LEVEL)
configure_audit_sink(DatabaseAuditSink(SessionLocal))

if os.getenv("SKIP_MIGRATIONS") != "1":
    Base.metadata.create_all(bind=engine)

app = FastAPI(title="eshop-tracker")


@app.exception_handler(TenantNotResolved)
@app.exception_handler(TenantInactive)
def handle_invalid_tenant(_request, _exc):
    # Unknown, inactive and missing tenants are indistinguishable to callers.
    return JSONResponse(status_code=403, content=dict(INVALID_TENANT_PAYLOAD))


@app.exception_handler(TenantScopeViolation)
def handle_scope_violation(_request, _exc):
    return JSONResponse(status_code=403, content={"detail": "Resource belongs to a different tenant"})


@app.exception_handler(TenantNotFound)
def handle_not_found(_request, _exc):
    return JSONResponse(status_code=404, content={"detail": "Not found"})


@app.exception_handler(VoucherFormatUnrecognized)
def handle_unrecognized_voucher(_request, exc: VoucherFormatUnrecognized):
    return JSONResponse(
        status_code=422,
        content={"detail": str(exc), "code": "VOUCHER_UNRECOGNIZED"},
    )


@app.exception_handler(VoucherRejected)
def handle_rejected_voucher(_request, exc: VoucherRejected):
    return JSONResponse(
        status_code=422,
        content={"detail": exc.reason, "code": "VOUCHER_REJECTED", "courier_id": exc.provider_id},
    )


app.add_middleware(APILoggingMiddleware)
app.add_middleware(RateLimitHeadersMiddleware)

api_v1 = APIRouter(prefix=API_V1_PREFIX)
# Same routes with the tenant named in the path, e.g. /api/v1/t/acme/shipments.
api_v1_tenant = APIRouter(prefix=f"{API_V1_PREFIX}/t/{{tenant}}")

for r in (tenant_router, couriers_router, shipments_router, woocommerce_router):
    api_v1.include_router(r)
for r in (tenant_router, shipments_router):
    api_v1_tenant.include_router(r)

app.include_router(api_v1)
app.include_router(api_v1_tenant)

# Attach request_id and client_ip early.
app.add_middleware(RequestContextMiddleware)


@app.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/health")
@app.get(f"{API_V1_PREFIX}/health")
def health():
    return {"status": "ok"}


def serve(host: str = "0.0.0.0", port: int = 8000) -> None:
    """Run the API under uvicorn; the `tracker-api` console script."""
    import uvicorn

    uvicorn.run("tracker.main:app", host=host, port=port, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    serve()
