from .audit import create_audit_log, get_audit_logs
from .customers import get_or_create_customer
from .orders import get_order, upsert_order
from .shipments import (
    apply_tracking_status,
    create_shipment,
    get_shipment,
    list_pollable_shipments,
    list_shipments,
)
from .tenants import (
    create_tenant,
    deactivate_tenant,
    get_tenant_by_id,
    get_tenant_by_subdomain,
    reactivate_tenant,
    suspend_tenant,
)
