from .tenants import Tenant
from .users import User
from .customers import Customer
from .orders import Order
from .shipments import Shipment, ShipmentStatusHistory
from .audit_logs import AuditLog

# Installed once the tenant-owned mappers are importable.
from tracker.tenancy.scoping import install_tenant_scope

install_tenant_scope()
