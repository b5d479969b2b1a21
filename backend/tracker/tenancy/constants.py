"""
Constants for tenancy concerns.
"""

import re

# Header and query parameter carrying a super-admin tenant override.
TENANT_HEADER = "X-Tenant-ID"
TENANT_QUERY_PARAM = "tenant_id"

# Tenant ids are lower- or upper-case hyphenated UUIDs; nothing else is
# accepted as an override value.
TENANT_ID_PATTERN = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}",
    re.IGNORECASE,
)

SUBDOMAIN_PATTERN = re.compile(r"[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?")

# Fields a tenant can be looked up by.
LOOKUP_FIELDS = ("id", "subdomain", "primary_domain")

TENANT_CACHE_NAME = "tenant_lookup"

# Resolution sources, also used as metric label values.
SOURCE_OVERRIDE = "override"
SOURCE_ROUTE = "route"
SOURCE_PRIMARY_DOMAIN = "primary_domain"
SOURCE_SUBDOMAIN = "subdomain"
SOURCE_USER = "user"

# Payload returned when a tenant-scoped endpoint has no usable tenant.
INVALID_TENANT_PAYLOAD = {
    "error": "InvalidTenant",
    "code": "TENANT_NOT_FOUND_OR_INACTIVE",
    "message": "Tenant not found or inactive.",
}


def is_canonical_tenant_id(value) -> bool:
    if not isinstance(value, str):
        return False
    return TENANT_ID_PATTERN.fullmatch(value) is not None
