"Tenancy utilities: resolution, request-scoped binding, and scoping helpers."

from .constants import TENANT_HEADER, TENANT_QUERY_PARAM  # noqa: F401
from .context import (  # noqa: F401
    RequestContext,
    bind_tenant,
    clear_tenant,
    get_current_tenant,
    require_current_tenant,
    tenant_scope,
    without_tenant_scope,
)
from .errors import (  # noqa: F401
    TenantInactive,
    TenantNotFound,
    TenantNotResolved,
    TenantScopeViolation,
)
from .records import TenantRecord  # noqa: F401
