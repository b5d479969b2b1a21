"""
Tenant resolution for inbound requests.

Precedence, first match wins:

1. super-admin override (`X-Tenant-ID` header or `tenant_id` query), UUID
   only, HTTPS-only in production;
2. tenant bound by the route (`{tenant}` path parameter or a record);
3. the Host header: exact primary domain, primary domain without `www.`,
   then the leftmost label as a subdomain (reserved names skipped);
4. the authenticated principal's home tenant.

Nothing else. An unresolved request stays unresolved; there is no
default tenant. Every step only ever returns usable (active, not
suspended, not deleted) tenants.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Optional, Union

from starlette.requests import HTTPConnection

from tracker.core.config import Settings, settings as default_settings
from tracker.core.ip import (
    extract_client_ip,
    extract_host,
    is_ip_literal,
    is_secure_request,
    normalize_host,
)
from tracker.core.metrics import record_tenant_resolution
from tracker.core.security import Principal
from tracker.core.time import utcnow
from tracker.tenancy.audit import (
    TENANT_INACTIVE_EVENT,
    TENANT_OVERRIDE_EVENT,
    AuditEvent,
    AuditSink,
    emit_audit_event,
)
from tracker.tenancy.constants import (
    SOURCE_OVERRIDE,
    SOURCE_PRIMARY_DOMAIN,
    SOURCE_ROUTE,
    SOURCE_SUBDOMAIN,
    SOURCE_USER,
    TENANT_HEADER,
    TENANT_QUERY_PARAM,
    is_canonical_tenant_id,
)
from tracker.tenancy.lookup import CachedTenantLookup
from tracker.tenancy.records import TenantRecord


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantRequestSignals:
    """Everything tenant resolution may look at, lifted off the request."""

    host: Optional[str] = None
    override_header: Optional[str] = None
    override_query: Optional[str] = None
    route_tenant: Union[TenantRecord, str, None] = None
    is_secure: bool = False
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    principal: Optional[Principal] = None

    @classmethod
    def from_request(
        cls,
        request: HTTPConnection,
        principal: Optional[Principal] = None,
        *,
        settings_obj: Settings | None = None,
    ) -> "TenantRequestSignals":
        cfg = settings_obj or default_settings
        header_name = cfg.TENANT_HEADER_NAME or TENANT_HEADER
        query_name = cfg.TENANT_QUERY_PARAM or TENANT_QUERY_PARAM
        route_tenant = getattr(request.state, "route_tenant", None) or request.path_params.get("tenant")
        return cls(
            host=extract_host(request),
            override_header=request.headers.get(header_name),
            override_query=request.query_params.get(query_name),
            route_tenant=route_tenant,
            is_secure=is_secure_request(request),
            client_ip=getattr(request.state, "client_ip", None) or extract_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
            principal=principal,
        )


@dataclass(frozen=True)
class TenantResolution:
    tenant: Optional[TenantRecord]
    source: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.tenant is not None


UNRESOLVED = TenantResolution(tenant=None, source=None)


class TenantResolver:
    def __init__(
        self,
        lookup: CachedTenantLookup,
        *,
        audit_sink: AuditSink | None = None,
        clock: Callable = utcnow,
        settings_obj: Settings | None = None,
    ) -> None:
        self.lookup = lookup
        self.audit_sink = audit_sink
        self.clock = clock
        self.settings = settings_obj or default_settings

    def resolve(self, signals: TenantRequestSignals) -> TenantResolution:
        for step in (
            self._from_override,
            self._from_route,
            self._from_host,
            self._from_principal,
        ):
            resolution = step(signals)
            if resolution is not None:
                record_tenant_resolution(resolution.source)
                logger.debug(
                    "tenant.resolved",
                    extra={"tenant_id": resolution.tenant.id, "source": resolution.source},
                )
                return resolution
        record_tenant_resolution(None)
        logger.debug("tenant.unresolved", extra={"host": signals.host})
        return UNRESOLVED

    # Step 1

    def override_requires_https(self) -> bool:
        return self.settings.is_production or self.settings.TENANCY_OVERRIDE_REQUIRE_HTTPS_ALWAYS

    def _from_override(self, signals: TenantRequestSignals) -> Optional[TenantResolution]:
        principal = signals.principal
        if principal is None or not principal.is_super_admin:
            return None
        if signals.override_header:
            raw, transport = signals.override_header, "header"
        elif signals.override_query:
            raw, transport = signals.override_query, "query"
        else:
            return None
        if not is_canonical_tenant_id(raw):
            logger.debug("tenant.override_ignored", extra={"reason": "format", "transport": transport})
            return None
        if self.override_requires_https() and not signals.is_secure:
            logger.warning(
                "tenant.override_ignored",
                extra={"reason": "insecure_transport", "actor_user_id": principal.user_id},
            )
            return None

        tenant_id = raw.lower()
        tenant = self.lookup.store.find_active("id", tenant_id)
        if tenant is None or not tenant.is_usable():
            self._audit_inactive("id", tenant_id, signals, SOURCE_OVERRIDE)
            return None

        self._audit_override(tenant, signals, transport)
        return TenantResolution(tenant=tenant, source=SOURCE_OVERRIDE)

    def _audit_override(self, tenant: TenantRecord, signals: TenantRequestSignals, transport: str) -> None:
        principal = signals.principal
        logger.info(
            TENANT_OVERRIDE_EVENT,
            extra={
                "actor_user_id": principal.user_id,
                "actor_email": principal.email,
                "target_tenant_id": tenant.id,
                "target_tenant_name": tenant.name,
                "client_ip": signals.client_ip,
                "override_source": transport,
            },
        )
        emit_audit_event(
            AuditEvent(
                event=TENANT_OVERRIDE_EVENT,
                tenant_id=tenant.id,
                actor_user_id=principal.user_id,
                actor_email=principal.email,
                client_ip=signals.client_ip,
                user_agent=signals.user_agent,
                details={
                    "target_tenant_name": tenant.name,
                    "override_source": transport,
                    "at": self.clock().isoformat(),
                },
            ),
            self.audit_sink,
        )

    def _audit_inactive(self, field: str, value: str, signals: TenantRequestSignals, source: str) -> None:
        # Explicitly addressed but unusable: same outcome as not found,
        # only the audit trail tells the two apart.
        try:
            existing = self.lookup.store.find_any(field, value)
        except Exception:
            logger.warning("tenant.inactive_check_failed", exc_info=True)
            return
        if existing is None or existing.is_usable():
            return
        principal = signals.principal
        emit_audit_event(
            AuditEvent(
                event=TENANT_INACTIVE_EVENT,
                tenant_id=existing.id,
                actor_user_id=principal.user_id if principal else None,
                actor_email=principal.email if principal else None,
                client_ip=signals.client_ip,
                user_agent=signals.user_agent,
                details={"source": source, "field": field},
            ),
            self.audit_sink,
        )

    # Step 2

    def _from_route(self, signals: TenantRequestSignals) -> Optional[TenantResolution]:
        param = signals.route_tenant
        if param is None:
            return None
        if isinstance(param, TenantRecord):
            if param.is_usable():
                return TenantResolution(tenant=param, source=SOURCE_ROUTE)
            self._audit_inactive("id", param.id, signals, SOURCE_ROUTE)
            return None

        value = str(param).strip()
        if not value:
            return None
        if is_canonical_tenant_id(value):
            field, value = "id", value.lower()
        else:
            field, value = "subdomain", value.lower()
        tenant = self.lookup.find(field, value)
        if tenant is None:
            if field == "id":
                self._audit_inactive(field, value, signals, SOURCE_ROUTE)
            return None
        return TenantResolution(tenant=tenant, source=SOURCE_ROUTE)

    # Step 3

    def is_reserved_subdomain(self, label: str) -> bool:
        reserved = {name.lower() for name in self.settings.TENANCY_RESERVED_SUBDOMAINS}
        return label.lower() in reserved

    def _subdomain_label(self, host: str) -> Optional[str]:
        base = self.settings.TENANCY_BASE_DOMAIN
        if base:
            if host == base or not host.endswith("." + base):
                return None
        label = host.split(".", 1)[0]
        return label or None

    def _from_host(self, signals: TenantRequestSignals) -> Optional[TenantResolution]:
        host = normalize_host(signals.host)
        if not host or is_ip_literal(host):
            return None

        tenant = self.lookup.find("primary_domain", host)
        if tenant is not None:
            return TenantResolution(tenant=tenant, source=SOURCE_PRIMARY_DOMAIN)
        if host.startswith("www."):
            tenant = self.lookup.find("primary_domain", host[4:])
            if tenant is not None:
                return TenantResolution(tenant=tenant, source=SOURCE_PRIMARY_DOMAIN)

        label = self._subdomain_label(host)
        if not label or self.is_reserved_subdomain(label):
            return None
        tenant = self.lookup.find("subdomain", label)
        if tenant is not None:
            return TenantResolution(tenant=tenant, source=SOURCE_SUBDOMAIN)
        return None

    # Step 4

    def _from_principal(self, signals: TenantRequestSignals) -> Optional[TenantResolution]:
        principal = signals.principal
        if principal is None or not principal.tenant_id:
            return None
        tenant = self.lookup.find("id", str(principal.tenant_id))
        if tenant is None:
            return None
        return TenantResolution(tenant=tenant, source=SOURCE_USER)


class TenantResolutionContext:
    """
    Per-request memo: the first `get()` resolves, every later call (from
    any dependency, middleware or thread) reuses that result, including
    an unresolved one.
    """

    def __init__(self, resolver: TenantResolver, signals: TenantRequestSignals) -> None:
        self.resolver = resolver
        self.signals = signals
        self._result: Optional[TenantResolution] = None
        self._lock = Lock()

    @property
    def is_resolved(self) -> bool:
        return self._result is not None

    @property
    def tenant(self) -> Optional[TenantRecord]:
        return self._result.tenant if self._result is not None else None

    def get(self) -> TenantResolution:
        if self._result is not None:
            return self._result
        with self._lock:
            if self._result is None:
                self._result = self.resolver.resolve(self.signals)
        return self._result
