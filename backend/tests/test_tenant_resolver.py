import os
from datetime import datetime
from uuid import uuid4

import pytest
from starlette.requests import Request

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "secret")

from tracker.core.cache import CacheService, InMemoryCache
from tracker.core.config import Settings
from tracker.core.security import Principal
from tracker.tenancy.audit import TENANT_INACTIVE_EVENT, TENANT_OVERRIDE_EVENT, MemoryAuditSink
from tracker.tenancy.lookup import CachedTenantLookup
from tracker.tenancy.records import TenantRecord
from tracker.tenancy.resolver import (
    TenantRequestSignals,
    TenantResolutionContext,
    TenantResolver,
)


class FakeStore:
    """In-memory TenantStore that counts lookups."""

    def __init__(self, *tenants):
        self.tenants = list(tenants)
        self.calls = []

    def _match(self, field, value):
        for tenant in self.tenants:
            if getattr(tenant, field) == value:
                return tenant
        return None

    def find_active(self, field, value):
        self.calls.append((field, value))
        tenant = self._match(field, value)
        return tenant if tenant is not None and tenant.is_usable() else None

    def find_any(self, field, value):
        return self._match(field, value)


def _tenant(subdomain, **fields):
    return TenantRecord(id=str(uuid4()), name=subdomain.title(), subdomain=subdomain, **fields)


def _settings(**overrides):
    values = {"DATABASE_URL": "sqlite://", "SECRET_KEY": "secret", **overrides}
    return Settings(**values)


ACME = _tenant("acme", primary_domain="shop.example.com")
GLOBEX = _tenant("globex")
DORMANT = _tenant("dormant", is_active=False)
SUSPENDED = _tenant("paused", suspended_at=datetime(2024, 1, 1))
RESERVED = _tenant("admin")

ADMIN = Principal(user_id=1, email="ops@example.com", is_super_admin=True)
ACME_USER = Principal(user_id=2, email="jo@acme.test", tenant_id=ACME.id)


@pytest.fixture
def store():
    return FakeStore(ACME, GLOBEX, DORMANT, SUSPENDED, RESERVED)


@pytest.fixture
def audit():
    return MemoryAuditSink()


def _resolver(store, audit=None, *, cache_ttl=None, **settings_overrides):
    lookup = CachedTenantLookup(store, CacheService(backend=InMemoryCache()), ttl=cache_ttl)
    return TenantResolver(lookup, audit_sink=audit, settings_obj=_settings(**settings_overrides))


def test_nothing_to_go_on_resolves_to_none(store):
    resolution = _resolver(store).resolve(TenantRequestSignals())
    assert resolution.resolved is False
    assert resolution.tenant is None


def test_override_by_header_wins_over_route(store, audit):
    signals = TenantRequestSignals(
        override_header=GLOBEX.id,
        route_tenant="acme",
        host="acme.example.com",
        principal=ADMIN,
        client_ip="10.0.0.1",
        user_agent="pytest",
    )
    resolution = _resolver(store, audit).resolve(signals)
    assert resolution.tenant == GLOBEX
    assert resolution.source == "override"
    [event] = audit.events
    assert event.event == TENANT_OVERRIDE_EVENT
    assert event.tenant_id == GLOBEX.id
    assert event.actor_user_id == ADMIN.user_id
    assert event.actor_email == ADMIN.email
    assert event.client_ip == "10.0.0.1"
    assert event.details["override_source"] == "header"
    assert event.details["target_tenant_name"] == GLOBEX.name


def test_override_header_takes_precedence_over_query(store, audit):
    signals = TenantRequestSignals(override_header=ACME.id, override_query=GLOBEX.id, principal=ADMIN)
    assert _resolver(store, audit).resolve(signals).tenant == ACME


def test_override_by_query_is_accepted_and_case_insensitive(store, audit):
    signals = TenantRequestSignals(override_query=GLOBEX.id.upper(), principal=ADMIN)
    resolution = _resolver(store, audit).resolve(signals)
    assert resolution.tenant == GLOBEX
    assert audit.events[0].details["override_source"] == "query"


def test_override_ignored_for_non_admin(store, audit):
    signals = TenantRequestSignals(override_header=GLOBEX.id, principal=ACME_USER)
    resolution = _resolver(store, audit).resolve(signals)
    assert resolution.tenant == ACME
    assert resolution.source == "user"
    assert audit.events == []


@pytest.mark.parametrize("value", ["globex", "123", f"{uuid4()}x", " "])
def test_malformed_override_falls_through_silently(store, audit, value):
    signals = TenantRequestSignals(override_header=value, route_tenant="acme", principal=ADMIN)
    resolution = _resolver(store, audit).resolve(signals)
    assert resolution.source == "route"
    assert audit.events == []


def test_override_requires_https_in_production(store, audit):
    resolver = _resolver(store, audit, APP_ENV="production")
    insecure = TenantRequestSignals(override_header=GLOBEX.id, principal=ADMIN, is_secure=False)
    assert resolver.resolve(insecure).resolved is False
    secure = TenantRequestSignals(override_header=GLOBEX.id, principal=ADMIN, is_secure=True)
    assert resolver.resolve(secure).tenant == GLOBEX


def test_override_https_can_be_forced_outside_production(store):
    resolver = _resolver(store, TENANCY_OVERRIDE_REQUIRE_HTTPS_ALWAYS=True)
    signals = TenantRequestSignals(override_header=GLOBEX.id, principal=ADMIN, is_secure=False)
    assert resolver.resolve(signals).resolved is False


def test_override_of_inactive_tenant_is_not_found_but_audited(store, audit):
    signals = TenantRequestSignals(override_header=DORMANT.id, principal=ADMIN)
    assert _resolver(store, audit).resolve(signals).resolved is False
    [event] = audit.events
    assert event.event == TENANT_INACTIVE_EVENT
    assert event.tenant_id == DORMANT.id


def test_override_survives_a_failing_audit_sink(store):
    class BrokenSink:
        def record(self, event):
            raise RuntimeError("audit store down")

    signals = TenantRequestSignals(override_header=GLOBEX.id, principal=ADMIN)
    assert _resolver(store, BrokenSink()).resolve(signals).tenant == GLOBEX


def test_route_tenant_by_subdomain_and_by_id(store):
    resolver = _resolver(store)
    assert resolver.resolve(TenantRequestSignals(route_tenant="ACME")).tenant == ACME
    by_id = resolver.resolve(TenantRequestSignals(route_tenant=GLOBEX.id))
    assert by_id.tenant == GLOBEX
    assert by_id.source == "route"


def test_route_tenant_record_is_used_directly(store):
    resolution = _resolver(store).resolve(TenantRequestSignals(route_tenant=GLOBEX))
    assert resolution.tenant is GLOBEX
    assert store.calls == []


def test_inactive_tenant_never_returned_by_route_id(store, audit):
    for tenant in (DORMANT, SUSPENDED):
        resolution = _resolver(store, audit).resolve(TenantRequestSignals(route_tenant=tenant.id))
        assert resolution.resolved is False
    assert [event.tenant_id for event in audit.events] == [DORMANT.id, SUSPENDED.id]


def test_route_miss_does_not_fall_back_to_other_route_forms(store):
    resolution = _resolver(store).resolve(TenantRequestSignals(route_tenant=str(uuid4())))
    assert resolution.resolved is False


@pytest.mark.parametrize(
    "host",
    ["shop.example.com", "SHOP.example.com", "www.shop.example.com", "shop.example.com:8443", "shop.example.com."],
)
def test_primary_domain_matching_is_case_and_www_tolerant(store, host):
    resolution = _resolver(store).resolve(TenantRequestSignals(host=host))
    assert resolution.tenant == ACME
    assert resolution.source == "primary_domain"


def test_subdomain_resolution(store):
    resolution = _resolver(store).resolve(TenantRequestSignals(host="Globex.tracker.test"))
    assert resolution.tenant == GLOBEX
    assert resolution.source == "subdomain"


@pytest.mark.parametrize("label", ["admin", "ADMIN", "www", "api"])
def test_reserved_subdomains_never_resolve(store, label):
    assert _resolver(store).resolve(TenantRequestSignals(host=f"{label}.tracker.test")).resolved is False


def test_base_domain_restricts_subdomain_lookup(store):
    resolver = _resolver(store, TENANCY_BASE_DOMAIN="tracker.test")
    assert resolver.resolve(TenantRequestSignals(host="globex.tracker.test")).tenant == GLOBEX
    assert resolver.resolve(TenantRequestSignals(host="globex.elsewhere.test")).resolved is False
    assert resolver.resolve(TenantRequestSignals(host="tracker.test")).resolved is False


def test_ip_hosts_are_skipped(store):
    assert _resolver(store).resolve(TenantRequestSignals(host="127.0.0.1:8000")).resolved is False
    assert ("subdomain", "127") not in store.calls


def test_principal_home_tenant_is_last_resort(store):
    resolution = _resolver(store).resolve(TenantRequestSignals(host="unknown.example.org", principal=ACME_USER))
    assert resolution.tenant == ACME
    assert resolution.source == "user"


def test_principal_with_inactive_home_tenant_resolves_to_none(store):
    principal = Principal(user_id=3, tenant_id=DORMANT.id)
    assert _resolver(store).resolve(TenantRequestSignals(principal=principal)).resolved is False


def test_resolution_context_memoizes_including_none(store):
    resolver = _resolver(store)
    ctx = TenantResolutionContext(resolver, TenantRequestSignals(host="nobody.example.org"))
    first = ctx.get()
    second = ctx.get()
    assert first is second
    assert first.resolved is False
    calls = len(store.calls)
    ctx.get()
    assert len(store.calls) == calls


def test_resolution_context_hits_store_once(store):
    ctx = TenantResolutionContext(_resolver(store), TenantRequestSignals(host="globex.tracker.test"))
    for _ in range(5):
        assert ctx.get().tenant == GLOBEX
    assert store.calls == [("primary_domain", "globex.tracker.test"), ("subdomain", "globex")]


def _request(host, *, headers=None, query=b"", scheme="http", path_params=None):
    raw_headers = [(b"host", host.encode())]
    for key, value in (headers or {}).items():
        raw_headers.append((key.lower().encode(), value.encode()))
    scope = {
        "type": "http",
        "method": "GET",
        "scheme": scheme,
        "path": "/",
        "query_string": query,
        "headers": raw_headers,
        "client": ("203.0.113.9", 5555),
        "server": (host, 443 if scheme == "https" else 80),
        "path_params": path_params or {},
    }
    return Request(scope)


def test_signals_from_request_reads_headers_query_and_route():
    request = _request(
        "Acme.Example.com:8000",
        headers={"X-Tenant-ID": "abc", "User-Agent": "curl"},
        query=b"tenant_id=def",
        scheme="https",
        path_params={"tenant": "acme"},
    )
    signals = TenantRequestSignals.from_request(request, ADMIN)
    assert signals.host == "acme.example.com"
    assert signals.override_header == "abc"
    assert signals.override_query == "def"
    assert signals.route_tenant == "acme"
    assert signals.is_secure is True
    assert signals.client_ip == "203.0.113.9"
    assert signals.user_agent == "curl"
    assert signals.principal is ADMIN
