import os

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "secret")

from tracker.core.cache import CacheService, InMemoryCache
from tracker.crud.tenants import (
    create_tenant,
    deactivate_tenant,
    get_active_tenant_by_field,
    get_tenant_by_id,
    get_tenant_by_subdomain,
    reactivate_tenant,
    set_courier_priority,
    soft_delete_tenant,
    suspend_tenant,
    update_tenant_domains,
)
from tracker.tenancy.audit import TENANT_SCOPE_BYPASS_EVENT, MemoryAuditSink, configure_audit_sink
from tracker.tenancy.context import clear_tenant
from tracker.tenancy.lookup import CachedTenantLookup, SqlTenantStore, tenant_cache_key

from factories import make_session_factory, make_shipment, make_tenant


@pytest.fixture
def db_session(tmp_path):
    SessionLocal = make_session_factory(tmp_path, "tenants_crud")
    clear_tenant()
    with SessionLocal() as session:
        yield session
    clear_tenant()


@pytest.fixture
def cache():
    return CacheService(backend=InMemoryCache())


def _lookup(db_session, cache):
    return CachedTenantLookup(SqlTenantStore(session=db_session), cache, ttl=60)


def test_create_tenant_normalizes_names(db_session):
    tenant = create_tenant(db_session, "Acme", "  Acme ", primary_domain="Shop.Example.com.")
    assert tenant.subdomain == "acme"
    assert tenant.primary_domain == "shop.example.com"
    assert len(tenant.id) == 36
    assert get_tenant_by_subdomain(db_session, "ACME").id == tenant.id
    assert get_tenant_by_id(db_session, tenant.id).name == "Acme"


@pytest.mark.parametrize("subdomain", ["www", "Admin", "api"])
def test_reserved_subdomains_are_refused(db_session, subdomain):
    with pytest.raises(ValueError, match="reserved"):
        create_tenant(db_session, "Nope", subdomain)


@pytest.mark.parametrize("subdomain", ["", "-acme", "acme_shop", "a" * 64])
def test_malformed_subdomains_are_refused(db_session, subdomain):
    with pytest.raises(ValueError):
        create_tenant(db_session, "Nope", subdomain)


def test_duplicate_subdomain_or_domain_is_refused(db_session):
    create_tenant(db_session, "Acme", "acme", primary_domain="shop.example.com")
    with pytest.raises(ValueError):
        create_tenant(db_session, "Acme 2", "acme")
    with pytest.raises(ValueError):
        create_tenant(db_session, "Other", "other", primary_domain="SHOP.example.com")


def test_active_lookup_skips_unusable_tenants(db_session):
    live = make_tenant(db_session, subdomain="live")
    dormant = make_tenant(db_session, subdomain="dormant")
    paused = make_tenant(db_session, subdomain="paused")
    deactivate_tenant(db_session, dormant)
    suspend_tenant(db_session, paused)
    assert get_active_tenant_by_field(db_session, "subdomain", "live").id == live.id
    assert get_active_tenant_by_field(db_session, "id", dormant.id) is None
    assert get_active_tenant_by_field(db_session, "subdomain", "paused") is None
    with pytest.raises(ValueError):
        get_active_tenant_by_field(db_session, "name", "live")


def test_lifecycle_changes_invalidate_cached_lookups(db_session, cache):
    tenant = make_tenant(db_session, subdomain="acme", primary_domain="acme.shop")
    lookup = _lookup(db_session, cache)
    assert lookup.find("subdomain", "acme").id == tenant.id
    assert lookup.find("primary_domain", "acme.shop").id == tenant.id
    assert cache.get(tenant_cache_key("subdomain", "acme")) is not None

    deactivate_tenant(db_session, tenant, cache=cache)
    assert cache.get(tenant_cache_key("subdomain", "acme")) is None
    assert cache.get(tenant_cache_key("primary_domain", "acme.shop")) is None
    assert lookup.find("subdomain", "acme") is None

    reactivate_tenant(db_session, tenant, cache=cache)
    assert lookup.find("subdomain", "acme").id == tenant.id


def test_domain_change_drops_old_and_new_keys(db_session, cache):
    tenant = make_tenant(db_session, subdomain="acme")
    lookup = _lookup(db_session, cache)
    lookup.find("subdomain", "acme")
    update_tenant_domains(db_session, tenant, subdomain="acme-shop", cache=cache)
    assert cache.get(tenant_cache_key("subdomain", "acme")) is None
    assert lookup.find("subdomain", "acme") is None
    assert lookup.find("subdomain", "acme-shop").id == tenant.id


def test_courier_priority_is_cleaned(db_session):
    tenant = make_tenant(db_session)
    set_courier_priority(db_session, tenant, [" ELTA ", "", "acs"])
    assert tenant.courier_priority == ["elta", "acs"]
    set_courier_priority(db_session, tenant, [])
    assert tenant.courier_priority is None


def test_soft_delete_refused_while_shipments_exist(db_session):
    sink = MemoryAuditSink()
    configure_audit_sink(sink)
    busy = make_tenant(db_session)
    make_shipment(db_session, tenant=busy)
    with pytest.raises(ValueError, match="shipments"):
        soft_delete_tenant(db_session, busy, actor="ops")
    assert [event.event for event in sink.events] == [TENANT_SCOPE_BYPASS_EVENT]

    empty = make_tenant(db_session)
    deleted = soft_delete_tenant(db_session, empty)
    assert deleted.deleted_at is not None
    assert deleted.is_active is False
    with pytest.raises(ValueError):
        reactivate_tenant(db_session, deleted)
