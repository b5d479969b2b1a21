import os

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "secret")
os.environ.setdefault("SKIP_MIGRATIONS", "1")

from tracker.main import app, serve
import tracker.core.db as db_module
from tracker.core.cache import reset_cache_service
from tracker.core.config import settings
from tracker.core.rate_limit import reset_state
from tracker.couriers.registry import reset_courier_registry
from tracker.crud.audit import get_audit_logs
from tracker.models.orders import Order
from tracker.models.tenants import Tenant
from tracker.tenancy.audit import TENANT_OVERRIDE_EVENT, MemoryAuditSink, configure_audit_sink
from tracker.tenancy.constants import INVALID_TENANT_PAYLOAD
from tracker.tenancy.context import clear_tenant, without_tenant_scope

from factories import auth_headers, make_order, make_session_factory, make_shipment, make_tenant, make_user


ACME_HOST = "http://acme.tracker.test"
GLOBEX_HOST = "http://globex.tracker.test"


@pytest.fixture
def audit():
    sink = MemoryAuditSink()
    configure_audit_sink(sink)
    return sink


@pytest.fixture
def world(tmp_path, monkeypatch, audit):
    SessionLocal = make_session_factory(tmp_path, "endpoints")
    monkeypatch.setattr(db_module, "SessionLocal", SessionLocal)
    reset_state()
    reset_courier_registry()
    reset_cache_service()
    clear_tenant()
    with SessionLocal() as db:
        acme = make_tenant(db, name="Acme", subdomain="acme")
        globex = make_tenant(db, name="Globex", subdomain="globex", courier_priority=["elta", "acs"])
        acme_user = make_user(db, tenant=acme, email="jo@acme.test")
        globex_user = make_user(db, tenant=globex, email="sam@globex.test")
        admin = make_user(db, email="ops@example.com", is_super_admin=True)
        acme_shipment = make_shipment(db, tenant=acme, voucher="7412589630")
        make_shipment(db, tenant=acme, voucher="7412589631")
        globex_shipment = make_shipment(db, tenant=globex, voucher="9412589630")
        ids = {
            "acme": acme.id,
            "globex": globex.id,
            "acme_shipment": acme_shipment.id,
            "globex_shipment": globex_shipment.id,
        }
        headers = {
            "acme": auth_headers(acme_user),
            "globex": auth_headers(globex_user),
            "admin": auth_headers(admin),
        }
    yield SessionLocal, ids, headers
    reset_state()
    clear_tenant()


def _client(base_url="http://testserver"):
    return TestClient(app, base_url=base_url)


def test_health_and_metrics():
    client = _client()
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/api/v1/health").json() == {"status": "ok"}
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "tenant_resolutions_total" in resp.text


def test_serve_runs_the_app_under_uvicorn(monkeypatch):
    import uvicorn

    calls = []
    monkeypatch.setattr(uvicorn, "run", lambda target, **kwargs: calls.append((target, kwargs)))
    serve(port=9000)
    [(target, kwargs)] = calls
    assert target == "tracker.main:app"
    assert kwargs["port"] == 9000
    assert kwargs["host"] == "0.0.0.0"


def test_tenant_resolved_from_subdomain(world):
    _, ids, headers = world
    resp = _client(ACME_HOST).get("/api/v1/tenant", headers=headers["acme"])
    assert resp.status_code == 200
    body = resp.json()
    assert body["tenant"]["id"] == ids["acme"]
    assert body["source"] == "subdomain"
    assert body["request_id"] == resp.headers["X-Request-Id"]


def test_shipments_list_only_own_tenant(world):
    _, ids, headers = world
    resp = _client(ACME_HOST).get("/api/v1/shipments", headers=headers["acme"])
    assert resp.status_code == 200
    assert sorted(item["voucher"] for item in resp.json()) == ["7412589630", "7412589631"]

    resp = _client(GLOBEX_HOST).get("/api/v1/shipments", headers=headers["globex"])
    assert [item["voucher"] for item in resp.json()] == ["9412589630"]


def test_list_filters_validate_status(world):
    _, _, headers = world
    client = _client(ACME_HOST)
    assert client.get("/api/v1/shipments?status=delivered", headers=headers["acme"]).json() == []
    assert client.get("/api/v1/shipments?status=teleported", headers=headers["acme"]).status_code == 422


def test_home_tenant_is_used_without_domain(world):
    _, ids, headers = world
    body = _client().get("/api/v1/tenant", headers=headers["globex"]).json()
    assert body["tenant"]["id"] == ids["globex"]
    assert body["source"] == "user"


def test_other_tenants_domain_is_refused(world):
    _, _, headers = world
    resp = _client(GLOBEX_HOST).get("/api/v1/shipments", headers=headers["acme"])
    assert resp.status_code == 403
    assert resp.json() == INVALID_TENANT_PAYLOAD


def test_unresolved_tenant_fails_closed(world):
    _, _, headers = world
    resp = _client("http://unknown.tracker.test").get("/api/v1/shipments", headers=headers["admin"])
    assert resp.status_code == 403
    assert resp.json() == INVALID_TENANT_PAYLOAD


def test_authentication_required(world):
    resp = _client(ACME_HOST).get("/api/v1/shipments")
    assert resp.status_code == 401
    bad = _client(ACME_HOST).get("/api/v1/shipments", headers={"Authorization": "Bearer nope"})
    assert bad.status_code == 401


def test_cross_tenant_shipment_is_not_found(world):
    _, ids, headers = world
    client = _client(ACME_HOST)
    own = client.get(f"/api/v1/shipments/{ids['acme_shipment']}", headers=headers["acme"])
    assert own.status_code == 200
    assert own.json()["status_history"] == []
    foreign = client.get(f"/api/v1/shipments/{ids['globex_shipment']}", headers=headers["acme"])
    assert foreign.status_code == 404


def test_route_tenant_prefix(world):
    _, ids, headers = world
    client = _client()
    resp = client.get("/api/v1/t/acme/tenant", headers=headers["acme"])
    assert resp.json()["source"] == "route"
    resp = client.get(f"/api/v1/t/{ids['acme']}/shipments", headers=headers["acme"])
    assert len(resp.json()) == 2
    assert client.get("/api/v1/t/globex/shipments", headers=headers["acme"]).status_code == 403
    assert client.get("/api/v1/t/nobody/shipments", headers=headers["admin"]).status_code == 403


def test_super_admin_override_is_audited(world, audit):
    _, ids, headers = world
    client = _client(ACME_HOST)
    resp = client.get(
        "/api/v1/shipments",
        headers={**headers["admin"], "X-Tenant-ID": ids["globex"], "User-Agent": "support-console"},
    )
    assert resp.status_code == 200
    assert [item["voucher"] for item in resp.json()] == ["9412589630"]
    [event] = [e for e in audit.events if e.event == TENANT_OVERRIDE_EVENT]
    assert event.tenant_id == ids["globex"]
    assert event.actor_email == "ops@example.com"
    assert event.user_agent == "support-console"
    assert event.details["override_source"] == "header"


def test_override_header_ignored_for_regular_users(world, audit):
    _, ids, headers = world
    resp = _client(ACME_HOST).get(
        "/api/v1/tenant",
        headers={**headers["acme"], "X-Tenant-ID": ids["globex"]},
    )
    assert resp.json()["tenant"]["id"] == ids["acme"]
    assert audit.events == []


def test_couriers_listed_in_tenant_priority(world):
    _, _, headers = world
    acme = _client(ACME_HOST).get("/api/v1/couriers", headers=headers["acme"]).json()
    assert [item["id"] for item in acme] == ["acs", "geniki", "elta", "speedex", "generic"]
    globex = _client(GLOBEX_HOST).get("/api/v1/couriers", headers=headers["globex"]).json()
    assert [item["id"] for item in globex] == ["elta", "acs"]


def test_voucher_resolve_endpoint(world):
    _, ids, headers = world
    client = _client(ACME_HOST)
    body = client.post("/api/v1/vouchers/resolve", json={"voucher": " 741-258-9630 "}, headers=headers["acme"]).json()
    assert body["courier_id"] == "acs"
    assert body["voucher"] == "7412589630"
    assert body["valid"] is True
    assert body["matched_by"] == "detected"
    assert body["api_payload"]["tenant_id"] == ids["acme"]
    assert body["api_payload"]["courier"] == "acs"

    phone = client.post(
        "/api/v1/vouchers/resolve",
        json={"voucher": "6912345678", "order": {"billing_phone": "+30 6912345678"}},
        headers=headers["acme"],
    ).json()
    assert phone["valid"] is False
    assert phone["reason"] == "Looks like phone number"
    assert phone["api_payload"] is None

    unknown = client.post("/api/v1/vouchers/resolve", json={"voucher": "!!"}, headers=headers["acme"]).json()
    assert unknown["courier_id"] is None
    assert unknown["valid"] is False
    assert unknown["reason"] == "Unrecognized voucher format"


def test_create_shipment_flow(world):
    SessionLocal, ids, headers = world
    client = _client(ACME_HOST)

    created = client.post("/api/v1/shipments", json={"voucher": "8412589630"}, headers=headers["acme"])
    assert created.status_code == 201
    assert created.json()["courier_id"] == "acs"
    assert created.json()["status"] == "pending"

    duplicate = client.post("/api/v1/shipments", json={"voucher": "8412589630"}, headers=headers["acme"])
    assert duplicate.status_code == 409

    unknown = client.post("/api/v1/shipments", json={"voucher": "!!"}, headers=headers["acme"])
    assert unknown.status_code == 422
    assert unknown.json()["code"] == "VOUCHER_UNRECOGNIZED"

    with SessionLocal() as db:
        with without_tenant_scope("test inspection"):
            logs = get_audit_logs(db, event="shipment.created")
        assert [log.tenant_id for log in logs] == [ids["acme"]]


def test_create_shipment_rejects_order_phone(world):
    SessionLocal, _, headers = world
    with SessionLocal() as db:
        acme = db.query(Tenant).filter(Tenant.subdomain == "acme").one()
        order_id = make_order(db, tenant=acme, external_id="1001", billing_phone="6912345678").id

    resp = _client(ACME_HOST).post(
        "/api/v1/shipments",
        json={"voucher": "6912345678", "order_id": order_id},
        headers=headers["acme"],
    )
    assert resp.status_code == 422
    assert resp.json() == {"detail": "Looks like phone number", "code": "VOUCHER_REJECTED", "courier_id": "acs"}


def test_woocommerce_ingest_is_idempotent(world):
    SessionLocal, ids, headers = world
    order = {
        "id": 5001,
        "number": 5001,
        "billing": {"first_name": "Maria", "last_name": "P", "email": "Maria@Example.com", "phone": "6912345678"},
        "shipping": {"phone": "6987654321"},
        "meta_data": [
            {"key": "tracking_number", "value": "6912345678"},
            {"key": "_acs_voucher", "value": "741 258 9639"},
            {"key": "_wc_order_attribution", "value": "direct"},
        ],
    }
    client = _client(ACME_HOST)
    first = client.post("/api/v1/woocommerce/orders", json=order, headers=headers["acme"])
    assert first.status_code == 200
    body = first.json()
    assert [(s["courier_id"], s["voucher"]) for s in body["shipments"]] == [("acs", "7412589639")]
    assert body["rejected"] == [
        {"meta_key": "tracking_number", "courier_id": "acs", "reason": "Looks like phone number"}
    ]

    second = client.post("/api/v1/woocommerce/orders", json=order, headers=headers["acme"]).json()
    assert second["order_id"] == body["order_id"]
    assert second["shipments"][0]["id"] == body["shipments"][0]["id"]

    with SessionLocal() as db:
        with without_tenant_scope("test inspection"):
            orders = db.query(Order).all()
        assert [(o.tenant_id, o.external_id, o.order_number) for o in orders] == [(ids["acme"], "5001", "5001")]


def test_rate_limit_headers_and_throttling(world, monkeypatch):
    _, _, headers = world
    monkeypatch.setattr(settings, "API_RATE_LIMIT_PER_MINUTE", 2)
    client = _client(ACME_HOST)
    first = client.get("/api/v1/tenant", headers=headers["acme"])
    assert first.headers["X-RateLimit-Limit"] == "2"
    assert first.headers["X-RateLimit-Remaining"] == "1"
    client.get("/api/v1/tenant", headers=headers["acme"])
    throttled = client.get("/api/v1/tenant", headers=headers["acme"])
    assert throttled.status_code == 429
    assert int(throttled.headers["Retry-After"]) >= 1
    assert "X-RateLimit-Reset" in throttled.headers


def test_woocommerce_budget_is_separate(world, monkeypatch):
    _, _, headers = world
    monkeypatch.setattr(settings, "WOOCOMMERCE_RATE_LIMIT_PER_MINUTE", 1)
    client = _client(ACME_HOST)
    order = {"id": 1, "meta_data": []}
    assert client.post("/api/v1/woocommerce/orders", json=order, headers=headers["acme"]).status_code == 200
    assert client.post("/api/v1/woocommerce/orders", json=order, headers=headers["acme"]).status_code == 429
    assert client.get("/api/v1/tenant", headers=headers["acme"]).status_code == 200
