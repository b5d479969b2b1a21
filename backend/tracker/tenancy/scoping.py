"""
Helpers to ensure database access stays tenant-scoped.

Two layers: repository helpers that take an explicit tenant id, and a
session-level safety net (`install_tenant_scope`) that filters every
ORM read of a tenant-owned model by the bound tenant and checks every
flushed write against it.
"""

from __future__ import annotations

import logging

from sqlalchemy import event, inspect
from sqlalchemy.orm import ORMExecuteState, Session, with_loader_criteria

from tracker.tenancy.context import get_current_tenant_id, is_scope_bypassed
from tracker.tenancy.errors import TenantNotFound, TenantNotResolved, TenantScopeViolation


logger = logging.getLogger(__name__)


def _tenant_owned_base():
    # Imported lazily: tracker.models installs this module's hooks on import.
    from tracker.models.mixins import TenantOwnedMixin

    return TenantOwnedMixin


def _ensure_model_has_tenant_id(model) -> None:
    if not hasattr(model, "tenant_id"):
        name = getattr(model, "__name__", str(model))
        raise ValueError(f"{name} does not define tenant_id and cannot be tenant-scoped.")


def scoped_query(db: Session, model, tenant_id):
    """
    Return a query constrained to the given tenant.

    Example:
        scoped_query(db, Shipment, tenant_id).all()
    """
    _ensure_model_has_tenant_id(model)
    if tenant_id is None:
        raise TenantNotResolved("tenant_id is required for tenant-scoped queries")
    return db.query(model).filter(model.tenant_id == tenant_id)


def get_tenant_owned_or_404(db: Session, model, tenant_id, object_id):
    """
    Fetch by id + tenant_id or raise TenantNotFound (404 style).
    """
    resource = scoped_query(db, model, tenant_id).filter(model.id == object_id).first()
    if not resource:
        raise TenantNotFound("Resource not found for tenant")
    return resource


class TenantScopedRepository:
    """
    Data access for one tenant-owned model, pinned to one tenant id.

    The tenant id is a constructor argument, so a repository can never be
    used without one.
    """

    def __init__(self, db: Session, model, tenant_id: str) -> None:
        _ensure_model_has_tenant_id(model)
        if not tenant_id:
            raise TenantNotResolved("tenant_id is required for tenant-scoped repositories")
        self.db = db
        self.model = model
        self.tenant_id = tenant_id

    def query(self):
        return scoped_query(self.db, self.model, self.tenant_id)

    def get(self, object_id):
        return self.query().filter(self.model.id == object_id).first()

    def get_or_404(self, object_id):
        return get_tenant_owned_or_404(self.db, self.model, self.tenant_id, object_id)

    def list(self, *, limit: int = 100, offset: int = 0, order_by=None):
        query = self.query()
        if order_by is not None:
            query = query.order_by(order_by)
        return query.offset(offset).limit(limit).all()

    def add(self, resource):
        current = getattr(resource, "tenant_id", None)
        if current is None:
            resource.tenant_id = self.tenant_id
        elif current != self.tenant_id:
            raise TenantScopeViolation("Resource belongs to a different tenant")
        self.db.add(resource)
        return resource

    def delete(self, resource) -> None:
        if getattr(resource, "tenant_id", None) != self.tenant_id:
            raise TenantScopeViolation("Resource belongs to a different tenant")
        self.db.delete(resource)


def _touches_tenant_owned(execute_state: ORMExecuteState) -> bool:
    owned = _tenant_owned_base()
    return any(issubclass(mapper.class_, owned) for mapper in execute_state.all_mappers)


def _apply_tenant_criteria(execute_state: ORMExecuteState) -> None:
    if not (execute_state.is_select or execute_state.is_update or execute_state.is_delete):
        return
    # Lazy loads inherit the criteria of the statement that loaded the parent;
    # refreshes of already-loaded rows are keyed by primary key.
    if execute_state.is_column_load or execute_state.is_relationship_load:
        return
    if is_scope_bypassed():
        return
    if not _touches_tenant_owned(execute_state):
        return
    tenant_id = get_current_tenant_id()
    if tenant_id is None:
        raise TenantNotResolved("Tenant-owned data accessed with no tenant bound")
    execute_state.statement = execute_state.statement.options(
        with_loader_criteria(
            _tenant_owned_base(),
            lambda cls: cls.tenant_id == tenant_id,
            include_aliases=True,
        )
    )


def _original_tenant_id(instance):
    history = inspect(instance).attrs.tenant_id.history
    if history.deleted:
        return history.deleted[0]
    return instance.tenant_id


def _check_flush(session: Session, flush_context, instances) -> None:
    if is_scope_bypassed():
        return
    owned = _tenant_owned_base()
    pending = [obj for obj in session.new if isinstance(obj, owned)]
    changed = [obj for obj in session.dirty if isinstance(obj, owned)]
    removed = [obj for obj in session.deleted if isinstance(obj, owned)]
    if not (pending or changed or removed):
        return
    tenant_id = get_current_tenant_id()
    if tenant_id is None:
        raise TenantNotResolved("Tenant-owned data written with no tenant bound")

    for obj in pending:
        if obj.tenant_id is None:
            obj.tenant_id = tenant_id
        elif obj.tenant_id != tenant_id:
            raise TenantScopeViolation(
                f"{type(obj).__name__} for tenant {obj.tenant_id} added under tenant {tenant_id}"
            )
    for obj in changed:
        if obj.tenant_id != tenant_id or _original_tenant_id(obj) != tenant_id:
            raise TenantScopeViolation(
                f"{type(obj).__name__} {getattr(obj, 'id', None)} modified outside its tenant"
            )
    for obj in removed:
        if obj.tenant_id != tenant_id:
            raise TenantScopeViolation(
                f"{type(obj).__name__} {getattr(obj, 'id', None)} deleted outside its tenant"
            )


def install_tenant_scope() -> None:
    """
    Register the scoping hooks on every Session. Safe to call repeatedly.
    """
    if not event.contains(Session, "do_orm_execute", _apply_tenant_criteria):
        event.listen(Session, "do_orm_execute", _apply_tenant_criteria)
    if not event.contains(Session, "before_flush", _check_flush):
        event.listen(Session, "before_flush", _check_flush)
    logger.debug("tenant_scope.installed")
