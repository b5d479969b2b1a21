"""
Tenant lookups by key, with an optional read-through cache.

Cache keys are `tenant:{field}:{value}`. Only usable tenants are cached;
a miss always goes back to the store.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterable, Iterator, Optional, Protocol

from sqlalchemy.orm import Session

from tracker.core.cache import CacheService, get_cache_service
from tracker.core.config import settings
from tracker.tenancy.constants import LOOKUP_FIELDS, TENANT_CACHE_NAME
from tracker.tenancy.records import TenantRecord


logger = logging.getLogger(__name__)

_UNSET = object()


class TenantStore(Protocol):
    def find_active(self, field: str, value: str) -> Optional[TenantRecord]:
        ...

    def find_any(self, field: str, value: str) -> Optional[TenantRecord]:
        ...


class SqlTenantStore:
    """
    TenantStore backed by the `tenants` table. Either borrows a caller's
    session or opens a short-lived one per lookup from `session_factory`.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        *,
        session: Session | None = None,
    ) -> None:
        if session_factory is None and session is None:
            raise ValueError("SqlTenantStore needs a session or a session factory")
        self._session_factory = session_factory
        self._session = session

    @contextmanager
    def _db(self) -> Iterator[Session]:
        if self._session is not None:
            yield self._session
            return
        db = self._session_factory()
        try:
            yield db
        finally:
            db.close()

    def find_active(self, field: str, value: str) -> Optional[TenantRecord]:
        from tracker.crud.tenants import get_active_tenant_by_field

        with self._db() as db:
            tenant = get_active_tenant_by_field(db, field, value)
            return TenantRecord.from_model(tenant) if tenant else None

    def find_any(self, field: str, value: str) -> Optional[TenantRecord]:
        from tracker.models.tenants import Tenant

        if field not in LOOKUP_FIELDS:
            raise ValueError(f"Unsupported tenant lookup field: {field}")
        with self._db() as db:
            tenant = db.query(Tenant).filter(getattr(Tenant, field) == value).first()
            return TenantRecord.from_model(tenant) if tenant else None


def tenant_cache_key(field: str, value: str) -> str:
    return f"tenant:{field}:{value}"


class CachedTenantLookup:
    """
    Read-through cache in front of a TenantStore.

    A TTL of None (or zero) disables caching: every call hits the store.
    Tags are only attached when the backend declared tag support.
    """

    def __init__(
        self,
        store: TenantStore,
        cache: CacheService | None = None,
        *,
        ttl=_UNSET,
        tags: Iterable[str] | None = None,
    ) -> None:
        self.store = store
        self.cache = cache or get_cache_service()
        self.ttl = settings.TENANCY_CACHE_TTL if ttl is _UNSET else ttl
        self.tags = list(settings.TENANCY_CACHE_TAGS if tags is None else tags)

    @property
    def enabled(self) -> bool:
        return self.ttl is not None and self.ttl > 0

    def _cached(self, key: str) -> Optional[TenantRecord]:
        payload = self.cache.get(key, cache_name=TENANT_CACHE_NAME)
        if payload is None:
            return None
        try:
            record = TenantRecord.from_dict(payload)
        except (KeyError, TypeError, ValueError):
            logger.warning("tenant.cache_corrupt", extra={"cache_key": key})
            self.cache.delete(key)
            return None
        if not record.is_usable():
            self.cache.delete(key)
            return None
        return record

    def find(self, field: str, value: str) -> Optional[TenantRecord]:
        if field not in LOOKUP_FIELDS:
            raise ValueError(f"Unsupported tenant lookup field: {field}")
        if not self.enabled:
            return self.store.find_active(field, value)

        key = tenant_cache_key(field, value)
        record = self._cached(key)
        if record is not None:
            return record
        record = self.store.find_active(field, value)
        if record is not None and record.is_usable():
            self.cache.set(
                key,
                record.to_dict(),
                ttl=self.ttl,
                tags=self.tags if self.cache.supports_tags else None,
                cache_name=TENANT_CACHE_NAME,
            )
        return record


def invalidate_tenant_cache(record: TenantRecord, *, cache: CacheService | None = None) -> None:
    """
    Drop every cached lookup that could return `record`.
    """
    service = cache or get_cache_service()
    service.delete(tenant_cache_key("id", record.id))
    service.delete(tenant_cache_key("subdomain", record.subdomain))
    if record.primary_domain:
        service.delete(tenant_cache_key("primary_domain", record.primary_domain))
    logger.debug("tenant.cache_invalidated", extra={"tenant_id": record.id})


def flush_tenant_cache(*, cache: CacheService | None = None) -> int:
    """
    Drop all tagged tenant lookups. A no-op on backends without tags.
    """
    service = cache or get_cache_service()
    return service.flush_tags(settings.TENANCY_CACHE_TAGS)
