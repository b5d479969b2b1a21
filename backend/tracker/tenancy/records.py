"""
Detached tenant snapshots handed out by resolution.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Optional


def _parse_dt(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


@dataclass(frozen=True)
class TenantRecord:
    """
    Immutable copy of a tenant row. Safe to cache, share across threads
    and keep after the session that loaded it is closed.
    """

    id: str
    name: str
    subdomain: str
    primary_domain: Optional[str] = None
    is_active: bool = True
    suspended_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    courier_priority: Optional[tuple[str, ...]] = None

    def is_usable(self) -> bool:
        return self.is_active and self.suspended_at is None and self.deleted_at is None

    @classmethod
    def from_model(cls, tenant) -> "TenantRecord":
        priority = getattr(tenant, "courier_priority", None)
        return cls(
            id=str(tenant.id),
            name=tenant.name,
            subdomain=tenant.subdomain,
            primary_domain=tenant.primary_domain,
            is_active=bool(tenant.is_active),
            suspended_at=tenant.suspended_at,
            deleted_at=tenant.deleted_at,
            courier_priority=tuple(priority) if priority else None,
        )

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["courier_priority"] = list(self.courier_priority) if self.courier_priority else None
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "TenantRecord":
        priority = payload.get("courier_priority")
        return cls(
            id=str(payload["id"]),
            name=payload["name"],
            subdomain=payload["subdomain"],
            primary_domain=payload.get("primary_domain"),
            is_active=bool(payload.get("is_active", True)),
            suspended_at=_parse_dt(payload.get("suspended_at")),
            deleted_at=_parse_dt(payload.get("deleted_at")),
            courier_priority=tuple(priority) if priority else None,
        )
