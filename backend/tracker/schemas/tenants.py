from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class TenantRead(BaseModel):
    id: str
    name: str
    subdomain: str
    primary_domain: Optional[str] = None
    courier_priority: list[str] = []


class TenantContextRead(BaseModel):
    tenant: TenantRead
    source: Optional[str] = None
    request_id: str
    resolved_at: datetime
