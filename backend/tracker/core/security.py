from __future__ import annotations

import time
from dataclasses import dataclass

from jose import JWTError, jwt

from tracker.core.config import settings


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, as seen by tenant resolution."""

    user_id: int
    email: str | None = None
    tenant_id: str | None = None
    is_super_admin: bool = False


def create_access_token(
    subject: int | str,
    *,
    expires_minutes: int | None = None,
    extra_claims: dict[str, object] | None = None,
) -> str:
    now = int(time.time())
    lifetime = settings.ACCESS_TOKEN_EXPIRE_MINUTES if expires_minutes is None else expires_minutes
    payload: dict[str, object] = {
        "sub": str(subject),
        "iat": now,
        "exp": now + lifetime * 60,
    }
    if extra_claims:
        payload.update(extra_claims)
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict[str, object]:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as exc:
        raise ValueError("Invalid access token") from exc
