# Shared API dependencies: database session and the authenticated
# principal. Authentication is bearer-token only; a missing token
# yields an anonymous caller, a bad one is rejected outright.

from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from tracker.core.db import get_db
from tracker.core.security import Principal, decode_access_token
from tracker.models.users import User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/token", auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def principal_from_user(user: User) -> Principal:
    return Principal(
        user_id=user.id,
        email=user.email,
        tenant_id=user.tenant_id,
        is_super_admin=bool(user.is_super_admin),
    )


def get_current_principal(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> Optional[Principal]:
    cached = getattr(request.state, "principal", None)
    if cached is not None:
        return cached
    if not token:
        return None
    try:
        claims = decode_access_token(token)
    except ValueError:
        raise _unauthorized("Invalid token")
    subject = claims.get("sub")
    if subject is None or not str(subject).isdigit():
        raise _unauthorized("Invalid token subject")
    user = db.query(User).filter(User.id == int(subject)).first()
    if user is None or not user.is_active:
        raise _unauthorized("User not found or inactive")
    principal = principal_from_user(user)
    request.state.principal = principal
    return principal


def require_principal(
    principal: Optional[Principal] = Depends(get_current_principal),
) -> Principal:
    if principal is None:
        raise _unauthorized("Authentication required")
    return principal
