"""Request identity and role enforcement.

Callers identify themselves with the ``X-User-Id`` header. Credential checks
belong to whatever gateway sits in front of this service.
"""
from __future__ import annotations

from typing import Callable

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from crowdledger.core.errors import error_response
from crowdledger.db import get_db
from crowdledger.models.user import User, UserRole


def _extract_user_id(x_user_id: str | None = Header(default=None, alias="X-User-Id")) -> int | None:
    if x_user_id is None or not x_user_id.strip():
        return None
    try:
        return int(x_user_id.strip())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("INVALID_IDENTITY", "X-User-Id must be an integer."),
        ) from None


def get_current_user(
    db: Session = Depends(get_db),
    user_id: int | None = Depends(_extract_user_id),
) -> User:
    """Resolve the acting user from the request headers."""

    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("NO_IDENTITY", "X-User-Id header required."),
        )
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("UNKNOWN_USER", "Unknown or inactive user."),
        )
    return user


def require_role(*roles: UserRole) -> Callable:
    """Dependency factory enforcing that the acting user holds one of ``roles``."""

    if not roles:
        raise RuntimeError("require_role needs at least one UserRole")

    def _dep(user: User = Depends(get_current_user)) -> User:
        if user.role in roles:
            return user
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=error_response(
                "INSUFFICIENT_ROLE",
                f"Requires one of: {[role.value for role in roles]}",
            ),
        )

    return _dep


__all__ = ["get_current_user", "require_role"]
