"""
Auth dependencies for operator-facing endpoints.

The dispatch workflow only needs to know that an operator is present and
what role they hold. With ``AMBU_AUTH_DISABLED=true`` (the dev default)
every request runs as a built-in admin.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException

from .config import auth_disabled
from .security import TokenError, decode_access_token

ROLES = {"ADMIN", "DISPATCHER", "DRIVER"}
DISPATCH_ROLES = ("ADMIN", "DISPATCHER")


@dataclass
class UserContext:
    role: str
    user_id: Optional[str] = None
    username: Optional[str] = None
    name: Optional[str] = None


def _anonymous_admin() -> UserContext:
    return UserContext(role="ADMIN", user_id="local", username="local", name="Local Operator")


def _extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    if not authorization.lower().startswith("bearer "):
        return None
    token = authorization.split(" ", 1)[1].strip()
    return token or None


def user_from_token(token: Optional[str]) -> UserContext:
    """Resolve a raw bearer token into a user, raising 401 on any problem."""
    if auth_disabled():
        return _anonymous_admin()
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    try:
        claims = decode_access_token(token)
    except TokenError:
        raise HTTPException(status_code=401, detail="Invalid token")
    role = str(claims.get("role") or "").strip().upper()
    username = str(claims.get("sub") or "").strip() or None
    user_id = str(claims.get("user_id") or "").strip() or None
    if role not in ROLES or not username or not user_id:
        raise HTTPException(status_code=401, detail="Invalid token claims")
    return UserContext(role=role, user_id=user_id, username=username, name=claims.get("name"))


def get_current_user(authorization: Optional[str] = Header(None)) -> UserContext:
    return user_from_token(_extract_bearer_token(authorization))


def get_optional_user(authorization: Optional[str] = Header(None)) -> Optional[UserContext]:
    if auth_disabled():
        return _anonymous_admin()
    if not authorization:
        return None
    return get_current_user(authorization=authorization)


def require_roles(*roles: str):
    def _dep(user: UserContext = Depends(get_current_user)):
        allowed = {r.strip().upper() for r in roles if r and r.strip()}
        if allowed and user.role.upper() not in allowed:
            raise HTTPException(status_code=403, detail="Forbidden")
        return user

    return _dep
