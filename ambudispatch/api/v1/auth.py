"""
Authentication endpoints for dashboard operators.

Login exchanges an email and password for a bearer token plus the operator
profile the dashboard and console keep as their session.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from ...core.auth import DISPATCH_ROLES, ROLES, UserContext, get_current_user, get_optional_user
from ...core.config import auth_disabled
from ...core.db import get_db
from ...core.security import create_access_token, hash_password, verify_password
from ...models.app_user import AppUser


router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


class LoginIn(BaseModel):
    email: str
    password: str


class RegisterIn(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=6, max_length=256)
    name: str | None = Field(default=None, max_length=255)
    role: str | None = Field(default=None, max_length=32)


def _session_payload(*, user_id: str, email: str, name: str, role: str, token: str) -> dict:
    return {
        "access_token": token,
        "token_type": "bearer",
        "user": {"id": user_id, "email": email, "name": name, "role": role},
    }


def _issue_token(user: AppUser) -> str:
    if auth_disabled():
        return "demo-token"
    return create_access_token(sub=user.email, role=user.role, user_id=user.id, name=user.name)


@router.post("/login")
def login(payload: LoginIn, db: Session = Depends(get_db)) -> dict:
    email = payload.email.strip().lower()
    if not email or not payload.password:
        raise HTTPException(status_code=400, detail="email and password are required")
    if auth_disabled():
        return _session_payload(user_id="local", email=email, name="Local Operator", role="ADMIN", token="demo-token")
    user = db.query(AppUser).filter(func.lower(AppUser.email) == email).first()
    if not user or not user.is_active or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return _session_payload(
        user_id=user.id, email=user.email, name=user.name or user.email, role=user.role, token=_issue_token(user)
    )


@router.post("/register")
def register(
    payload: RegisterIn,
    db: Session = Depends(get_db),
    requester: UserContext | None = Depends(get_optional_user),
) -> dict:
    email = payload.email.strip().lower()
    if "@" not in email or " " in email:
        raise HTTPException(status_code=400, detail="A valid email is required")
    if db.query(AppUser).filter(func.lower(AppUser.email) == email).first():
        raise HTTPException(status_code=409, detail="Email already registered")

    total_users = db.query(func.count(AppUser.id)).scalar() or 0
    role = (payload.role or "DRIVER").strip().upper()
    if role not in ROLES:
        raise HTTPException(status_code=400, detail=f"Unknown role {role}")
    # The first account bootstraps the deployment.
    if total_users == 0:
        role = "ADMIN"
    elif role in DISPATCH_ROLES and (not requester or requester.role != "ADMIN"):
        raise HTTPException(status_code=403, detail=f"Only an admin can create {role} users")

    user = AppUser(
        email=email,
        name=(payload.name or "").strip() or email.split("@", 1)[0],
        password_hash=hash_password(payload.password),
        role=role,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return _session_payload(user_id=user.id, email=user.email, name=user.name, role=user.role, token=_issue_token(user))


@router.get("/me")
def me(user: UserContext = Depends(get_current_user)) -> dict:
    return {"id": user.user_id, "email": user.username, "name": user.name, "role": user.role}
