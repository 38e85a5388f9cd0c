"""
Security helpers for password hashing and JWT access tokens.

Tokens are HS256 JWTs carrying the operator's email (``sub``), role, user
id and display name, so the dashboard and the console can render the
current operator without another round trip.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

HASH_ALGO = "pbkdf2_sha256"


class TokenError(ValueError):
    """Raised when an access token cannot be trusted."""


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def _hash_rounds() -> int:
    try:
        return max(1000, int(os.getenv("AMBU_PASSWORD_HASH_ROUNDS", "120000")))
    except ValueError:
        return 120000


def hash_password(password: str) -> str:
    if not password:
        raise ValueError("Password cannot be empty")
    salt = secrets.token_hex(16)
    rounds = _hash_rounds()
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), rounds)
    return f"{HASH_ALGO}${rounds}${salt}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    try:
        algo, rounds_raw, salt, expected_hex = encoded.split("$", 3)
        rounds = int(rounds_raw)
    except (AttributeError, ValueError):
        return False
    if algo != HASH_ALGO:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), rounds)
    return secrets.compare_digest(digest.hex(), expected_hex)


def _jwt_secret() -> str:
    secret = (os.getenv("AMBU_JWT_SECRET") or "").strip()
    if secret:
        return secret
    env = (os.getenv("AMBU_ENV") or os.getenv("APP_ENV") or "dev").strip().lower()
    # prod refuses to sign with a fallback secret
    return "" if env == "prod" else "dev-jwt-secret-change-me"


def _jwt_exp_minutes() -> int:
    try:
        return max(1, int(os.getenv("AMBU_JWT_EXP_MIN", "720")))
    except ValueError:
        return 720


def _sign(secret: str, signing_input: str) -> bytes:
    return hmac.new(secret.encode("utf-8"), signing_input.encode("ascii"), hashlib.sha256).digest()


def _encode_segment(data: dict) -> str:
    return _b64url_encode(json.dumps(data, separators=(",", ":")).encode("utf-8"))


def create_access_token(*, sub: str, role: str, user_id: str, name: str | None = None) -> str:
    secret = _jwt_secret()
    if not secret:
        raise RuntimeError("AMBU_JWT_SECRET is required when auth is enabled")
    now = datetime.now(timezone.utc)
    claims = {
        "sub": sub,
        "role": role,
        "user_id": user_id,
        "name": name or sub,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=_jwt_exp_minutes())).timestamp()),
    }
    signing_input = f"{_encode_segment({'alg': 'HS256', 'typ': 'JWT'})}.{_encode_segment(claims)}"
    return f"{signing_input}.{_b64url_encode(_sign(secret, signing_input))}"


def decode_access_token(token: str) -> dict[str, Any]:
    secret = _jwt_secret()
    if not secret:
        raise TokenError("JWT secret not configured")
    try:
        header_b64, payload_b64, signature_b64 = token.split(".")
    except ValueError:
        raise TokenError("Malformed token") from None
    signing_input = f"{header_b64}.{payload_b64}"
    try:
        provided_sig = _b64url_decode(signature_b64)
        payload = json.loads(_b64url_decode(payload_b64).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        raise TokenError("Malformed token") from None
    if not secrets.compare_digest(_sign(secret, signing_input), provided_sig):
        raise TokenError("Invalid signature")
    if not isinstance(payload, dict):
        raise TokenError("Invalid payload")
    exp = int(payload.get("exp") or 0)
    if exp <= 0:
        raise TokenError("Missing exp")
    if int(datetime.now(timezone.utc).timestamp()) >= exp:
        raise TokenError("Token expired")
    return payload
